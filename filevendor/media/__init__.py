"""
Media Layer.

This package contains the components that move file content around: the
streaming downloader and the checksum comparator.
"""

from .downloader import Downloader, FetchedFile
from .integrity import ChecksumComparator

__all__ = ["ChecksumComparator", "Downloader", "FetchedFile"]
