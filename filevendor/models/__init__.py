"""
Data Models Layer.

This package contains the models that define the core data structures
used throughout the application, such as the manifest, configuration
and statistics.
"""

from .config import VendorConfig
from .manifest import Manifest, ManifestRecord, load_manifest
from .stats import ResolveStats

__all__ = ["Manifest", "ManifestRecord", "ResolveStats", "VendorConfig", "load_manifest"]
