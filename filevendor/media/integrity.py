"""
Provides checksum computation for cached and downloaded files.
"""

import hashlib
import logging
from collections.abc import AsyncIterable
from pathlib import Path

from filevendor.exceptions import ConfigurationError

log = logging.getLogger(__name__)


class ChecksumComparator:
    """
    Computes content checksums with a hashlib algorithm and compares them
    against the checksums published in a manifest.

    The algorithm must match whatever produced the manifest's checksums,
    otherwise every comparison reports the entry as stale.
    """

    CHUNK_SIZE = 1048576  # 1 MB

    def __init__(self, algorithm: str = "md5"):
        self.algorithm = algorithm.lower()
        try:
            hashlib.new(self.algorithm)
        except ValueError as e:
            raise ConfigurationError(
                f"Unsupported checksum algorithm: {algorithm}"
            ) from e

    def _new_hash(self):
        return hashlib.new(self.algorithm)

    def checksum_of(self, data: bytes) -> str:
        """Returns the hex digest of an in-memory payload."""
        digest = self._new_hash()
        digest.update(data)
        return digest.hexdigest()

    async def checksum_stream(self, chunks: AsyncIterable[bytes]) -> str:
        """Returns the hex digest of a payload delivered as an async chunk stream."""
        digest = self._new_hash()
        async for chunk in chunks:
            digest.update(chunk)
        return digest.hexdigest()

    def checksum_file(self, filepath: Path) -> str:
        """Returns the hex digest of a file, read in chunks."""
        digest = self._new_hash()
        with open(filepath, "rb") as f:
            while chunk := f.read(self.CHUNK_SIZE):
                digest.update(chunk)
        return digest.hexdigest()

    @staticmethod
    def matches(actual: str | None, expected: str) -> bool:
        """
        Compares a computed checksum to the expected one.

        Comparison is exact. A missing checksum never matches.
        """
        if actual is None:
            return False
        return actual == expected
