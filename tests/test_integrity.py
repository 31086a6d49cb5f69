"""
ChecksumComparator digests and comparison rules.
"""

import hashlib

import pytest

from filevendor.exceptions import ConfigurationError
from filevendor.media.integrity import ChecksumComparator


async def _chunks(*parts: bytes):
    for part in parts:
        yield part


async def test_stream_file_and_bytes_agree(tmp_path):
    comparator = ChecksumComparator()
    payload = b"template 'site.conf'\n" * 1000
    path = tmp_path / "site.conf"
    path.write_bytes(payload)

    expected = hashlib.md5(payload).hexdigest()  # noqa: S324
    assert comparator.checksum_of(payload) == expected
    assert comparator.checksum_file(path) == expected
    assert await comparator.checksum_stream(_chunks(payload[:7], payload[7:])) == expected


def test_algorithm_is_configurable():
    comparator = ChecksumComparator("SHA256")
    assert comparator.checksum_of(b"x") == hashlib.sha256(b"x").hexdigest()


def test_unknown_algorithm():
    with pytest.raises(ConfigurationError):
        ChecksumComparator("not-a-hash")


def test_matches_is_exact():
    assert ChecksumComparator.matches("abc123", "abc123")
    assert not ChecksumComparator.matches("ABC123", "abc123")
    assert not ChecksumComparator.matches(None, "abc123")
