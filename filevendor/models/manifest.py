"""
Pydantic models for the file manifest of a collection.

A manifest is the authoritative index of the files a collection is made of:
for every logical path it lists the expected checksum, the relative path the
file is stored under, and the URL the file can be fetched from.
"""

import json
import re
from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path, PurePosixPath
from types import MappingProxyType
from typing import Any

from pydantic import (
    BaseModel,
    PrivateAttr,
    ValidationError,
    field_validator,
    model_validator,
)

from filevendor.exceptions import ManifestError

# A logical path is `<segment>/<name>`, e.g. "recipes/default.rb".
SEGMENT_PATTERN = re.compile(r"([^/]+)/(.+)$")


class ManifestRecord(BaseModel):
    """A single file entry of a manifest."""

    logical_path: str
    storage_path: str
    checksum: str
    url: str
    specificity: str = "default"

    class Config:
        """Pydantic model configuration."""

        frozen = True
        str_strip_whitespace = True

    @field_validator("logical_path", "checksum", "url")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("Value cannot be empty.")
        return v

    @field_validator("logical_path")
    @classmethod
    def validate_logical_path(cls, v: str) -> str:
        """Rejects paths that no resolve call could ever ask for."""
        if not SEGMENT_PATTERN.search(v):
            raise ValueError(
                f"Logical path must look like '<segment>/<name>', got: {v!r}"
            )
        return v

    @field_validator("storage_path")
    @classmethod
    def validate_storage_path(cls, v: str) -> str:
        """Ensures the storage path stays inside the collection's cache directory."""
        if not v:
            raise ValueError("Storage path cannot be empty.")
        normalized = v.replace("\\", "/")
        if normalized.startswith("/") or ".." in PurePosixPath(normalized).parts:
            raise ValueError(
                f"Storage path cannot contain relative '..' or absolute paths: {v}"
            )
        return normalized


class Manifest(BaseModel):
    """
    An immutable index of `ManifestRecord` objects for one named collection.

    Lookups are exact matches on the full logical path. There is no prefix or
    glob resolution.
    """

    collection_name: str
    records: tuple[ManifestRecord, ...] = ()

    _by_path: dict[str, ManifestRecord] = PrivateAttr(default_factory=dict)

    class Config:
        """Pydantic model configuration."""

        frozen = True
        str_strip_whitespace = True

    @field_validator("collection_name")
    @classmethod
    def validate_collection_name(cls, v: str) -> str:
        if not v or v in (".", ".."):
            raise ValueError("Collection name cannot be empty.")
        if "/" in v or "\\" in v:
            raise ValueError(f"Collection name cannot contain path separators: {v}")
        return v

    @model_validator(mode="after")
    def validate_unique_paths(self) -> "Manifest":
        """Ensures every logical path maps to at most one record."""
        seen: set[str] = set()
        for record in self.records:
            if record.logical_path in seen:
                raise ValueError(
                    f"Duplicate logical path '{record.logical_path}' in manifest "
                    f"'{self.collection_name}'."
                )
            seen.add(record.logical_path)
        return self

    def model_post_init(self, __context: Any) -> None:
        self._by_path = {record.logical_path: record for record in self.records}

    @property
    def records_by_path(self) -> Mapping[str, ManifestRecord]:
        """A read-only view of the records keyed by logical path."""
        return MappingProxyType(self._by_path)

    def get(self, logical_path: str) -> ManifestRecord | None:
        return self._by_path.get(logical_path)

    def __contains__(self, logical_path: object) -> bool:
        return logical_path in self._by_path

    def __len__(self) -> int:
        return len(self._by_path)

    def __iter__(self) -> Iterator[str]:  # type: ignore[override]
        return iter(self._by_path)

    @classmethod
    def from_records(
        cls, collection_name: str, records: Iterable[ManifestRecord | dict[str, Any]]
    ) -> "Manifest":
        """
        Builds a manifest from records or record dictionaries.

        Raises:
            ManifestError: If a record is invalid or a logical path is duplicated.
        """
        try:
            return cls(
                collection_name=collection_name,
                records=tuple(
                    r if isinstance(r, ManifestRecord) else ManifestRecord(**r)
                    for r in records
                ),
            )
        except ValidationError as e:
            raise ManifestError(
                f"Invalid manifest for '{collection_name}':\n{e}"
            ) from e

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Manifest":
        """
        Builds a manifest from a decoded manifest document.

        The document looks like::

            {"name": "apache2",
             "files": [{"name": "recipes/default.rb", "path": "recipes/default.rb",
                        "checksum": "...", "url": "https://..."}]}

        A file entry without a `name` uses its `path` as the logical path.
        """
        if not isinstance(data, dict):
            raise ManifestError("Manifest document must be a JSON object.")

        name = data.get("name") or data.get("collection_name")
        if not name:
            raise ManifestError("Manifest document is missing its 'name'.")

        files = data.get("files", data.get("all_files", []))
        if not isinstance(files, list):
            raise ManifestError(f"Manifest '{name}': 'files' must be a list.")

        records = []
        for index, entry in enumerate(files):
            if not isinstance(entry, dict):
                raise ManifestError(
                    f"Manifest '{name}': file entry #{index} is not an object."
                )
            storage_path = entry.get("path") or entry.get("storage_path")
            records.append(
                {
                    "logical_path": entry.get("name")
                    or entry.get("logical_path")
                    or storage_path
                    or "",
                    "storage_path": storage_path or "",
                    "checksum": entry.get("checksum", ""),
                    "url": entry.get("url", ""),
                    "specificity": entry.get("specificity", "default"),
                }
            )
        return cls.from_records(name, records)


def load_manifest(manifest_path: Path) -> Manifest:
    """
    Reads a JSON manifest document from disk.

    Raises:
        ManifestError: If the file cannot be read, decoded or validated.
    """
    try:
        with open(manifest_path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ManifestError(f"Could not read manifest '{manifest_path}': {e}") from e
    return Manifest.from_dict(data)
