"""Parsing and indexing of the bundler's production manifest."""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from wharf.errors import AssetNotFoundError, ManifestFormatError, MissingManifestError

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


def _unique(values: Any, *, key: str, field_name: str) -> tuple[str, ...]:
    if values is None:
        return ()
    if not isinstance(values, list) or not all(isinstance(value, str) for value in values):
        msg = f"The manifest entry {key!r} field {field_name!r} must be a list of strings"
        raise ManifestFormatError(msg)
    return tuple(dict.fromkeys(values))


@dataclass(frozen=True, slots=True)
class ManifestEntry:
    key: str
    file: str
    src: str
    is_entry: bool = False
    imports: tuple[str, ...] = ()
    dynamic_imports: tuple[str, ...] = ()
    css: tuple[str, ...] = ()
    assets: tuple[str, ...] = ()

    @classmethod
    def from_json(cls, key: str, data: Any) -> ManifestEntry:
        if not isinstance(data, dict):
            msg = f"The manifest entry {key!r} must be an object"
            raise ManifestFormatError(msg)

        file = data.get("file")
        if not isinstance(file, str) or not file:
            msg = f"The manifest entry {key!r} is missing its output file"
            raise ManifestFormatError(msg)

        src = data.get("src", key)
        if not isinstance(src, str):
            msg = f"The manifest entry {key!r} has a non-string src"
            raise ManifestFormatError(msg)

        return cls(
            key=key,
            file=file,
            src=src,
            is_entry=bool(data.get("isEntry", False)),
            imports=_unique(data.get("imports"), key=key, field_name="imports"),
            dynamic_imports=_unique(data.get("dynamicImports"), key=key, field_name="dynamicImports"),
            css=_unique(data.get("css"), key=key, field_name="css"),
            assets=_unique(data.get("assets"), key=key, field_name="assets"),
        )


@dataclass(frozen=True, slots=True)
class ResolvedAsset:
    file: str
    css: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True, eq=False)
class Manifest(Mapping[str, ManifestEntry]):
    """Read-only view over one loaded manifest generation."""

    entries: Mapping[str, ManifestEntry]
    digest: str
    path: Path | None = None
    _sources: Mapping[str, str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "entries", MappingProxyType(dict(self.entries)))
        sources: dict[str, str] = {}
        for key, entry in self.entries.items():
            sources.setdefault(entry.src, key)
        object.__setattr__(self, "_sources", MappingProxyType(sources))

    def __getitem__(self, key: str) -> ManifestEntry:
        return self.entries[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def by_source(self, source_path: str) -> ManifestEntry | None:
        key = self._sources.get(source_path)
        if key is None:
            return self.entries.get(source_path)
        return self.entries[key]

    @classmethod
    def from_json(cls, raw: str | bytes, *, path: Path | None = None) -> Manifest:
        digest = hashlib.sha256(raw.encode("utf-8") if isinstance(raw, str) else raw).hexdigest()
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as exc:
            msg = f"The manifest {path or '<memory>'} is not valid JSON: {exc}"
            raise ManifestFormatError(msg) from exc

        if not isinstance(document, dict):
            msg = f"The manifest {path or '<memory>'} must be a JSON object"
            raise ManifestFormatError(msg)

        entries = {key: ManifestEntry.from_json(key, value) for key, value in document.items()}
        return cls(entries=entries, digest=digest, path=path)


def load_manifest(path: Path) -> Manifest:
    if not path.is_file():
        raise MissingManifestError(path)

    manifest = Manifest.from_json(path.read_bytes(), path=path)
    logger.info("Loaded manifest %s with %d entries (%s)", path, len(manifest), manifest.digest[:12])
    return manifest


class ManifestStore:
    """Loads a manifest once and answers source path lookups against it."""

    def __init__(self, manifest: Manifest) -> None:
        self._manifest = manifest
        self._resolved: dict[str, ResolvedAsset] = {}

    @property
    def manifest(self) -> Manifest:
        return self._manifest

    @classmethod
    def load(cls, path: Path) -> ManifestStore:
        return cls(load_manifest(path))

    def resolve(self, source_path: str) -> ResolvedAsset:
        if (cached := self._resolved.get(source_path)) is not None:
            return cached

        entry = self._manifest.by_source(source_path)
        if entry is None:
            raise AssetNotFoundError(source_path)

        # first result wins under concurrent misses
        return self._resolved.setdefault(source_path, ResolvedAsset(file=entry.file, css=entry.css))
