"""Per entry point closure of scripts and stylesheets derived from a manifest."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from anyio import Path as APath

from wharf.errors import EntrypointNotFoundError, ManifestFormatError, MissingManifestError

if TYPE_CHECKING:
    from pathlib import Path

    from wharf.manifest import Manifest, ManifestEntry

logger = logging.getLogger(__name__)

_STYLESHEET_SUFFIXES = (".css",)


def join_url(base_url: str, path: str) -> str:
    if not base_url:
        return path
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


@dataclass(frozen=True, slots=True)
class EntrypointBundle:
    scripts: tuple[str, ...] = ()
    styles: tuple[str, ...] = ()


class EntrypointGraphBuilder:
    """Walks the static import graph of every manifest entry.

    Scripts are collected in depth-first pre-order starting at the entry itself,
    styles in the same visiting order. A CSS-only entry contributes its output
    to the styles. ``dynamicImports`` load on demand and are never inlined.
    Results are cached by manifest digest, so a manifest generation is only
    walked once however many times ``build`` is called.
    """

    def __init__(self, entrypoints: Mapping[str, str] | None = None, *, base_url: str = "") -> None:
        self._entrypoints = dict(entrypoints or {})
        self._base_url = base_url
        self._cache: dict[str, Mapping[str, EntrypointBundle]] = {}

    def build(self, manifest: Manifest) -> Mapping[str, EntrypointBundle]:
        if (cached := self._cache.get(manifest.digest)) is not None:
            return cached

        names = self._names(manifest)
        published: dict[str, EntrypointBundle] = {}
        for entry in manifest.values():
            if not entry.is_entry:
                continue
            bundle = self._collect(manifest, entry)
            # a source mapped under several names is published under each of them
            for name in names.get(entry.src, [entry.src]):
                published[name] = bundle
        bundles = MappingProxyType(dict(sorted(published.items())))
        self._cache = {manifest.digest: bundles}
        logger.debug("Built %d entry point bundles for manifest %s", len(bundles), manifest.digest[:12])
        return bundles

    def _names(self, manifest: Manifest) -> dict[str, list[str]]:
        names: dict[str, list[str]] = {}
        for name, source in self._entrypoints.items():
            entry = manifest.by_source(source)
            if entry is None or not entry.is_entry:
                raise EntrypointNotFoundError(name)
            names.setdefault(entry.src, []).append(name)
        return names

    def _collect(self, manifest: Manifest, root: ManifestEntry) -> EntrypointBundle:
        scripts: dict[str, None] = {}
        styles: dict[str, None] = {}
        visited: set[str] = set()
        stack = [root.key]

        while stack:
            key = stack.pop()
            if key in visited:
                continue
            visited.add(key)

            entry = manifest.get(key)
            if entry is None:
                logger.warning("Skipping import %r of %r: not listed in the manifest", key, root.key)
                continue

            target = styles if entry.file.endswith(_STYLESHEET_SUFFIXES) else scripts
            target.setdefault(join_url(self._base_url, entry.file))
            for css in entry.css:
                styles.setdefault(join_url(self._base_url, css))

            # reversed so the first import is popped next
            stack.extend(reversed([imported for imported in entry.imports if imported not in visited]))

        return EntrypointBundle(scripts=tuple(scripts), styles=tuple(styles))


def dump_entrypoints(bundles: Mapping[str, EntrypointBundle]) -> dict[str, dict[str, list[str]]]:
    return {name: {"scripts": list(bundle.scripts), "styles": list(bundle.styles)} for name, bundle in bundles.items()}


def _urls(value: dict[str, Any], *, name: str, field_name: str, path: Path | None) -> tuple[str, ...]:
    urls = value.get(field_name, [])
    if not isinstance(urls, list) or not all(isinstance(url, str) for url in urls):
        msg = f"The entry point {name!r} field {field_name!r} in {path or '<memory>'} must be a list of strings"
        raise ManifestFormatError(msg)
    return tuple(urls)


def parse_entrypoints(document: Any, *, path: Path | None = None) -> Mapping[str, EntrypointBundle]:
    if not isinstance(document, dict):
        msg = f"The entry points index {path or '<memory>'} must be a JSON object"
        raise ManifestFormatError(msg)

    bundles: dict[str, EntrypointBundle] = {}
    for name, value in document.items():
        if not isinstance(value, dict):
            msg = f"The entry point {name!r} in {path or '<memory>'} must be an object"
            raise ManifestFormatError(msg)
        bundles[name] = EntrypointBundle(
            scripts=_urls(value, name=name, field_name="scripts", path=path),
            styles=_urls(value, name=name, field_name="styles", path=path),
        )
    return MappingProxyType(bundles)


async def write_entrypoints(path: Path, bundles: Mapping[str, EntrypointBundle]) -> None:
    target = APath(path)
    await target.parent.mkdir(parents=True, exist_ok=True)
    await target.write_text(f"{json.dumps(dump_entrypoints(bundles), indent=2)}\n", encoding="utf-8")


async def read_entrypoints(path: Path) -> Mapping[str, EntrypointBundle]:
    source = APath(path)
    if not await source.is_file():
        raise MissingManifestError(path)

    try:
        document = json.loads(await source.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        msg = f"The entry points index {path} is not valid JSON: {exc}"
        raise ManifestFormatError(msg) from exc
    return parse_entrypoints(document, path=path)
