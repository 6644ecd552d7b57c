"""Renderer-facing URL resolution in both dev and production modes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from wharf.entrypoints import EntrypointBundle, EntrypointGraphBuilder, join_url
from wharf.errors import EntrypointNotFoundError, MissingManifestError
from wharf.manifest import ManifestStore

if TYPE_CHECKING:
    from collections.abc import Mapping

    from wharf.config import Config
    from wharf.devserver import DevServer

logger = logging.getLogger(__name__)

_CLIENT_PATH = "@vite/client"


@dataclass(frozen=True, slots=True)
class _Snapshot:
    store: ManifestStore
    bundles: Mapping[str, EntrypointBundle]


class AssetResolver:
    """Answers asset and entry point lookups for the renderer.

    While the dev server is running, URLs point at its origin and carry the
    original source path. Otherwise they come from the manifest loaded by
    :meth:`load`, whose parsed form and entry point bundles are kept as one
    immutable snapshot shared by every request.
    """

    def __init__(self, config: Config, dev_server: DevServer | None = None) -> None:
        self._config = config
        self._dev_server = dev_server
        self._graph = EntrypointGraphBuilder(config.entrypoints, base_url=config.base_url)
        self._snapshot: _Snapshot | None = None

    @property
    def config(self) -> Config:
        return self._config

    @property
    def dev_server(self) -> DevServer | None:
        return self._dev_server

    @property
    def loaded(self) -> bool:
        return self._snapshot is not None

    def load(self) -> None:
        """Read the manifest and precompute every entry point bundle.

        Without a dev server to fall back on a missing manifest is fatal and is
        raised right away. With one, the error is deferred to the first
        production lookup.
        """
        try:
            store = ManifestStore.load(self._config.manifest_path)
        except MissingManifestError:
            if self._dev_server is None:
                raise
            logger.info("No manifest at %s, serving from the dev server only", self._config.manifest_path)
            self._snapshot = None
            return

        self._snapshot = _Snapshot(store=store, bundles=self._graph.build(store.manifest))

    def reload(self) -> None:
        self.load()

    def _production(self) -> _Snapshot:
        snapshot = self._snapshot
        if snapshot is None:
            raise MissingManifestError(self._config.manifest_path)
        return snapshot

    def _origin(self) -> str | None:
        return None if self._dev_server is None else self._dev_server.origin

    def _bundle(self, name: str) -> EntrypointBundle:
        bundle = self._production().bundles.get(name)
        if bundle is None:
            raise EntrypointNotFoundError(name)
        return bundle

    def is_dev_mode(self) -> bool:
        return self._origin() is not None

    def resolve_asset(self, path: str) -> str:
        if (origin := self._origin()) is not None:
            return join_url(origin, path)
        return join_url(self._config.base_url, self._production().store.resolve(path).file)

    def asset_styles(self, path: str) -> tuple[str, ...]:
        """Stylesheets the bundler extracted from the asset at ``path``."""
        if self._origin() is not None:
            return ()
        resolved = self._production().store.resolve(path)
        return tuple(join_url(self._config.base_url, css) for css in resolved.css)

    def _dev_source(self, name: str) -> str:
        """Source path the dev server serves for ``name``.

        Accepts the names production publishes: the configured names and, once a
        manifest is loaded, the source path of every entry left unnamed.
        """
        entrypoints = self._config.entrypoints
        if (source := entrypoints.get(name)) is not None:
            return source
        snapshot = self._snapshot
        if snapshot is not None and name in snapshot.bundles:
            return name
        raise EntrypointNotFoundError(name)

    def scripts_for(self, name: str) -> tuple[str, ...]:
        if (origin := self._origin()) is not None:
            return (join_url(origin, self._dev_source(name)),)
        return self._bundle(name).scripts

    def styles_for(self, name: str) -> tuple[str, ...]:
        if self._origin() is not None:
            self._dev_source(name)
            return ()
        return self._bundle(name).styles

    def client_url(self) -> str | None:
        origin = self._origin()
        return None if origin is None else join_url(origin, _CLIENT_PATH)
