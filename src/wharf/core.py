"""Integration of the dev server and asset resolver with host applications."""

from __future__ import annotations

import logging
from contextlib import ExitStack, asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

from anyio.from_thread import start_blocking_portal

from wharf.config import Config, Settings
from wharf.devserver import DevServer
from wharf.resolver import AssetResolver

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable
    from types import TracebackType

    from anyio.from_thread import BlockingPortal
    from starlette.applications import Starlette


logger = logging.getLogger(__name__)
_T = TypeVar("_T")


class _Portal:
    """An event loop in a worker thread, kept open between ``call`` and ``close``."""

    def __init__(self) -> None:
        self._stack: ExitStack | None = None
        self._portal: BlockingPortal | None = None

    @property
    def alive(self) -> bool:
        return self._portal is not None

    def call(self, func: Callable[[], Awaitable[_T]]) -> _T:
        if self._portal is None:
            stack = ExitStack()
            self._portal = stack.enter_context(start_blocking_portal(backend="asyncio"))
            self._stack = stack
        return self._portal.call(func)

    def close(self) -> None:
        stack, self._stack, self._portal = self._stack, None, None
        if stack is not None:
            stack.close()


@dataclass(frozen=True, slots=True)
class Wharf:
    """Owns the asset resolver and, in dev mode, the dev server feeding it.

    Async hosts wrap their Starlette app with ``wharf(app)`` so the dev server
    follows the app lifespan. Synchronous hosts use ``with wharf:`` (or
    ``start``/``stop``), which drives the dev server from a background loop.
    """

    config: Config
    dev: bool = field(default=False, kw_only=True)
    dev_server: DevServer | None = field(init=False)
    resolver: AssetResolver = field(init=False)
    _portal: _Portal = field(default_factory=_Portal, init=False, repr=False)

    def __post_init__(self) -> None:
        dev_server = DevServer(self.config) if self.dev else None
        object.__setattr__(self, "dev_server", dev_server)
        object.__setattr__(self, "resolver", AssetResolver(self.config, dev_server))

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> Wharf:
        settings = Settings() if settings is None else settings
        return cls(settings.to_config(), dev=settings.dev)

    async def astart(self) -> AssetResolver:
        self.resolver.load()
        if self.dev_server is not None:
            origin = await self.dev_server.start()
            logger.info("Serving assets from the dev server at %s", origin)
        return self.resolver

    async def astop(self) -> None:
        if self.dev_server is not None:
            await self.dev_server.stop()

    @asynccontextmanager
    async def lifespan(self) -> AsyncIterator[AssetResolver]:
        resolver = await self.astart()
        try:
            yield resolver
        finally:
            await self.astop()

    def __call__(self, app: Starlette) -> Starlette:
        """Tie the dev server to ``app``'s lifespan and expose the resolver on its state."""
        original_lifespan = app.router.lifespan_context

        @asynccontextmanager
        async def _lifespan(starlette_app: Starlette) -> AsyncIterator[Any]:
            async with self.lifespan(), original_lifespan(starlette_app) as state:
                yield state

        app.router.lifespan_context = _lifespan
        app.state.wharf = self.resolver
        return app

    def start(self) -> AssetResolver:
        return self._portal.call(self.astart)

    def stop(self) -> None:
        if not self._portal.alive:
            return
        try:
            self._portal.call(self.astop)
        finally:
            self._portal.close()

    def __enter__(self) -> AssetResolver:
        try:
            return self.start()
        except BaseException:
            self.stop()
            raise

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.stop()
