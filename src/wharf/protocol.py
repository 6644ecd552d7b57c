"""Shared protocol definitions for template renderers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Sequence


class AssetSource(Protocol):
    """The calls a renderer makes to turn entry points into URLs."""

    def resolve_asset(self, path: str) -> str:
        """Return the URL that serves the source file at ``path``."""

    def scripts_for(self, name: str) -> Sequence[str]:
        """Return the ordered script URLs an entry point needs."""

    def styles_for(self, name: str) -> Sequence[str]:
        """Return the ordered stylesheet URLs an entry point needs."""

    def is_dev_mode(self) -> bool:
        """Report whether URLs currently point at the dev server."""
