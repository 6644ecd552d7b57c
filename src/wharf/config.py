"""Explicit configuration passed to every wharf component."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import ClassVar

from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True, slots=True, kw_only=True)
class Config:
    """Where the bundler writes, how URLs are built and how the dev server is launched."""

    _max_port: ClassVar[int] = 65535

    root: Path = field(default_factory=Path.cwd)
    output: Path = Path("dist")
    manifest: Path | None = None
    base_url: str = ""
    entrypoints: Mapping[str, str] = field(default_factory=dict)
    host: str = "localhost"
    port: int = 5173
    port_attempts: int = 10
    command: tuple[str, ...] = ("npx", "vite")
    args: tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)
    startup_timeout: float = 30.0
    shutdown_timeout: float = 5.0
    hot_file: Path | None = None

    def __post_init__(self) -> None:
        if not self.command:
            msg = "The dev server command must not be empty"
            raise ValueError(msg)

        if not 0 < self.port <= self._max_port:
            msg = f"The port (i.e. {self.port}) must be between 1 and {self._max_port}"
            raise ValueError(msg)

        if self.port_attempts < 1:
            msg = f"The port attempts (i.e. {self.port_attempts}) must be at least 1"
            raise ValueError(msg)

        if self.startup_timeout <= 0 or self.shutdown_timeout <= 0:
            msg = "The startup and shutdown timeouts must be positive"
            raise ValueError(msg)

        object.__setattr__(self, "command", tuple(self.command))
        object.__setattr__(self, "args", tuple(self.args))
        object.__setattr__(self, "entrypoints", MappingProxyType(dict(self.entrypoints)))
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    @property
    def manifest_path(self) -> Path:
        output = self.output if self.output.is_absolute() else self.root / self.output
        if self.manifest is None:
            return output / ".vite" / "manifest.json"
        return self.manifest if self.manifest.is_absolute() else self.root / self.manifest


class Settings(BaseSettings):
    """Reads a :class:`Config` from ``WHARF_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="WHARF_", env_file=".env", extra="ignore")

    root: Path = Path()
    output: Path = Path("dist")
    manifest: Path | None = None
    base_url: str = ""
    entrypoints: dict[str, str] = {}
    host: str = "localhost"
    port: int = 5173
    port_attempts: int = 10
    command: list[str] = ["npx", "vite"]
    args: list[str] = []
    env: dict[str, str] = {}
    startup_timeout: float = 30.0
    shutdown_timeout: float = 5.0
    hot_file: Path | None = None
    dev: bool = False

    def to_config(self) -> Config:
        return Config(
            root=self.root.resolve(),
            output=self.output,
            manifest=self.manifest,
            base_url=self.base_url,
            entrypoints=self.entrypoints,
            host=self.host,
            port=self.port,
            port_attempts=self.port_attempts,
            command=tuple(self.command),
            args=tuple(self.args),
            env=self.env,
            startup_timeout=self.startup_timeout,
            shutdown_timeout=self.shutdown_timeout,
            hot_file=self.hot_file,
        )
