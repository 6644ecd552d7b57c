"""Error types raised while resolving assets and managing the dev server."""

from __future__ import annotations


class WharfError(Exception):
    pass


class MissingManifestError(WharfError, FileNotFoundError):
    """Production resolution was requested before a manifest exists."""

    def __init__(self, path: object) -> None:
        self.path = path
        super().__init__(f"The manifest {path} was not found. Has the bundler been run?")


class ManifestFormatError(WharfError, ValueError):
    pass


class AssetNotFoundError(WharfError, LookupError):
    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"The asset {key!r} is not listed in the manifest")


class EntrypointNotFoundError(WharfError, LookupError):
    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"The entry point {key!r} is not registered")


class PortConflictError(WharfError, OSError):
    pass


class ProcessSpawnError(WharfError, OSError):
    pass


class DevServerExitedError(WharfError, RuntimeError):
    """The dev server process ended without being asked to stop."""

    def __init__(self, returncode: int | None, output: str = "") -> None:
        self.returncode = returncode
        self.output = output
        detail = f": {output}" if output else ""
        super().__init__(f"The dev server exited with code {returncode}{detail}")
