from wharf.config import Config, Settings
from wharf.core import Wharf
from wharf.devserver import DevServer, DevServerState, Failed, Running, Starting, Stopped
from wharf.entrypoints import EntrypointBundle, EntrypointGraphBuilder, read_entrypoints, write_entrypoints
from wharf.errors import (
    AssetNotFoundError,
    DevServerExitedError,
    EntrypointNotFoundError,
    ManifestFormatError,
    MissingManifestError,
    PortConflictError,
    ProcessSpawnError,
    WharfError,
)
from wharf.manifest import Manifest, ManifestEntry, ManifestStore, ResolvedAsset, load_manifest
from wharf.resolver import AssetResolver

__all__ = [
    "AssetNotFoundError",
    "AssetResolver",
    "Config",
    "DevServer",
    "DevServerExitedError",
    "DevServerState",
    "EntrypointBundle",
    "EntrypointGraphBuilder",
    "EntrypointNotFoundError",
    "Failed",
    "Manifest",
    "ManifestEntry",
    "ManifestFormatError",
    "ManifestStore",
    "MissingManifestError",
    "PortConflictError",
    "ProcessSpawnError",
    "ResolvedAsset",
    "Running",
    "Settings",
    "Starting",
    "Stopped",
    "Wharf",
    "WharfError",
    "load_manifest",
    "read_entrypoints",
    "write_entrypoints",
]
