from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from wharf.config import Config

MANIFEST = {
    "resources/js/app.ts": {
        "file": "app.3657b05e.js",
        "src": "resources/js/app.ts",
        "isEntry": True,
        "imports": ["_ace.a1f217ec.js"],
        "css": ["app.d90c71c1.css"],
    },
    "resources/css/app.css": {
        "file": "app.2b8046fe.css",
        "src": "resources/css/app.css",
        "isEntry": True,
    },
}


class FakeStream:
    def __init__(self, lines: list[bytes]) -> None:
        self._queue: asyncio.Queue[bytes] = asyncio.Queue()
        for line in lines:
            self._queue.put_nowait(line)

    def feed(self, line: bytes) -> None:
        self._queue.put_nowait(line)

    async def readline(self) -> bytes:
        return await self._queue.get()


class FakeProcess:
    """Stands in for ``asyncio.subprocess.Process`` with scripted output."""

    def __init__(self, lines: list[bytes] | None = None, *, exit_code: int | None = None, stubborn: bool = False):
        self.pid = 4242
        self.stdout = FakeStream(lines or [])
        self.returncode: int | None = None
        self.stubborn = stubborn
        self.terminated = False
        self.killed = False
        self._exited = asyncio.Event()
        if exit_code is not None:
            self.exit(exit_code)

    def exit(self, code: int) -> None:
        if self.returncode is not None:
            return
        self.returncode = code
        self.stdout.feed(b"")
        self._exited.set()

    def terminate(self) -> None:
        self.terminated = True
        if not self.stubborn:
            self.exit(-15)

    def kill(self) -> None:
        self.killed = True
        self.exit(-9)

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode


def ready_line(port: int, host: str = "localhost") -> bytes:
    return f"  \x1b[32m➜\x1b[39m  Local:   http://{host}:\x1b[1m{port}\x1b[22m/\n".encode()


def port_of(command: tuple[str, ...]) -> int:
    return int(command[command.index("--port") + 1])


@pytest.fixture
def manifest_document():
    return json.loads(json.dumps(MANIFEST))


@pytest.fixture
def write_manifest(tmp_path):
    def _write(document: object, path: Path | None = None) -> Path:
        target = path or tmp_path / "dist" / ".vite" / "manifest.json"
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(document), encoding="utf-8")
        return target

    return _write


@pytest.fixture
def config(tmp_path):
    return Config(
        root=tmp_path,
        entrypoints={"app": "resources/js/app.ts"},
        command=("vite",),
        port=5173,
        port_attempts=3,
        startup_timeout=1.0,
        shutdown_timeout=0.1,
    )


@pytest.fixture
def spawned(monkeypatch):
    """Replace process creation with scripted ``FakeProcess`` instances.

    Each spawn pops the first queued script and records its command line.
    """

    class _Spawned:
        def __init__(self) -> None:
            self.scripts: list = []
            self.commands: list[tuple[str, ...]] = []
            self.kwargs: list[dict[str, object]] = []
            self.processes: list[FakeProcess] = []

        def ready(self, **kwargs: object) -> None:
            self.scripts.append(lambda command: FakeProcess([b"vite v5.4.0\n", ready_line(port_of(command))], **kwargs))

        def in_use(self) -> None:
            self.scripts.append(
                lambda command: FakeProcess([f"error: Port {port_of(command)} is already in use\n".encode()], exit_code=1),
            )

        def script(self, factory) -> None:
            self.scripts.append(factory)

        def port(self, index: int) -> int:
            return port_of(self.commands[index])

    state = _Spawned()

    async def _fake_exec(*command: str, **kwargs: object) -> FakeProcess:
        state.commands.append(command)
        state.kwargs.append(kwargs)
        process = state.scripts.pop(0)(command)
        state.processes.append(process)
        return process

    monkeypatch.setattr("wharf.devserver.asyncio.create_subprocess_exec", _fake_exec)
    monkeypatch.setattr("wharf.devserver.port_available", lambda _host, _port: True)
    return state


@pytest.fixture
def fake_process():
    return FakeProcess


@pytest.fixture
def ready():
    return ready_line
