"""Lifecycle management for the bundler's live dev server process."""

from __future__ import annotations

import asyncio
import atexit
import errno
import logging
import os
import re
import signal
import socket
import time
from contextlib import suppress
from dataclasses import dataclass
from os import environ
from subprocess import PIPE, STDOUT
from typing import TYPE_CHECKING, Any

from anyio import Path as APath

from wharf.errors import DevServerExitedError, PortConflictError, ProcessSpawnError

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path
    from types import TracebackType

    from wharf.config import Config

logger = logging.getLogger(__name__)

_ANSI = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")
_ORIGIN = re.compile(r"(https?://[\w.\-]+|https?://\[[0-9a-fA-F:]+\]):(\d+)")
_PORT_IN_USE = re.compile(r"(port \d+ is (already )?in use|EADDRINUSE|address already in use)", re.IGNORECASE)
_TAIL_LINES = 20
_FORWARDED_SIGNALS = (signal.SIGTERM, signal.SIGINT)


@dataclass(frozen=True, slots=True)
class Stopped:
    pass


@dataclass(frozen=True, slots=True)
class Starting:
    port: int
    attempt: int = 0


@dataclass(frozen=True, slots=True)
class Running:
    origin: str
    port: int


@dataclass(frozen=True, slots=True)
class Failed:
    reason: Exception


DevServerState = Stopped | Starting | Running | Failed


class _PortInUseError(Exception):
    pass


def port_available(host: str, port: int) -> bool:
    try:
        infos = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    except socket.gaierror:
        return False

    for family, kind, proto, _, address in infos:
        try:
            sock = socket.socket(family, kind, proto)
        except OSError:
            continue
        with sock:
            try:
                sock.bind(address)
            except OSError as exc:
                # e.g. ::1 resolved but not configured
                if exc.errno == errno.EADDRNOTAVAIL:
                    continue
                return False
    return True


class DevServer:
    """Owns one dev server child process and publishes its origin once bound.

    Transitions are serialized by a lock. Readers only ever see the current
    state snapshot, which is replaced (never mutated) on each transition.
    """

    def __init__(self, config: Config) -> None:
        self._config = config
        self._state: DevServerState = Stopped()
        self._lock = asyncio.Lock()
        self._process: asyncio.subprocess.Process | None = None
        self._monitor: asyncio.Task[None] | None = None
        self._output: list[str] = []
        self._atexit: Callable[[], None] | None = None
        self._signals: dict[signal.Signals, Any] = {}
        self._signal_task: asyncio.Task[None] | None = None

    @property
    def config(self) -> Config:
        return self._config

    @property
    def state(self) -> DevServerState:
        return self._state

    @property
    def origin(self) -> str | None:
        state = self._state
        return state.origin if isinstance(state, Running) else None

    @property
    def running(self) -> bool:
        return isinstance(self._state, Running)

    @property
    def hot_file(self) -> Path | None:
        hot_file = self._config.hot_file
        if hot_file is None or hot_file.is_absolute():
            return hot_file
        return self._config.root / hot_file

    def _transition(self, state: DevServerState) -> None:
        previous, self._state = self._state, state
        logger.info("Dev server %s -> %s", type(previous).__name__, state)

    def _candidate_ports(self) -> list[int]:
        first = self._config.port
        return list(range(first, min(first + self._config.port_attempts, 65536)))

    def _command(self, port: int) -> list[str]:
        return [
            *self._config.command,
            "--host",
            self._config.host,
            "--port",
            str(port),
            "--strictPort",
            *self._config.args,
        ]

    async def start(self) -> str:
        """Spawn the dev server and wait until it reports the origin it is bound to."""
        async with self._lock:
            state = self._state
            if isinstance(state, Running):
                return state.origin

            for attempt, port in enumerate(self._candidate_ports()):
                if not port_available(self._config.host, port):
                    logger.warning("Port %d on %s is busy, trying the next candidate", port, self._config.host)
                    continue

                self._transition(Starting(port=port, attempt=attempt))
                try:
                    origin, bound = await self._launch(port)
                except _PortInUseError:
                    logger.warning("Dev server could not bind port %d, trying the next candidate", port)
                    continue
                except asyncio.CancelledError:
                    self._transition(Stopped())
                    raise
                except Exception as exc:
                    self._transition(Failed(reason=exc))
                    raise

                self._transition(Running(origin=origin, port=bound))
                await self._write_hot_file(origin)
                return origin

            msg = (
                f"No free port for the dev server on {self._config.host} "
                f"after {self._config.port_attempts} attempts starting at {self._config.port}"
            )
            error = PortConflictError(msg)
            self._transition(Failed(reason=error))
            raise error

    async def _launch(self, port: int) -> tuple[str, int]:
        self._output = []
        try:
            process = await asyncio.create_subprocess_exec(
                *self._command(port),
                stdout=PIPE,
                stderr=STDOUT,
                cwd=self._config.root,
                env={**environ, **self._config.env},
            )
        except OSError as exc:
            msg = f"Failed to launch the dev server {self._config.command[0]!r}: {exc}"
            raise ProcessSpawnError(msg) from exc

        try:
            origin, bound = await asyncio.wait_for(self._await_ready(process), timeout=self._config.startup_timeout)
        except TimeoutError as exc:
            await self._terminate(process)
            msg = f"The dev server did not report a bound origin within {self._config.startup_timeout}s"
            raise ProcessSpawnError(msg) from exc
        except BaseException:
            await self._terminate(process)
            raise

        self._process = process
        self._monitor = asyncio.create_task(self._watch(process))
        self._monitor.add_done_callback(self._log_monitor_error)
        self._register_atexit(process)
        self._install_signal_handlers()
        return origin, bound

    async def _await_ready(self, process: asyncio.subprocess.Process) -> tuple[str, int]:
        stream = process.stdout
        if stream is None:
            msg = "The dev server process has no output stream"
            raise ProcessSpawnError(msg)

        while line := await stream.readline():
            text = self._record(line)
            if _PORT_IN_USE.search(text):
                raise _PortInUseError(text)
            if match := _ORIGIN.search(text):
                return f"{match.group(1)}:{match.group(2)}", int(match.group(2))

        returncode = await process.wait()
        raise DevServerExitedError(returncode, "\n".join(self._output))

    def _record(self, line: bytes) -> str:
        text = _ANSI.sub("", line.decode(errors="replace")).strip()
        if text:
            logger.debug("[dev server] %s", text)
            self._output = [*self._output[-(_TAIL_LINES - 1) :], text]
        return text

    async def _watch(self, process: asyncio.subprocess.Process) -> None:
        if process.stdout is not None:
            while line := await process.stdout.readline():
                self._record(line)

        returncode = await process.wait()
        async with self._lock:
            if self._process is not process:
                return
            self._process = None
            self._monitor = None
            self._unregister_atexit()
            self._restore_signal_handlers()
            error = DevServerExitedError(returncode, "\n".join(self._output))
            logger.error("%s", error)
            self._transition(Failed(reason=error))
            await self._remove_hot_file()

    @staticmethod
    def _log_monitor_error(task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        logger.exception("Dev server monitor failed", exc_info=exc)

    async def stop(self) -> None:
        """Terminate the dev server. Stopping a stopped server does nothing."""
        async with self._lock:
            process, monitor = self._process, self._monitor
            self._process = None
            self._monitor = None
            if monitor is not None and not monitor.done():
                monitor.cancel()
                with suppress(asyncio.CancelledError):
                    await monitor
            if process is not None:
                self._unregister_atexit()
                await self._terminate(process)
            self._restore_signal_handlers()
            await self._remove_hot_file()
            if not isinstance(self._state, Stopped):
                self._transition(Stopped())

    async def restart(self) -> str:
        await self.stop()
        return await self.start()

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return

        with suppress(ProcessLookupError):
            process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=self._config.shutdown_timeout)
        except TimeoutError:
            logger.warning("Dev server did not exit within %ss, killing it", self._config.shutdown_timeout)
            with suppress(ProcessLookupError):
                process.kill()
            await process.wait()

    def _register_atexit(self, process: asyncio.subprocess.Process) -> None:
        self._unregister_atexit()
        self._atexit = _release_on_exit(process, self._config.shutdown_timeout)
        atexit.register(self._atexit)

    def _unregister_atexit(self) -> None:
        if self._atexit is not None:
            atexit.unregister(self._atexit)
            self._atexit = None

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in _FORWARDED_SIGNALS:
            previous = signal.getsignal(signum)
            try:
                loop.add_signal_handler(signum, self._on_signal, signum)
            except (NotImplementedError, RuntimeError, ValueError):
                # only a loop in the main thread receives signals
                logger.debug("Signals are not forwarded to the dev server from this loop")
                return
            self._signals[signum] = previous

    def _restore_signal_handlers(self) -> None:
        signals, self._signals = self._signals, {}
        if not signals:
            return
        loop = asyncio.get_running_loop()
        for signum, previous in signals.items():
            loop.remove_signal_handler(signum)
            if previous is not None:
                signal.signal(signum, previous)

    def _on_signal(self, signum: signal.Signals) -> None:
        logger.warning("Received %s, stopping the dev server", signum.name)
        self._signal_task = asyncio.get_running_loop().create_task(self._stop_and_reraise(signum))

    async def _stop_and_reraise(self, signum: signal.Signals) -> None:
        await self.stop()
        # the previous handler is back in place and decides how the process exits
        signal.raise_signal(signum)

    async def _write_hot_file(self, origin: str) -> None:
        if (hot_file := self.hot_file) is None:
            return
        path = APath(hot_file)
        await path.parent.mkdir(parents=True, exist_ok=True)
        await path.write_text(origin, encoding="utf-8")

    async def _remove_hot_file(self) -> None:
        if (hot_file := self.hot_file) is None:
            return
        await APath(hot_file).unlink(missing_ok=True)

    async def __aenter__(self) -> DevServer:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.stop()


def _exited(process: asyncio.subprocess.Process) -> bool:
    if process.returncode is not None:
        return True
    try:
        pid, _ = os.waitpid(process.pid, os.WNOHANG)
    except ChildProcessError:
        return True
    return pid != 0


def _release_on_exit(process: asyncio.subprocess.Process, timeout: float) -> Callable[[], None]:
    """Build an exit hook that stops ``process`` if the event loop never did.

    The loop is gone by then, so the hook polls for the exit itself.
    """

    def _release() -> None:
        if process.returncode is not None:
            return
        with suppress(ProcessLookupError):
            process.terminate()
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if _exited(process):
                return
            time.sleep(0.05)
        logger.warning("Dev server did not exit within %ss, killing it", timeout)
        with suppress(ProcessLookupError):
            process.kill()

    return _release
