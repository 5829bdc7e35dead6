"""Named, process-local line channels backed by Unix domain sockets.

A pipe name maps to ``<pipe_dir>/<name>.sock``. The owner side opens a
`PipeListener` that accepts exactly one peer; the other side reaches it with
`connect_pipe`. Both ends exchange newline-terminated UTF-8 lines through a
`PipeConnection`.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from enum import Enum
from pathlib import Path

from lt_common.errors import (
    ConfigurationError,
    PipeConnectTimeout,
    PipeError,
    wrap_error,
)
from lt_common.protocol import ControlMessage

logger = logging.getLogger(__name__)

PIPE_DIR_ENV = "LT_PIPE_DIR"
SOCKET_SUFFIX = ".sock"
_CLOSE_TIMEOUT = 1.0


def default_pipe_dir() -> Path:
    """Directory holding pipe sockets when the caller does not pick one."""
    configured = os.environ.get(PIPE_DIR_ENV)
    if configured:
        return Path(configured)
    return Path(tempfile.gettempdir()) / "lt-pipes"


def pipe_path(name: str, pipe_dir: Path | str | None = None) -> Path:
    """Return the socket path backing pipe `name`."""
    if not name or not name.strip():
        raise ConfigurationError("Pipe name must not be empty")
    if "/" in name or "\\" in name or name in {".", ".."}:
        raise ConfigurationError(
            f"Invalid pipe name {name!r}", context={"pipe_name": name}
        )
    base = Path(pipe_dir) if pipe_dir is not None else default_pipe_dir()
    return base / f"{name}{SOCKET_SUFFIX}"


def _unlink_quietly(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.debug("Could not remove pipe socket %s: %s", path, exc)


class PipeConnection:
    """A connected, line-oriented stream between two processes."""

    def __init__(
        self,
        name: str,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        self.name = name
        self._reader = reader
        self._writer = writer
        self._closed = False
        self._eof = False

    @property
    def is_connected(self) -> bool:
        return not (self._closed or self._eof or self._writer.is_closing())

    async def send_line(self, text: str) -> None:
        """Write one line, appending the newline when missing."""
        if self._closed or self._writer.is_closing():
            raise PipeError(
                f"Pipe {self.name} is not connected", context={"pipe_name": self.name}
            )
        line = text if text.endswith("\n") else f"{text}\n"
        try:
            self._writer.write(line.encode("utf-8"))
            await self._writer.drain()
        except (ConnectionError, OSError, RuntimeError) as exc:
            raise PipeError(
                f"Failed to write to pipe {self.name}: {exc}",
                context={"pipe_name": self.name},
                cause=exc,
            ) from exc

    async def send(self, message: ControlMessage) -> None:
        await self.send_line(message.encode())

    async def read_line(self) -> str | None:
        """Return the next line without its terminator, or None at end of stream."""
        if self._closed or self._eof:
            return None
        try:
            data = await self._reader.readline()
        except (ConnectionError, OSError, ValueError) as exc:
            raise PipeError(
                f"Failed to read from pipe {self.name}: {exc}",
                context={"pipe_name": self.name},
                cause=exc,
            ) from exc
        if not data:
            self._eof = True
            return None
        return data.decode("utf-8", errors="replace").rstrip("\r\n")

    async def lines(self):
        """Yield lines until the peer closes the stream."""
        while True:
            line = await self.read_line()
            if line is None:
                return
            yield line

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        try:
            await asyncio.wait_for(self._writer.wait_closed(), timeout=_CLOSE_TIMEOUT)
        except (ConnectionError, OSError, asyncio.TimeoutError) as exc:
            logger.debug("Pipe %s closed uncleanly: %s", self.name, exc)

    async def __aenter__(self) -> "PipeConnection":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


class PipeState(str, Enum):
    CREATED = "created"
    WAITING = "waiting"
    CONNECTED = "connected"
    CLOSED = "closed"


class PipeListener:
    """Owner side of a named pipe serving a single peer."""

    def __init__(self, name: str, pipe_dir: Path | str | None = None) -> None:
        self.name = name
        self.path = pipe_path(name, pipe_dir)
        self._state = PipeState.CREATED
        self._server: asyncio.AbstractServer | None = None
        self._accepted: asyncio.Future[PipeConnection] | None = None
        self._connection: PipeConnection | None = None

    @property
    def state(self) -> PipeState:
        return self._state

    @property
    def connection(self) -> PipeConnection | None:
        return self._connection

    @property
    def is_connected(self) -> bool:
        return self._connection is not None and self._connection.is_connected

    async def open(self) -> "PipeListener":
        """Start accepting; a stale socket file with the same name is replaced."""
        if self._state is not PipeState.CREATED:
            raise PipeError(
                f"Pipe {self.name} was already opened", context={"pipe_name": self.name}
            )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        _unlink_quietly(self.path)
        self._accepted = asyncio.get_running_loop().create_future()
        try:
            self._server = await asyncio.start_unix_server(
                self._on_client, path=str(self.path)
            )
        except OSError as exc:
            self._state = PipeState.CLOSED
            raise PipeError(
                f"Failed to open pipe {self.name}: {exc}",
                context={"pipe_name": self.name, "path": str(self.path)},
                cause=exc,
            ) from exc
        self._state = PipeState.WAITING
        logger.debug("Pipe %s listening on %s", self.name, self.path)
        return self

    async def _on_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        accepted = self._accepted
        if accepted is None or accepted.done() or self._state is not PipeState.WAITING:
            logger.debug("Pipe %s rejected an extra peer", self.name)
            writer.close()
            return
        connection = PipeConnection(self.name, reader, writer)
        self._connection = connection
        self._state = PipeState.CONNECTED
        accepted.set_result(connection)

    async def wait_for_connection(self, timeout: float | None = None) -> PipeConnection:
        """Wait for the peer; the pending accept survives a timeout."""
        if self._accepted is None or self._state is PipeState.CLOSED:
            raise PipeError(
                f"Pipe {self.name} is not open", context={"pipe_name": self.name}
            )
        try:
            return await asyncio.wait_for(asyncio.shield(self._accepted), timeout)
        except asyncio.TimeoutError as exc:
            raise PipeConnectTimeout(
                f"No peer connected to pipe {self.name} within {timeout}s",
                context={"pipe_name": self.name, "timeout": timeout},
                cause=exc,
            ) from exc
        except asyncio.CancelledError:
            task = asyncio.current_task()
            own_cancel = task is not None and task.cancelling() > 0
            if not own_cancel and self._state is PipeState.CLOSED:
                raise PipeError(
                    f"Pipe {self.name} was closed while waiting",
                    context={"pipe_name": self.name},
                ) from None
            raise

    async def close(self) -> None:
        """Close the peer and the server and remove the socket file."""
        if self._state is PipeState.CLOSED:
            return
        self._state = PipeState.CLOSED
        if self._accepted is not None and not self._accepted.done():
            self._accepted.cancel()
        if self._connection is not None:
            try:
                await self._connection.close()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Error closing pipe %s connection: %s", self.name, exc)
        if self._server is not None:
            self._server.close()
            try:
                await asyncio.wait_for(self._server.wait_closed(), timeout=_CLOSE_TIMEOUT)
            except (asyncio.TimeoutError, OSError) as exc:
                logger.debug("Pipe %s server did not close cleanly: %s", self.name, exc)
        _unlink_quietly(self.path)

    async def __aenter__(self) -> "PipeListener":
        if self._state is PipeState.CREATED:
            await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


async def connect_pipe(
    name: str,
    *,
    timeout: float,
    pipe_dir: Path | str | None = None,
    poll_interval: float = 0.05,
) -> PipeConnection:
    """Connect to pipe `name`, polling until a listener accepts or `timeout` elapses."""
    path = pipe_path(name, pipe_dir)
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    last_error: Exception | None = None
    while True:
        remaining = deadline - loop.time()
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_unix_connection(str(path)), max(remaining, poll_interval)
            )
            return PipeConnection(name, reader, writer)
        except (FileNotFoundError, ConnectionRefusedError, asyncio.TimeoutError) as exc:
            last_error = exc
        except OSError as exc:
            raise wrap_error(
                PipeError,
                f"Cannot connect to pipe {name}: {exc}",
                context={"pipe_name": name, "path": str(path)},
                cause=exc,
            ) from exc
        remaining = deadline - loop.time()
        if remaining <= 0:
            raise PipeConnectTimeout(
                f"Could not connect to pipe {name} within {timeout}s",
                context={"pipe_name": name, "timeout": timeout},
                cause=last_error,
            )
        await asyncio.sleep(min(poll_interval, remaining))
