"""
JSON-RPC 2.0 over the stdin/stdout pipes of a tool server subprocess.

One line = one message. Requests are correlated with their responses by
id, so the server may answer in any order; every request owns its own
timeout and a torn-down session rejects whatever is still outstanding.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import os
from dataclasses import dataclass
from typing import Any

from multi_llm_mcp.errors import (
    ConnectionClosedError,
    RemoteError,
    RequestTimeoutError,
    TransportConnectionError,
)

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "multi-llm-mcp-client", "version": "0.1.0"}
CLIENT_CAPABILITIES: dict[str, Any] = {
    "roots": {"listChanged": True},
    "sampling": {},
}

DEFAULT_REQUEST_TIMEOUT_S = 30.0
DEFAULT_STARTUP_TIMEOUT_S = 30.0
_TERMINATE_GRACE_S = 5.0
_READ_CHUNK = 64 * 1024


class SessionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


@dataclass
class JsonRpcRequest:
    """JSON-RPC 2.0 request. ``id`` is None for notifications."""
    method: str
    params: dict[str, Any]
    id: int | None = None

    def to_json(self) -> str:
        message: dict[str, Any] = {"jsonrpc": "2.0"}
        if self.id is not None:
            message["id"] = self.id
        message["method"] = self.method
        message["params"] = self.params
        return json.dumps(message)


@dataclass
class PendingRequest:
    id: int
    method: str
    future: asyncio.Future[Any]
    timer: asyncio.TimerHandle | None = None


class StdioSession:
    """
    Owns one tool server child process and the requests in flight to it.

    The pending map is only touched by ``send_request`` (insert) and the
    settle paths (remove); a timer and a response race for the same slot
    and whichever pops it first settles the caller's future.
    """

    def __init__(
        self,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        *,
        name: str | None = None,
        request_timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S,
        startup_timeout_s: float = DEFAULT_STARTUP_TIMEOUT_S,
    ) -> None:
        self.command = command
        self.args = list(args or [])
        self.env = env
        self.name = name or command
        self.request_timeout_s = request_timeout_s
        self.startup_timeout_s = startup_timeout_s

        self._state = SessionState.DISCONNECTED
        self._process: asyncio.subprocess.Process | None = None
        self._pending: dict[int, PendingRequest] = {}
        self._next_id = 0
        self._buffer = b""
        self._tasks: list[asyncio.Task[None]] = []
        self.server_info: dict[str, Any] | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is SessionState.CONNECTED

    @property
    def pending_ids(self) -> list[int]:
        return sorted(self._pending)

    async def connect(self) -> None:
        """Spawn the server and perform the ``initialize`` handshake."""
        if self._state is SessionState.CONNECTED:
            return
        if self._state is SessionState.CONNECTING:
            raise TransportConnectionError("connect() already in progress", self.name)

        self._state = SessionState.CONNECTING
        self._buffer = b""
        logger.info("Starting tool server %s: %s %s", self.name, self.command, " ".join(self.args))

        try:
            self._process = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **(self.env or {})},
            )
        except OSError as exc:
            self._state = SessionState.FAILED
            raise TransportConnectionError(f"failed to spawn '{self.command}': {exc}", self.name) from exc

        self._tasks = [asyncio.create_task(self._read_stdout(self._process))]
        if self._process.stderr is not None:
            self._tasks.append(asyncio.create_task(self._drain_stderr(self._process)))

        try:
            result = await self._request(
                "initialize",
                {
                    "protocolVersion": PROTOCOL_VERSION,
                    "capabilities": CLIENT_CAPABILITIES,
                    "clientInfo": CLIENT_INFO,
                },
                timeout_s=self.startup_timeout_s,
            )
            await self._write(JsonRpcRequest(method="notifications/initialized", params={}))
        except Exception as exc:
            await self._teardown(SessionState.FAILED, ConnectionClosedError("handshake failed"))
            raise TransportConnectionError(f"handshake failed: {exc}", self.name) from exc

        self.server_info = result.get("serverInfo") if isinstance(result, dict) else None
        self._state = SessionState.CONNECTED
        logger.info("Connected to tool server %s (pid=%s)", self.name, self._process.pid)

    async def disconnect(self) -> None:
        """Terminate the server and reject every outstanding request."""
        if self._state is SessionState.DISCONNECTED and self._process is None:
            return
        logger.info("Disconnecting from tool server %s", self.name)
        await self._teardown(
            SessionState.DISCONNECTED,
            ConnectionClosedError(f"{self.name}: session closed"),
        )

    async def send_request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Send a request and wait for its correlated result."""
        if self._state is not SessionState.CONNECTED:
            raise TransportConnectionError(
                f"not connected (state={self._state.value})", self.name
            )
        return await self._request(method, params or {}, timeout_s=self.request_timeout_s)

    async def send_notification(self, method: str, params: dict[str, Any] | None = None) -> None:
        if self._state is not SessionState.CONNECTED:
            raise TransportConnectionError(
                f"not connected (state={self._state.value})", self.name
            )
        await self._write(JsonRpcRequest(method=method, params=params or {}))

    async def _request(self, method: str, params: dict[str, Any], *, timeout_s: float) -> Any:
        loop = asyncio.get_running_loop()
        self._next_id += 1
        request_id = self._next_id

        pending = PendingRequest(id=request_id, method=method, future=loop.create_future())
        pending.timer = loop.call_later(timeout_s, self._expire, request_id, timeout_s)
        self._pending[request_id] = pending

        logger.debug("-> %s #%d %s", self.name, request_id, method)
        try:
            await self._write(JsonRpcRequest(method=method, params=params, id=request_id))
            return await pending.future
        finally:
            # covers write failures and caller cancellation
            self._discard(request_id)

    async def _write(self, request: JsonRpcRequest) -> None:
        process = self._process
        if process is None or process.stdin is None:
            raise ConnectionClosedError(f"{self.name}: no stdin available")
        try:
            process.stdin.write((request.to_json() + "\n").encode("utf-8"))
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise ConnectionClosedError(f"{self.name}: write failed: {exc}") from exc

    def _expire(self, request_id: int, timeout_s: float) -> None:
        pending = self._pending.get(request_id)
        if pending is None:
            return
        logger.warning("Request #%d %s to %s timed out", request_id, pending.method, self.name)
        self._settle(request_id, error=RequestTimeoutError(pending.method, timeout_s))

    def _settle(
        self,
        request_id: int,
        *,
        result: Any = None,
        error: BaseException | None = None,
    ) -> bool:
        pending = self._pending.pop(request_id, None)
        if pending is None:
            return False
        if pending.timer is not None:
            pending.timer.cancel()
        if pending.future.done():
            return False
        if error is not None:
            pending.future.set_exception(error)
        else:
            pending.future.set_result(result)
        return True

    def _discard(self, request_id: int) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is not None and pending.timer is not None:
            pending.timer.cancel()

    def _fail_pending(self, error: Exception) -> None:
        for request_id in list(self._pending):
            self._settle(request_id, error=error)

    def feed_data(self, data: bytes) -> None:
        """Split a stdout chunk into lines; a trailing partial line waits for more data."""
        self._buffer += data
        *lines, self._buffer = self._buffer.split(b"\n")
        for line in lines:
            if line.strip():
                self._handle_message(line)

    def _handle_message(self, line: bytes) -> None:
        try:
            message = json.loads(line)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("Skipping malformed message from %s: %r", self.name, line[:200])
            return
        if not isinstance(message, dict):
            logger.warning("Skipping non-object message from %s: %r", self.name, line[:200])
            return
        if "method" in message:
            logger.debug("Ignoring server message %s from %s", message["method"], self.name)
            return

        request_id = message.get("id")
        if not isinstance(request_id, int) or request_id not in self._pending:
            logger.debug("Dropping response with unknown id %r from %s", request_id, self.name)
            return

        error = message.get("error")
        if error is not None:
            if isinstance(error, dict):
                remote = RemoteError(
                    str(error.get("message", "unknown error")),
                    code=error.get("code"),
                    data=error.get("data"),
                )
            else:
                remote = RemoteError(str(error))
            self._settle(request_id, error=remote)
        else:
            self._settle(request_id, result=message.get("result"))

    async def _read_stdout(self, process: asyncio.subprocess.Process) -> None:
        assert process.stdout is not None
        while True:
            chunk = await process.stdout.read(_READ_CHUNK)
            if not chunk:
                break
            self.feed_data(chunk)

        returncode = await process.wait()
        if process is not self._process or self._state is SessionState.DISCONNECTED:
            return
        logger.error("Tool server %s exited (code=%s)", self.name, returncode)
        self._state = SessionState.FAILED
        self._fail_pending(
            ConnectionClosedError(f"{self.name}: server exited with code {returncode}")
        )

    async def _drain_stderr(self, process: asyncio.subprocess.Process) -> None:
        assert process.stderr is not None
        partial = b""
        while True:
            chunk = await process.stderr.read(_READ_CHUNK)
            if not chunk:
                break
            *lines, partial = (partial + chunk).split(b"\n")
            # unterminated output longer than a chunk is logged in pieces
            if len(partial) > _READ_CHUNK:
                lines.append(partial)
                partial = b""
            for line in lines:
                self._log_stderr(line)
        if partial:
            self._log_stderr(partial)

    def _log_stderr(self, line: bytes) -> None:
        text = line.decode("utf-8", "replace").rstrip()
        if text:
            logger.debug("[%s stderr] %s", self.name, text)

    async def _teardown(self, state: SessionState, error: Exception) -> None:
        self._state = state
        self._fail_pending(error)

        process, self._process = self._process, None
        if process is not None and process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
            else:
                try:
                    await asyncio.wait_for(process.wait(), timeout=_TERMINATE_GRACE_S)
                except asyncio.TimeoutError:
                    logger.warning("Tool server %s ignored SIGTERM, killing", self.name)
                    process.kill()
                    await process.wait()

        current = asyncio.current_task()
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            if task is not current:
                task.cancel()
        await asyncio.gather(*(t for t in tasks if t is not current), return_exceptions=True)
        self._buffer = b""
