from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from mcp.types import (
    JSONRPCError,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
)
from pydantic import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


# -----------------------------
# Exceptions
# -----------------------------
class CorrelatorError(Exception):
    pass


class RequestTimeout(CorrelatorError):
    def __init__(self, request_id: int, method: str, timeout: float):
        super().__init__(f"Request {request_id} ({method}) timed out after {timeout:g}s")
        self.request_id = request_id
        self.method = method
        self.timeout = timeout


class ToolError(CorrelatorError):
    """Error payload returned by the tool for a request."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message
        self.data = data


class CorrelatorClosed(CorrelatorError):
    pass


# -----------------------------
# Pending entries
# -----------------------------
@dataclass
class PendingRequest:
    request_id: int
    method: str
    future: asyncio.Future
    timer: asyncio.TimerHandle


def encode(message: JSONRPCRequest | JSONRPCNotification) -> bytes:
    payload = JSONRPCMessage(message).model_dump_json(by_alias=True, exclude_none=True)
    return (payload + "\n").encode("utf-8")


class RequestCorrelator:
    """
    Matches requests written to a tool's stdin with the responses read
    from its stdout, by JSON-RPC id.

    ``write`` receives each encoded line. ``feed`` must be called with every
    chunk of text read from the tool. All methods run on the event loop
    thread.
    """

    def __init__(
        self,
        write: Callable[[bytes], Any],
        drain: Optional[Callable[[], Awaitable[None]]] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._write = write
        self._drain = drain
        self.timeout = timeout
        self._ids = itertools.count(1)
        self._pending: Dict[int, PendingRequest] = {}
        self._buffer = ""
        self._closed = False

    @property
    def pending_ids(self) -> List[int]:
        return sorted(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    # -------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------

    def send(self, method: str, params: Optional[Dict[str, Any]] = None) -> asyncio.Future:
        if self._closed:
            raise CorrelatorClosed("Correlator is closed")

        loop = asyncio.get_running_loop()
        request_id = next(self._ids)
        request = JSONRPCRequest(
            jsonrpc="2.0",
            id=request_id,
            method=method,
            params=params if params is not None else {},
        )
        self._write(encode(request))

        future = loop.create_future()
        timer = loop.call_later(self.timeout, self._expire, request_id)
        self._pending[request_id] = PendingRequest(request_id, method, future, timer)
        logger.debug("sent request id=%s method=%s", request_id, method)
        return future

    async def request(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        future = self.send(method, params)
        if self._drain is not None:
            try:
                await self._drain()
            except (Exception, asyncio.CancelledError):
                self._discard(future)
                raise
        return await future

    def _discard(self, future: asyncio.Future) -> None:
        for request_id, entry in list(self._pending.items()):
            if entry.future is future:
                del self._pending[request_id]
                entry.timer.cancel()
                future.cancel()
                logger.debug("discarded request id=%s method=%s", request_id, entry.method)
                return

    async def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        if self._closed:
            raise CorrelatorClosed("Correlator is closed")

        notification = JSONRPCNotification(
            jsonrpc="2.0",
            method=method,
            params=params if params is not None else {},
        )
        self._write(encode(notification))
        if self._drain is not None:
            await self._drain()

    # -------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------

    def feed(self, data: str) -> None:
        """Consume one delivery of tool output; may hold several lines."""
        self._buffer += data
        *lines, self._buffer = self._buffer.split("\n")
        for line in lines:
            self.handle_line(line)

    def flush(self) -> None:
        """Handle a last line the tool left without a newline."""
        line, self._buffer = self._buffer, ""
        self.handle_line(line)

    def handle_line(self, line: str) -> None:
        line = line.strip()
        if not line:
            return

        try:
            message = JSONRPCMessage.model_validate_json(line).root
        except ValidationError as e:
            logger.warning("Failed to decode tool output line: %s | raw=%r", e.errors()[0]["msg"], line[:200])
            return

        if isinstance(message, (JSONRPCRequest, JSONRPCNotification)):
            logger.debug("ignoring tool-initiated %s", message.method)
            return

        entry = self._pending.pop(message.id, None)
        if entry is None:
            logger.debug("dropping response with no pending request: id=%r", message.id)
            return

        entry.timer.cancel()
        if entry.future.done():
            return

        if isinstance(message, JSONRPCResponse):
            entry.future.set_result(message.result)
        elif isinstance(message, JSONRPCError):
            err = message.error
            entry.future.set_exception(ToolError(err.code, err.message, err.data))

    def _expire(self, request_id: int) -> None:
        entry = self._pending.pop(request_id, None)
        if entry is None:
            return
        logger.warning("request id=%s method=%s timed out after %gs", request_id, entry.method, self.timeout)
        if not entry.future.done():
            entry.future.set_exception(RequestTimeout(request_id, entry.method, self.timeout))

    # -------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------

    def close(self) -> None:
        """Fail every outstanding request and refuse new ones."""
        self._closed = True
        pending, self._pending = self._pending, {}
        for entry in pending.values():
            entry.timer.cancel()
            if not entry.future.done():
                entry.future.set_exception(CorrelatorClosed(f"Request {entry.request_id} ({entry.method}) abandoned"))
        self._buffer = ""
