from __future__ import annotations

import asyncio
import codecs
import logging
from typing import Any, Dict, List, Optional

from mcp.client.stdio import StdioServerParameters, get_default_environment

from correlator import DEFAULT_TIMEOUT, RequestCorrelator

logger = logging.getLogger(__name__)

READ_CHUNK = 64 * 1024
MAX_STDERR_LINE = 4096
STOP_GRACE_SECONDS = 5.0


class ToolProcess:
    """
    A locally spawned tool speaking line-delimited JSON-RPC on stdio.

    Owns the child process, the reader tasks and the correlator. The
    correlator lives from start() to stop().
    """

    def __init__(self, server: StdioServerParameters, timeout: float = DEFAULT_TIMEOUT):
        self.server = server
        self.timeout = timeout
        self.correlator: Optional[RequestCorrelator] = None
        self.returncode: Optional[int] = None
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    async def start(self) -> None:
        if self._proc is not None:
            raise RuntimeError("Tool process already started")

        env = get_default_environment()
        if self.server.env:
            env.update(self.server.env)

        logger.info("starting tool: %s %s", self.server.command, " ".join(self.server.args))
        self._proc = await asyncio.create_subprocess_exec(
            self.server.command,
            *self.server.args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
            cwd=self.server.cwd,
        )
        self.correlator = RequestCorrelator(
            write=self._proc.stdin.write,
            drain=self._proc.stdin.drain,
            timeout=self.timeout,
        )
        self._tasks = [
            asyncio.create_task(self._pump_stdout()),
            asyncio.create_task(self._pump_stderr()),
            asyncio.create_task(self._watch_exit()),
        ]

    async def request(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self._require_correlator().request(method, params)

    async def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        await self._require_correlator().notify(method, params)

    def _require_correlator(self) -> RequestCorrelator:
        if self.correlator is None:
            raise RuntimeError("Tool process not started")
        return self.correlator

    # -------------------------------------------------------------------
    # Readers
    # -------------------------------------------------------------------

    async def _pump_stdout(self) -> None:
        decoder = codecs.getincrementaldecoder(self.server.encoding)(
            errors=self.server.encoding_error_handler
        )
        while True:
            chunk = await self._proc.stdout.read(READ_CHUNK)
            if not chunk:
                break
            self.correlator.feed(decoder.decode(chunk))
        self.correlator.feed(decoder.decode(b"", final=True))
        self.correlator.flush()

    async def _pump_stderr(self) -> None:
        # Chunked reads: a single huge line must not stop the drain.
        partial = b""
        while True:
            chunk = await self._proc.stderr.read(READ_CHUNK)
            if not chunk:
                break
            *lines, partial = (partial + chunk).split(b"\n")
            if len(partial) > MAX_STDERR_LINE:
                lines.append(partial)
                partial = b""
            for line in lines:
                self._log_stderr(line)
        if partial:
            self._log_stderr(partial)

    def _log_stderr(self, line: bytes) -> None:
        text = line.decode(self.server.encoding, errors="replace").rstrip()
        if not text:
            return
        if len(text) > MAX_STDERR_LINE:
            text = f"{text[:MAX_STDERR_LINE]}... [{len(text) - MAX_STDERR_LINE} more chars]"
        logger.warning("tool stderr: %s", text)

    async def _watch_exit(self) -> None:
        self.returncode = await self._proc.wait()
        logger.info("tool process exited with code %s", self.returncode)

    # -------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------

    async def stop(self) -> None:
        if self._proc is None:
            return

        if self._proc.returncode is None:
            logger.info("stopping tool process pid=%s", self._proc.pid)
            if self._proc.stdin and not self._proc.stdin.is_closing():
                self._proc.stdin.close()
            try:
                self._proc.terminate()
                await asyncio.wait_for(self._proc.wait(), STOP_GRACE_SECONDS)
            except ProcessLookupError:
                pass
            except asyncio.TimeoutError:
                logger.warning("tool process did not exit, killing pid=%s", self._proc.pid)
                self._proc.kill()
                await self._proc.wait()

        if self._tasks:
            # Let the readers drain what the child wrote before it exited.
            _, pending = await asyncio.wait(self._tasks, timeout=1.0)
            for task in pending:
                task.cancel()
            results = await asyncio.gather(*self._tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error("tool reader failed: %s: %s", type(result).__name__, result)
            self._tasks = []

        if self.correlator is not None:
            self.correlator.close()

    async def __aenter__(self) -> "ToolProcess":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()
