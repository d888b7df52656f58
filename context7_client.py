from __future__ import annotations

import logging
import os
import shlex
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from mcp.client.stdio import StdioServerParameters
from mcp.types import CallToolResult, TextContent
from pydantic import ValidationError

from correlator import DEFAULT_TIMEOUT
from tool_process import ToolProcess

logger = logging.getLogger(__name__)

CONTEXT7_PACKAGE = "@upstash/context7-mcp@latest"
COMMAND_ENV_VAR = "CONTEXT7_MCP_COMMAND"

PROTOCOL_VERSION = "2024-11-05"
CLIENT_NAME = "context7-example"
CLIENT_VERSION = "1.0.0"

DEFAULT_DOC_TOKENS = 10000


class DocsUnavailable(Exception):
    pass


@dataclass(frozen=True)
class LibraryDocs:
    library_name: str
    library_id: str
    topic: Optional[str]
    docs: str


def default_server_parameters() -> StdioServerParameters:
    """
    Launch parameters for the Context7 MCP server.
    CONTEXT7_MCP_COMMAND replaces the whole command line when set.
    """
    override = os.environ.get(COMMAND_ENV_VAR, "").strip()
    if override:
        command, *args = shlex.split(override)
        return StdioServerParameters(command=command, args=args)
    return StdioServerParameters(command="npx", args=["-y", CONTEXT7_PACKAGE])


def _first_text(result: Dict[str, Any], what: str) -> str:
    try:
        call = CallToolResult.model_validate(result)
    except ValidationError as e:
        raise DocsUnavailable(f"{what} returned a malformed result ({e.error_count()} errors)") from e

    text = call.content[0].text if call.content and isinstance(call.content[0], TextContent) else None
    if call.isError:
        raise DocsUnavailable(f"{what} failed: {text}" if text else f"{what} failed")
    if text is None:
        raise DocsUnavailable(f"{what} returned no text content")
    return text


class Context7Client:
    def __init__(
        self,
        server: Optional[StdioServerParameters] = None,
        timeout: float = DEFAULT_TIMEOUT,
        client_name: str = CLIENT_NAME,
    ):
        self.client_name = client_name
        self.process = ToolProcess(server or default_server_parameters(), timeout=timeout)
        self.server_info: Dict[str, Any] = {}

    async def start(self) -> None:
        logger.info("starting Context7 MCP client")
        await self.process.start()
        await self.initialize()
        logger.info("Context7 client ready")

    async def initialize(self) -> Dict[str, Any]:
        result = await self.process.request(
            "initialize",
            {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {}},
                "clientInfo": {"name": self.client_name, "version": CLIENT_VERSION},
            },
        )
        self.server_info = result.get("serverInfo", {})
        await self.process.notify("notifications/initialized")
        return result

    async def list_tools(self) -> List[Dict[str, Any]]:
        result = await self.process.request("tools/list")
        return result.get("tools", [])

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        return await self.process.request("tools/call", {"name": name, "arguments": arguments})

    async def resolve_library_id(self, library_name: str) -> str:
        logger.info("resolving library id: %s", library_name)
        result = await self.call_tool("resolve-library-id", {"libraryName": library_name})
        library_id = _first_text(result, f"resolve-library-id({library_name})")
        logger.info("library id: %s", library_id)
        return library_id

    async def get_library_docs(
        self,
        library_id: str,
        topic: Optional[str] = None,
        tokens: int = DEFAULT_DOC_TOKENS,
    ) -> str:
        logger.info("fetching docs: %s%s", library_id, f" (topic: {topic})" if topic else "")
        arguments: Dict[str, Any] = {
            "context7CompatibleLibraryID": library_id,
            "tokens": tokens,
        }
        if topic:
            arguments["topic"] = topic

        result = await self.call_tool("get-library-docs", arguments)
        docs = _first_text(result, f"get-library-docs({library_id})")
        logger.info("received %d characters of docs", len(docs))
        return docs

    async def get_latest_docs(self, library_name: str, topic: Optional[str] = None) -> LibraryDocs:
        try:
            library_id = await self.resolve_library_id(library_name)
            docs = await self.get_library_docs(library_id, topic)
        except Exception as e:
            logger.error("failed to fetch docs for %s: %s", library_name, e)
            raise
        return LibraryDocs(library_name=library_name, library_id=library_id, topic=topic, docs=docs)

    async def stop(self) -> None:
        logger.info("stopping Context7 client")
        await self.process.stop()

    async def __aenter__(self) -> "Context7Client":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()
