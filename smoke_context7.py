# smoke_context7.py
from __future__ import annotations

import asyncio
import logging
import sys
from typing import Optional

from context7_client import Context7Client

SMOKE_TIMEOUT = 10.0
STARTUP_GRACE_SECONDS = 2.0


async def run_smoke(client: Optional[Context7Client] = None, startup_grace: float = STARTUP_GRACE_SECONDS) -> int:
    client = client or Context7Client(timeout=SMOKE_TIMEOUT)

    try:
        print("🚀 Starting Context7 MCP server...")
        await client.process.start()
        await asyncio.sleep(startup_grace)
        print("✅ Context7 MCP server started")

        # 1️⃣ initialize
        print("\n[1] initialize")
        result = await client.initialize()
        print(f"✅ Initialized: {result.get('serverInfo')}")

        # 2️⃣ list tools
        print("\n[2] tools/list")
        tools = await client.list_tools()
        for tool in tools:
            print(f"  - {tool.get('name')}: {tool.get('description')}")
        tool_names = [t.get("name") for t in tools]
        assert "resolve-library-id" in tool_names, tool_names

        # 3️⃣ resolve a library id
        print("\n[3] resolve-library-id react")
        library_id = await client.resolve_library_id("react")
        print(f"✅ Resolved: {library_id[:200]}")

        print("\n🎉 Smoke test passed")
        return 0
    except Exception as e:
        print(f"\n💥 Smoke test failed: {type(e).__name__}: {e}", file=sys.stderr)
        return 1
    finally:
        print("\n🧹 Cleaning up...")
        await client.stop()


def main() -> int:
    logging.basicConfig(level=logging.INFO)
    try:
        return asyncio.run(run_smoke())
    except KeyboardInterrupt:
        print("\n👋 Interrupted, exiting...")
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
