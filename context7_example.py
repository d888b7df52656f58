# context7_example.py
from __future__ import annotations

import asyncio
import logging
import os
import sys
from typing import List, Optional

from context7_client import Context7Client

EXAMPLES = [
    ("React hooks", "react", "hooks"),
    ("Next.js routing", "next.js", "routing"),
    ("Express.js", "express", None),
]

EXAMPLE_PREVIEW_CHARS = 500
INTERACTIVE_PREVIEW_CHARS = 1000


async def examples(client: Optional[Context7Client] = None) -> None:
    client = client or Context7Client()

    try:
        await client.start()
        print("\n=== Context7 examples ===\n")

        for i, (label, library, topic) in enumerate(EXAMPLES, start=1):
            print(f"📖 Example {i}: {label} docs")
            result = await client.get_latest_docs(library, topic)
            print(f"{label} preview:\n{result.docs[:EXAMPLE_PREVIEW_CHARS]}...\n")

        print("🎉 All examples finished")
    except Exception as e:
        print(f"💥 Examples failed: {type(e).__name__}: {e}", file=sys.stderr)
    finally:
        await client.stop()


class ConsolePrompt:
    """
    Reads answers from stdin on the event loop, so Ctrl-C can cancel a
    pending prompt without leaving a thread blocked in input().

    Regular files cannot be watched by the loop; they never block and
    are read directly.
    """

    def __init__(self, stream=None):
        self.stream = stream if stream is not None else sys.stdin
        self._reader: Optional[asyncio.StreamReader] = None
        self._transport: Optional[asyncio.ReadTransport] = None

    async def open(self) -> None:
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        pipe = os.fdopen(os.dup(self.stream.fileno()), "rb", buffering=0)
        try:
            self._transport, _ = await loop.connect_read_pipe(
                lambda: asyncio.StreamReaderProtocol(reader), pipe
            )
        except (ValueError, NotImplementedError):
            pipe.close()
            return
        self._reader = reader

    async def ask(self, text: str) -> str:
        print(text, end="", flush=True)
        if self._reader is not None:
            line = await self._reader.readline()
        else:
            line = self.stream.readline()
        if not line:
            raise EOFError
        if isinstance(line, bytes):
            line = line.decode(errors="replace")
        return line.rstrip("\r\n")

    def close(self) -> None:
        if self._transport is None:
            return
        self._transport.close()
        self._transport = None
        self._reader = None
        # The loop switched the shared file description to non-blocking.
        os.set_blocking(self.stream.fileno(), True)


async def interactive_mode(
    client: Optional[Context7Client] = None,
    prompt: Optional[ConsolePrompt] = None,
) -> None:
    client = client or Context7Client()
    prompt = prompt or ConsolePrompt()

    try:
        await client.start()
        await prompt.open()
        print("\n🎮 Interactive mode")
        print('Enter a library name to fetch its docs, "quit" to exit\n')

        while True:
            try:
                library = (await prompt.ask("Library name: ")).strip()
            except EOFError:
                break
            if library.lower() == "quit":
                break
            if not library:
                continue

            try:
                topic = (await prompt.ask("Topic (optional, press Enter to skip): ")).strip()
            except EOFError:
                topic = ""

            try:
                result = await client.get_latest_docs(library, topic or None)
            except Exception as e:
                print(f"❌ Failed to fetch docs: {e}\n", file=sys.stderr)
                continue

            print(f"\n📚 {library} docs:\n")
            print(result.docs[:INTERACTIVE_PREVIEW_CHARS])
            if len(result.docs) > INTERACTIVE_PREVIEW_CHARS:
                print("\n... (truncated, full text is in the returned result)")
            print("\n" + "=" * 50 + "\n")
    except Exception as e:
        print(f"💥 Interactive mode failed: {type(e).__name__}: {e}", file=sys.stderr)
    finally:
        prompt.close()
        await client.stop()


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv if argv is None else argv
    mode = argv[1] if len(argv) > 1 else None

    logging.basicConfig(level=logging.INFO)

    try:
        if mode == "interactive":
            asyncio.run(interactive_mode())
        else:
            asyncio.run(examples())
    except KeyboardInterrupt:
        print("\n👋 Interrupted, exiting...")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
