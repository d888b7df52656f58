import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import select
import shlex
import signal
import subprocess
import time

import pytest
from mcp.client.stdio import StdioServerParameters

import context7_example
import smoke_context7
from context7_client import Context7Client

FAKE_TOOL = os.path.join(os.path.dirname(__file__), "fixtures", "fake_context7_tool.py")


def _client(timeout=10.0):
    return Context7Client(StdioServerParameters(command=sys.executable, args=[FAKE_TOOL]), timeout=timeout)


class ScriptedPrompt:
    def __init__(self, answers):
        self.answers = list(answers)
        self.opened = False
        self.closed = False

    async def open(self):
        self.opened = True

    async def ask(self, text):
        if not self.answers:
            raise EOFError
        return self.answers.pop(0)

    def close(self):
        self.closed = True


@pytest.mark.parametrize(
    "argv, expected",
    [
        (["context7_example.py"], "examples"),
        (["context7_example.py", "interactive"], "interactive_mode"),
        (["context7_example.py", "other"], "examples"),
    ],
)
def test_main_selects_mode(monkeypatch, argv, expected):
    called = []

    async def fake_examples():
        called.append("examples")

    async def fake_interactive():
        called.append("interactive_mode")

    monkeypatch.setattr(context7_example, "examples", fake_examples)
    monkeypatch.setattr(context7_example, "interactive_mode", fake_interactive)

    assert context7_example.main(argv) == 0
    assert called == [expected]


@pytest.mark.asyncio
async def test_examples_print_previews(capsys):
    await context7_example.examples(_client())

    out = capsys.readouterr().out
    assert "Docs for /facebook/react topic=hooks" in out
    assert "Docs for /vercel/next.js topic=routing" in out
    assert "Docs for /expressjs/express topic=all" in out
    assert "All examples finished" in out


@pytest.mark.asyncio
async def test_interactive_mode_loop(capsys):
    prompt = ScriptedPrompt(["react", "hooks", "left-pad", "", "QUIT"])

    await context7_example.interactive_mode(_client(), prompt)

    captured = capsys.readouterr()
    assert "📚 react docs:" in captured.out
    assert "truncated" in captured.out
    assert "=" * 50 in captured.out
    assert "Failed to fetch docs" in captured.err


@pytest.mark.asyncio
async def test_interactive_mode_ends_on_eof():
    prompt = ScriptedPrompt([])

    client = _client()
    await context7_example.interactive_mode(client, prompt)

    assert not client.process.running
    assert prompt.opened and prompt.closed


@pytest.mark.asyncio
async def test_smoke_passes_against_fake_tool(capsys):
    code = await smoke_context7.run_smoke(_client(timeout=smoke_context7.SMOKE_TIMEOUT), startup_grace=0)

    out = capsys.readouterr().out
    assert code == 0
    assert "- resolve-library-id: Resolve a library name" in out
    assert "Smoke test passed" in out


@pytest.mark.asyncio
async def test_smoke_fails_when_tool_missing(capsys):
    client = Context7Client(StdioServerParameters(command="/nonexistent/context7-tool", args=[]))

    code = await smoke_context7.run_smoke(client, startup_grace=0)

    assert code == 1
    assert "Smoke test failed" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_console_prompt_reads_pipe_until_eof(capsys):
    r, w = os.pipe()
    stream = os.fdopen(r, "rb")
    prompt = context7_example.ConsolePrompt(stream)
    try:
        await prompt.open()
        os.write(w, b"react\r\nhooks\n")

        assert await prompt.ask("Library name: ") == "react"
        assert await prompt.ask("Topic: ") == "hooks"

        os.close(w)
        w = None
        with pytest.raises(EOFError):
            await prompt.ask("Library name: ")
    finally:
        prompt.close()
        if w is not None:
            os.close(w)

    assert os.get_blocking(stream.fileno())
    stream.close()
    assert "Library name: " in capsys.readouterr().out


@pytest.mark.asyncio
async def test_console_prompt_reads_regular_file_directly(tmp_path):
    answers = tmp_path / "answers.txt"
    answers.write_text("express\n")

    with open(answers) as stream:
        prompt = context7_example.ConsolePrompt(stream)
        await prompt.open()

        assert await prompt.ask("Library name: ") == "express"
        with pytest.raises(EOFError):
            await prompt.ask("Library name: ")
        prompt.close()


def _read_until(proc, marker, timeout):
    out = b""
    deadline = time.monotonic() + timeout
    while marker not in out:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise AssertionError(f"{marker!r} not seen, output so far: {out!r}")
        ready, _, _ = select.select([proc.stdout], [], [], remaining)
        if ready:
            chunk = os.read(proc.stdout.fileno(), 4096)
            if not chunk:
                raise AssertionError(f"process exited early, output: {out!r}")
            out += chunk
    return out


@pytest.mark.skipif(sys.platform == "win32", reason="needs POSIX signals")
def test_ctrl_c_in_interactive_mode_exits_zero():
    script = os.path.join(os.path.dirname(__file__), "..", "context7_example.py")
    env = dict(os.environ, CONTEXT7_MCP_COMMAND=shlex.join([sys.executable, FAKE_TOOL]))
    proc = subprocess.Popen(
        [sys.executable, script, "interactive"],
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.DEVNULL,
        env=env,
    )
    try:
        _read_until(proc, b"Library name: ", timeout=20)

        proc.send_signal(signal.SIGINT)

        assert proc.wait(timeout=10) == 0
        assert b"Interrupted" in proc.stdout.read()
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()
        proc.stdin.close()
        proc.stdout.close()
