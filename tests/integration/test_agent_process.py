"""Integration tests for the agent subprocess transport.

Launches ``fake_acp_agent.py`` with the current interpreter.
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner

from sled_runtime.acp import ChatSession
from sled_runtime.cli import main, run_handshake
from sled_runtime.transport import AgentProcessTransport, TransportClosedError

FAKE_AGENT = [sys.executable, str(Path(__file__).parent / "fake_acp_agent.py")]


def frame(message: dict[str, Any]) -> str:
    return json.dumps(message) + "\n"


# =============================================================================
# Transport Tests
# =============================================================================


class TestAgentProcessTransport:
    """Tests for AgentProcessTransport."""

    def test_empty_command(self) -> None:
        """An empty command is rejected."""
        with pytest.raises(ValueError):
            AgentProcessTransport([])

    @pytest.mark.asyncio
    async def test_round_trip(self) -> None:
        """Frames go out on stdin and come back as decoded messages."""
        received: asyncio.Queue[Any] = asyncio.Queue()
        agent = AgentProcessTransport(FAKE_AGENT, on_message=received.put_nowait)
        await agent.start()
        try:
            assert agent.is_running
            assert agent.pid is not None

            agent.send(frame({"jsonrpc": "2.0", "id": "init-1", "method": "initialize"}))
            message = await asyncio.wait_for(received.get(), timeout=10)

            # The non-JSON banner line is skipped
            assert message == {"jsonrpc": "2.0", "id": "init-1", "result": {"protocolVersion": 1}}
        finally:
            await agent.stop()

        assert not agent.is_running

    @pytest.mark.asyncio
    async def test_exit_reported(self) -> None:
        """on_close receives the exit code."""
        codes: list[int | None] = []
        agent = AgentProcessTransport([*FAKE_AGENT, "--exit", "3"], on_close=codes.append)

        await agent.start()
        await asyncio.wait_for(agent.wait_closed(), timeout=10)

        assert codes == [3]
        with pytest.raises(TransportClosedError):
            agent.send(frame({"jsonrpc": "2.0", "method": "session/cancel"}))
        await agent.stop()

    @pytest.mark.asyncio
    async def test_send_before_start(self) -> None:
        """Sending without a process raises."""
        agent = AgentProcessTransport(FAKE_AGENT)

        with pytest.raises(TransportClosedError):
            agent.send("{}\n")

    @pytest.mark.asyncio
    async def test_reader_without_process(self) -> None:
        """The stdout reader does nothing before the agent starts."""
        codes: list[int | None] = []
        agent = AgentProcessTransport(FAKE_AGENT, on_close=codes.append)

        await agent._read_stdout()

        assert codes == []

    @pytest.mark.asyncio
    async def test_missing_binary(self) -> None:
        """A missing program fails to start with OSError."""
        agent = AgentProcessTransport(["definitely-not-an-acp-agent-binary"])

        with pytest.raises(OSError):
            await agent.start()

    @pytest.mark.asyncio
    async def test_stop_stubborn_agent(self, monkeypatch) -> None:
        """An agent ignoring SIGTERM still stops."""
        monkeypatch.setattr("sled_runtime.transport.stdio.STOP_TIMEOUT", 0.5)
        received: asyncio.Queue[Any] = asyncio.Queue()
        agent = AgentProcessTransport(
            [*FAKE_AGENT, "--ignore-term"], on_message=received.put_nowait
        )
        await agent.start()
        agent.send(frame({"jsonrpc": "2.0", "id": "x", "method": "ping"}))
        await asyncio.wait_for(received.get(), timeout=10)

        # stdin is closed first, so the agent's read loop ends on its own
        await asyncio.wait_for(agent.stop(), timeout=10)

        assert not agent.is_running


# =============================================================================
# End-to-end Tests
# =============================================================================


class TestChatOverSubprocess:
    """Tests for a chat session driving a real subprocess."""

    @pytest.mark.asyncio
    async def test_turn(self) -> None:
        """A user message goes through the handshake and comes back answered."""
        finished = asyncio.Event()
        messages: list[tuple[str, str]] = []

        def on_new_message(role: str, content: str) -> None:
            messages.append((role, content))
            if role == "assistant":
                finished.set()

        agent = AgentProcessTransport(FAKE_AGENT)
        chat = ChatSession(agent.send, lambda snippet: None, on_new_message=on_new_message)
        agent.on_message = chat.handle_agent_message
        await agent.start()
        try:
            chat.handle_user_message("ping")
            await asyncio.wait_for(finished.wait(), timeout=10)
        finally:
            await agent.stop()

        assert messages == [("user", "ping"), ("assistant", "You said: ping")]
        assert chat.protocol.session_id == "fake-session"


class TestHandshakeCommand:
    """Tests for the scripted handshake against a subprocess."""

    @pytest.mark.asyncio
    async def test_acknowledged(self, capsys) -> None:
        """A well-behaved agent acknowledges the demo prompt."""
        assert await run_handshake(FAKE_AGENT, None, timeout=10)

        titles = [json.loads(line)["title"] for line in capsys.readouterr().out.splitlines()]
        assert titles == [
            "Sent initialize request",
            "Requested new session",
            "Sent demo prompt",
            "Demo prompt acknowledged",
        ]

    @pytest.mark.asyncio
    async def test_prompt_rejected(self) -> None:
        """A prompt error means the handshake failed."""
        assert not await run_handshake([*FAKE_AGENT, "--fail-prompt"], None, timeout=10)

    @pytest.mark.asyncio
    async def test_agent_exits(self) -> None:
        """An agent that exits early fails the handshake without waiting for the timeout."""
        result = await asyncio.wait_for(
            run_handshake([*FAKE_AGENT, "--exit", "1"], None, timeout=30), timeout=10
        )

        assert not result

    def test_cli_exit_codes(self) -> None:
        """The handshake command exits 0 on success and 1 on failure."""
        runner = CliRunner()

        ok = runner.invoke(main, ["handshake", "--timeout", "10", "--", *FAKE_AGENT])
        failed = runner.invoke(
            main, ["handshake", "--timeout", "10", "--", *FAKE_AGENT, "--fail-prompt"]
        )

        assert ok.exit_code == 0
        assert "Demo prompt acknowledged" in ok.output
        assert failed.exit_code == 1

    def test_cli_missing_agent(self) -> None:
        """A missing binary exits 1."""
        result = CliRunner().invoke(main, ["handshake", "--", "definitely-not-an-acp-agent"])

        assert result.exit_code == 1
