"""Sled runtime CLI.

Usage:
    sled-runtime serve                        # HTTP server on 127.0.0.1:4096
    sled-runtime serve --agent-type gemini    # Chat with Gemini CLI
    sled-runtime serve --yolo                 # Skip permission prompts
    sled-runtime handshake                    # Check that the agent answers a prompt
    sled-runtime handshake -- my-agent --acp  # ... with an explicit command
    sled-runtime --health                     # Check HTTP server health
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import sys
from typing import Any

import click
import httpx

from .acp import DemoHandshake, ProtocolSessionListener
from .config import DEFAULT_AGENT_COMMANDS, RuntimeConfig, env_flag
from .transport import AgentProcessTransport

logger = logging.getLogger(__name__)

DEFAULT_PORT = 4096


def _configure_logging(debug: bool) -> None:
    # stderr only: stdout carries snippets in handshake mode
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


@click.group(invoke_without_command=True)
@click.option("--debug", is_flag=True, help="Enable debug logging (or set SLED_DEBUG=1)")
@click.option("--health", "health_check", is_flag=True, help="Check HTTP server health and exit")
@click.option("--health-url", default=f"http://localhost:{DEFAULT_PORT}", help="Server URL")
@click.pass_context
def main(ctx: click.Context, debug: bool, health_check: bool, health_url: str) -> None:
    """Sled runtime - browser front end for ACP coding agents."""
    _configure_logging(debug or env_flag(os.environ.get("SLED_DEBUG"), "debug"))

    if health_check:
        _do_health_check(health_url)
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


def _do_health_check(url: str) -> None:
    """Check server health."""

    async def check() -> None:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(f"{url}/health")
                if response.status_code == 200:
                    data = response.json()
                    click.echo(f"Server is healthy: {data}")
                else:
                    click.echo(f"Server returned {response.status_code}", err=True)
                    sys.exit(1)
        except httpx.ConnectError:
            click.echo(f"Cannot connect to server at {url}", err=True)
            sys.exit(1)

    asyncio.run(check())


# =============================================================================
# Serve
# =============================================================================


@main.command()
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=DEFAULT_PORT, help="Port to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
@click.option(
    "--agent-type",
    type=click.Choice(sorted(DEFAULT_AGENT_COMMANDS)),
    help="Agent to launch for chat connections",
)
@click.option("--agent-command", help="Explicit agent command line (overrides --agent-type)")
@click.option("--cwd", "agent_cwd", type=click.Path(file_okay=False), help="Agent session cwd")
@click.option("--permission-mode", help="Initial ACP permission mode")
@click.option("--yolo", is_flag=True, help="Use bypassPermissions mode")
@click.option("--resume", "resume_session_id", help="ACP session id to resume")
@click.option("--proxy-upstream", help="Upstream WebSocket URL for /proxy/ws")
def serve(
    host: str,
    port: int,
    reload: bool,
    agent_type: str | None,
    agent_command: str | None,
    agent_cwd: str | None,
    permission_mode: str | None,
    yolo: bool,
    resume_session_id: str | None,
    proxy_upstream: str | None,
) -> None:
    """Run the HTTP/WebSocket server."""
    import uvicorn

    # The app factory reads its settings from the environment
    overrides = {
        "SLED_AGENT_TYPE": agent_type,
        "SLED_AGENT_COMMAND": agent_command,
        "SLED_AGENT_CWD": os.path.abspath(agent_cwd) if agent_cwd else None,
        "SLED_PERMISSION_MODE": permission_mode,
        "SLED_YOLO": "1" if yolo else None,
        "SLED_RESUME_SESSION_ID": resume_session_id,
        "SLED_PROXY_UPSTREAM_URL": proxy_upstream,
    }
    for name, value in overrides.items():
        if value is not None:
            os.environ[name] = value

    try:
        config = RuntimeConfig.from_env()
        command = config.resolve_command()
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    click.echo(f"Starting sled runtime on http://{host}:{port}", err=True)
    click.echo(f"  Agent: {shlex.join(command)} (mode: {config.permission_mode})", err=True)
    if config.proxy_upstream_url:
        click.echo(f"  Proxy upstream: {config.proxy_upstream_url}", err=True)
    click.echo("Press Ctrl+C to stop", err=True)

    uvicorn.run(
        "sled_runtime.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level="debug" if config.debug else "info",
    )


# =============================================================================
# Handshake
# =============================================================================


class _HandshakeOutcome(ProtocolSessionListener):
    """Records how the scripted handshake ended."""

    def __init__(self) -> None:
        self.acknowledged = False
        self.finished = asyncio.Event()

    def on_prompt_result(self, request_id: str, result: dict[str, Any], metadata: Any) -> None:
        self.acknowledged = True
        self.finished.set()

    def on_prompt_error(
        self, request_id: str, error: Any, metadata: Any, message: dict[str, Any]
    ) -> None:
        self.finished.set()

    def on_initialize_error(self, error: Any, message: dict[str, Any]) -> None:
        self.finished.set()

    def on_session_error(self, error: Any, message: dict[str, Any]) -> None:
        self.finished.set()

    def on_authentication_required(self, method: Any) -> None:
        self.finished.set()


async def run_handshake(command: list[str], cwd: str | None, timeout: float) -> bool:
    """Launch the agent, run the demo handshake, and report whether the prompt was acknowledged."""
    outcome = _HandshakeOutcome()
    agent = AgentProcessTransport(command, cwd=cwd, on_close=lambda code: outcome.finished.set())
    demo = DemoHandshake(agent.send, click.echo, session_listener=outcome)
    agent.on_message = demo.handle_agent_message

    await agent.start()
    try:
        demo.start()
        try:
            await asyncio.wait_for(outcome.finished.wait(), timeout=timeout)
        except TimeoutError:
            click.echo(f"Handshake timed out after {timeout}s", err=True)
    finally:
        await agent.stop()
    return outcome.acknowledged


@main.command()
@click.option(
    "--agent-type",
    type=click.Choice(sorted(DEFAULT_AGENT_COMMANDS)),
    help="Agent to launch (defaults to SLED_AGENT_TYPE)",
)
@click.option("--cwd", "agent_cwd", type=click.Path(file_okay=False), help="Agent cwd")
@click.option("--timeout", default=60.0, help="Seconds to wait for the demo prompt")
@click.argument("command", nargs=-1, type=click.UNPROCESSED)
def handshake(
    agent_type: str | None, agent_cwd: str | None, timeout: float, command: tuple[str, ...]
) -> None:
    """Run initialize -> session/new -> one prompt against an agent.

    Prints one client-event snippet per step. Exits 0 when the agent
    acknowledged the prompt, 1 otherwise.
    """
    config = RuntimeConfig.from_env()
    if agent_type:
        config = config.model_copy(update={"agent_type": agent_type, "agent_command": None})
    if command:
        config = config.model_copy(update={"agent_command": list(command)})

    try:
        resolved = config.resolve_command()
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    click.echo(f"Launching {shlex.join(resolved)}", err=True)
    try:
        acknowledged = asyncio.run(run_handshake(resolved, agent_cwd or config.agent_cwd, timeout))
    except OSError as e:
        click.echo(f"Failed to launch agent: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nInterrupted", err=True)
        sys.exit(1)

    sys.exit(0 if acknowledged else 1)


if __name__ == "__main__":
    main()
