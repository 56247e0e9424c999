"""Runtime configuration.

Values come from ``SLED_*`` environment variables; CLI options override
them by setting the same variables before the app factory runs.

An optional YAML file (``SLED_AGENTS_FILE``) can add or override agent
commands::

    agents:
      claude: ["claude-code-acp"]
      local: ["python", "-m", "my_agent"]
"""

from __future__ import annotations

import logging
import os
import shlex
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_AGENT_TYPE = "claude"
DEFAULT_PERMISSION_MODE = "default"
YOLO_PERMISSION_MODE = "bypassPermissions"

DEFAULT_AGENT_COMMANDS: dict[str, list[str]] = {
    "claude": ["claude-code-acp"],
    "gemini": ["gemini", "--experimental-acp"],
    "codex": ["codex-acp"],
    "opencode": ["opencode", "acp"],
}

_TRUTHY = ("1", "true", "yes", "on")


def env_flag(value: str | None, *extra: str) -> bool:
    return (value or "").strip().lower() in (*_TRUTHY, *extra)


def _env_str(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def load_agent_commands(path: str | Path) -> dict[str, list[str]]:
    """Read agent commands from a YAML file.

    Raises:
        ValueError: If the file is missing or not shaped like ``{agents: {name: command}}``
    """
    import yaml

    file_path = Path(path)
    if not file_path.exists():
        raise ValueError(f"Agents file not found: {file_path}")

    try:
        with open(file_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("agents"), dict):
        raise ValueError("Agents file must contain an 'agents' mapping")

    commands: dict[str, list[str]] = {}
    for name, command in data["agents"].items():
        if isinstance(command, str):
            parts = shlex.split(command)
        elif isinstance(command, list) and all(isinstance(part, str) for part in command):
            parts = list(command)
        else:
            logger.warning(f"Skipping agent {name!r}: command must be a string or a list")
            continue
        if parts:
            commands[str(name)] = parts
    return commands


class RuntimeConfig(BaseModel):
    """Settings shared by the HTTP app and the CLI."""

    agent_type: str = DEFAULT_AGENT_TYPE
    agent_command: list[str] | None = None
    agent_cwd: str | None = None
    permission_mode: str = DEFAULT_PERMISSION_MODE
    resume_session_id: str | None = None
    proxy_upstream_url: str | None = None
    debug: bool = False
    agent_commands: dict[str, list[str]] = Field(
        default_factory=lambda: {name: list(cmd) for name, cmd in DEFAULT_AGENT_COMMANDS.items()}
    )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> RuntimeConfig:
        env = os.environ if environ is None else environ

        values: dict[str, Any] = {}
        if agent_type := _env_str(env.get("SLED_AGENT_TYPE")):
            values["agent_type"] = agent_type.lower()
        if command := _env_str(env.get("SLED_AGENT_COMMAND")):
            values["agent_command"] = shlex.split(command)
        values["agent_cwd"] = _env_str(env.get("SLED_AGENT_CWD"))
        values["resume_session_id"] = _env_str(env.get("SLED_RESUME_SESSION_ID"))
        values["proxy_upstream_url"] = _env_str(env.get("SLED_PROXY_UPSTREAM_URL"))
        values["debug"] = env_flag(env.get("SLED_DEBUG"), "debug")

        if env_flag(env.get("SLED_YOLO")):
            values["permission_mode"] = YOLO_PERMISSION_MODE
        elif mode := _env_str(env.get("SLED_PERMISSION_MODE")):
            values["permission_mode"] = mode

        config = cls(**values)
        if agents_file := _env_str(env.get("SLED_AGENTS_FILE")):
            config.agent_commands.update(load_agent_commands(agents_file))
        return config

    def resolve_command(self) -> list[str]:
        """The command line used to launch the agent.

        Raises:
            ValueError: If no explicit command is set and the agent type is unknown
        """
        if self.agent_command:
            return list(self.agent_command)
        command = self.agent_commands.get(self.agent_type)
        if not command:
            known = ", ".join(sorted(self.agent_commands))
            raise ValueError(f"Unknown agent type {self.agent_type!r} (known: {known})")
        return list(command)
