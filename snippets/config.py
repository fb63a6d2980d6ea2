"""
Configuration management for snippets stores.

The configuration is stored as a TOML file in the store directory. It names
the notes and agent directories, how to reach the automation agent, and the
job tracker's timing bounds. A few environment variables override the file
so secrets need not be written to disk.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import tomli_w

from .agent_client import DEFAULT_GATEWAY_URL
from .jobs import (
    ACTION_COOLDOWN_SECONDS,
    DEFAULT_CALLBACK_BASE_URL,
    JOB_TIMEOUT_SECONDS,
    STALE_JOB_SECONDS,
    SWEEP_INTERVAL_SECONDS,
)
from .types import DEFAULT_FOLDER


CONFIG_FILENAME = "snippets.toml"
CONFIG_VERSION = 1
MEMORY_FILENAME = "MEMORY.md"
MISSION_FILENAME = "MISSION.md"

ENV_HOME = "SNIPPETS_HOME"
ENV_GATEWAY_URL = "OPENCLAW_GATEWAY_URL"
ENV_HOOKS_TOKEN = "OPENCLAW_HOOKS_TOKEN"
ENV_CALLBACK_URL = "SNIPPETS_CALLBACK_URL"


@dataclass
class AgentConfig:
    """How to reach the automation agent."""
    gateway_url: str = DEFAULT_GATEWAY_URL
    hooks_token: Optional[str] = None
    model: Optional[str] = None
    callback_base_url: str = DEFAULT_CALLBACK_BASE_URL
    request_timeout: float = 30.0


@dataclass
class JobsConfig:
    """Timing bounds for agent jobs, in seconds."""
    cooldown_seconds: float = ACTION_COOLDOWN_SECONDS
    timeout_seconds: float = JOB_TIMEOUT_SECONDS
    stale_seconds: float = STALE_JOB_SECONDS
    sweep_interval: float = SWEEP_INTERVAL_SECONDS


@dataclass
class SnippetsConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    notes_dir: str = "notes"
    agent_dir: str = ".agent"
    default_folder: str = DEFAULT_FOLDER
    agent: AgentConfig = field(default_factory=AgentConfig)
    jobs: JobsConfig = field(default_factory=JobsConfig)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def notes_path(self) -> Path:
        return self.path / self.notes_dir

    @property
    def agent_path(self) -> Path:
        return self.path / self.agent_dir

    @property
    def pending_path(self) -> Path:
        return self.agent_path / "pending"

    @property
    def jobs_path(self) -> Path:
        return self.agent_path / "agent-jobs.json"

    @property
    def connections_path(self) -> Path:
        return self.agent_path / "connections.json"

    @property
    def icons_path(self) -> Path:
        return self.agent_path / "folder-icons.json"

    @property
    def memory_path(self) -> Path:
        """The agent's long-term memory document."""
        return self.path / MEMORY_FILENAME

    @property
    def mission_path(self) -> Path:
        """The agent's standing instructions."""
        return self.path / MISSION_FILENAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def get_store_path(override: Optional[Path] = None) -> Path:
    """
    Resolve the store directory.

    Priority: explicit override, SNIPPETS_HOME, ~/.snippets.
    """
    if override is not None:
        return Path(override).expanduser().resolve()
    env = os.environ.get(ENV_HOME)
    if env:
        return Path(env).expanduser().resolve()
    return (Path.home() / ".snippets").resolve()


def apply_env_overrides(config: SnippetsConfig) -> SnippetsConfig:
    """Environment variables win over the file for agent connection settings."""
    if os.environ.get(ENV_GATEWAY_URL):
        config.agent.gateway_url = os.environ[ENV_GATEWAY_URL]
    if os.environ.get(ENV_HOOKS_TOKEN):
        config.agent.hooks_token = os.environ[ENV_HOOKS_TOKEN]
    if os.environ.get(ENV_CALLBACK_URL):
        config.agent.callback_base_url = os.environ[ENV_CALLBACK_URL]
    return config


def _section(data: dict, name: str, cls: type, defaults: Any) -> Any:
    values = data.get(name, {})
    known = {k: v for k, v in values.items() if k in defaults.__dataclass_fields__}
    return cls(**{**vars(defaults), **known})


def load_config(store_path: Path) -> SnippetsConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid config {config_path}: {e}") from e

    store = data.get("store", {})
    version = store.get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    return SnippetsConfig(
        path=store_path,
        version=version,
        created=store.get("created", ""),
        notes_dir=store.get("notes_dir", "notes"),
        agent_dir=store.get("agent_dir", ".agent"),
        default_folder=store.get("default_folder", DEFAULT_FOLDER),
        agent=_section(data, "agent", AgentConfig, AgentConfig()),
        jobs=_section(data, "jobs", JobsConfig, JobsConfig()),
    )


def save_config(config: SnippetsConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist. The hooks token is never
    written; supply it through OPENCLAW_HOOKS_TOKEN.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    agent = {k: v for k, v in vars(config.agent).items() if v is not None and k != "hooks_token"}
    data = {
        "store": {
            "version": config.version,
            "created": config.created,
            "notes_dir": config.notes_dir,
            "agent_dir": config.agent_dir,
            "default_folder": config.default_folder,
        },
        "agent": agent,
        "jobs": dict(vars(config.jobs)),
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> SnippetsConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        config = load_config(store_path)
    else:
        config = SnippetsConfig(path=store_path)
        save_config(config)
    return apply_env_overrides(config)
