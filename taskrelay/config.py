from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from typing import Any

from pydantic import TypeAdapter
from pydantic.alias_generators import to_snake

from .models import AgentAuthentication, AgentCapabilities, AgentCard, AgentSkill

DEFAULT_PORT = 18789
DEFAULT_BASE_PATH = "/a2a"
AGENT_CARD_PATH = "/.well-known/agent.json"
ENV_PREFIX = "TASKRELAY_"

_TRUTHY = ("true", "1", "yes", "on")
_SKILLS = TypeAdapter(list[AgentSkill])


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


@dataclass(slots=True)
class A2AConfig:
    agent_name: str = "taskrelay"
    agent_description: str = "A2A task relay agent"
    agent_version: str = "1.0.0"
    host: str = "localhost"
    port: int = DEFAULT_PORT
    base_path: str = DEFAULT_BASE_PATH
    public_url: str | None = None
    tls: bool = False
    auth_token: str | None = None
    skills: list[AgentSkill] = field(default_factory=list)
    streaming: bool = True
    task_max_age_s: float = 24 * 60 * 60.0
    cleanup_interval_s: float = 60 * 60.0
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.agent_name:
            raise ValueError("agent_name must be non-empty")
        if not 0 < self.port < 65536:
            raise ValueError("port must be between 1 and 65535")
        if not self.base_path.startswith("/"):
            self.base_path = f"/{self.base_path}"
        self.base_path = self.base_path.rstrip("/") or DEFAULT_BASE_PATH
        if self.task_max_age_s < 0:
            raise ValueError("task_max_age_s must be >= 0")
        if self.cleanup_interval_s < 0:
            raise ValueError("cleanup_interval_s must be >= 0")
        if not self.auth_token:
            self.auth_token = None
        self.skills = [AgentSkill.model_validate(skill) for skill in self.skills]
        self.log_level = self.log_level.upper()

    @property
    def agent_url(self) -> str:
        if self.public_url:
            return self.public_url.rstrip("/")
        scheme = "https" if self.tls else "http"
        return f"{scheme}://{self.host}:{self.port}{self.base_path}"

    @classmethod
    def from_env(cls) -> A2AConfig:
        """Load configuration from ``TASKRELAY_*`` environment variables."""
        defaults = cls()
        skills_raw = os.getenv(f"{ENV_PREFIX}SKILLS")
        return cls(
            agent_name=os.getenv(f"{ENV_PREFIX}AGENT_NAME", defaults.agent_name),
            agent_description=os.getenv(f"{ENV_PREFIX}AGENT_DESCRIPTION", defaults.agent_description),
            agent_version=os.getenv(f"{ENV_PREFIX}AGENT_VERSION", defaults.agent_version),
            host=os.getenv(f"{ENV_PREFIX}HOST", defaults.host),
            port=int(os.getenv(f"{ENV_PREFIX}PORT", str(defaults.port))),
            base_path=os.getenv(f"{ENV_PREFIX}BASE_PATH", defaults.base_path),
            public_url=os.getenv(f"{ENV_PREFIX}PUBLIC_URL") or None,
            tls=_env_flag(f"{ENV_PREFIX}TLS", defaults.tls),
            auth_token=os.getenv(f"{ENV_PREFIX}AUTH_TOKEN") or None,
            skills=_SKILLS.validate_json(skills_raw) if skills_raw else [],
            streaming=_env_flag(f"{ENV_PREFIX}STREAMING", defaults.streaming),
            task_max_age_s=float(os.getenv(f"{ENV_PREFIX}TASK_MAX_AGE_S", str(defaults.task_max_age_s))),
            cleanup_interval_s=float(
                os.getenv(f"{ENV_PREFIX}CLEANUP_INTERVAL_S", str(defaults.cleanup_interval_s))
            ),
            log_level=os.getenv(f"{ENV_PREFIX}LOG_LEVEL", defaults.log_level),
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> A2AConfig:
        """Build a config from a plugin-style mapping.

        Keys may be snake_case or camelCase (``agentName``, ``authToken``);
        unknown keys such as ``enabled`` are ignored.
        """
        known = {item.name for item in fields(cls)}
        values: dict[str, Any] = {}
        for key, value in data.items():
            name = to_snake(key)
            if name in known:
                values[name] = value
        if values.get("port") is not None:
            values["port"] = int(values["port"])
        elif "port" in values:
            values.pop("port")
        return cls(**values)


def build_agent_card(config: A2AConfig) -> AgentCard:
    return AgentCard(
        name=config.agent_name,
        description=config.agent_description,
        url=config.agent_url,
        version=config.agent_version,
        capabilities=AgentCapabilities(
            streaming=config.streaming,
            push_notifications=False,
            state_transition_history=True,
        ),
        authentication=AgentAuthentication(schemes=["Bearer"]) if config.auth_token else None,
        skills=[skill.model_copy(deep=True) for skill in config.skills],
    )


__all__ = [
    "AGENT_CARD_PATH",
    "A2AConfig",
    "DEFAULT_BASE_PATH",
    "DEFAULT_PORT",
    "build_agent_card",
]
