# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_agent_sandbox

import re
from urllib.parse import urlsplit, urlunsplit

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from coreason_agent_sandbox.exceptions import ConfigError
from coreason_agent_sandbox.models import AgentType, ApiKeys

ENV_PREFIX = "COREASON_AGENT_SANDBOX_"

PROJECT_DIR = "/home/user/project"


def _env(name: str) -> AliasChoices:
    return AliasChoices(f"{ENV_PREFIX}{name}", name)


class OrchestratorSettings(BaseSettings):
    """
    Configuration for the sandbox orchestrator.
    """

    # E2B Configuration
    e2b_api_key: str | None = Field(default=None, validation_alias=_env("E2B_API_KEY"))
    sandbox_template: str = "base"

    default_timeout_minutes: int = 60
    max_sandbox_duration_minutes: int = 300

    # Dev server autostart
    dev_server_start_delay: float = 5.0
    dev_server_probe_attempts: int = 0  # 0 disables the HTTP probe
    dev_server_probe_interval: float = 1.0

    default_git_author_name: str = "Coding Agent"
    default_git_author_email: str = "agent@example.com"

    # Server-side credentials used by the MCP entry point
    github_token: str | None = Field(default=None, validation_alias=_env("GITHUB_TOKEN"))
    anthropic_api_key: str | None = Field(default=None, validation_alias=_env("ANTHROPIC_API_KEY"))
    openai_api_key: str | None = Field(default=None, validation_alias=_env("OPENAI_API_KEY"))
    cursor_api_key: str | None = Field(default=None, validation_alias=_env("CURSOR_API_KEY"))
    gemini_api_key: str | None = Field(default=None, validation_alias=_env("GEMINI_API_KEY"))
    ai_gateway_api_key: str | None = Field(default=None, validation_alias=_env("AI_GATEWAY_API_KEY"))

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    def api_keys(self) -> ApiKeys:
        return ApiKeys(
            anthropic=self.anthropic_api_key,
            openai=self.openai_api_key,
            cursor=self.cursor_api_key,
            gemini=self.gemini_api_key,
            ai_gateway=self.ai_gateway_api_key,
        )


# Any one of the listed keys satisfies the agent. Copilot authenticates with the GitHub token.
AGENT_KEY_REQUIREMENTS: dict[AgentType, tuple[str, ...]] = {
    AgentType.CLAUDE: ("anthropic",),
    AgentType.CODEX: ("openai", "ai_gateway"),
    AgentType.COPILOT: (),
    AgentType.CURSOR: ("cursor",),
    AgentType.GEMINI: ("gemini",),
    AgentType.OPENCODE: ("openai", "anthropic"),
}


def validate_environment(
    selected_agent: AgentType,
    github_token: str | None,
    api_keys: ApiKeys,
    sandbox_api_key: str | None,
) -> None:
    """Check that every credential the selected agent needs is present.

    Raises:
        ConfigError: Naming the first missing credential.
    """
    if not sandbox_api_key:
        raise ConfigError("E2B_API_KEY is required for sandbox creation")

    if not github_token:
        raise ConfigError("GitHub token is required for repository access")

    required = AGENT_KEY_REQUIREMENTS[selected_agent]
    if required and not any(getattr(api_keys, key) for key in required):
        names = " or ".join(f"{key.upper()}_API_KEY" for key in required)
        raise ConfigError(f"{names} is required for {selected_agent.value} agent")


def create_authenticated_repo_url(repo_url: str, github_token: str | None) -> str:
    """Embed ``github_token`` into an HTTPS GitHub URL for cloning and pushing.

    URLs that are not HTTPS GitHub URLs, or that already carry credentials, are
    returned unchanged.
    """
    if not github_token:
        return repo_url

    parts = urlsplit(repo_url)
    if parts.scheme != "https" or parts.hostname != "github.com" or "@" in parts.netloc:
        return repo_url

    return urlunsplit(parts._replace(netloc=f"x-access-token:{github_token}@{parts.netloc}"))


_REPO_NAME = re.compile(r"/([^/]+?)(\.git)?/?$")


def repo_name_from_url(repo_url: str) -> str:
    match = _REPO_NAME.search(repo_url)
    return match.group(1) if match else "repository"


def parse_timeout_minutes(timeout: str | None, default: int, maximum: int) -> int:
    """Extract the digits of a timeout such as ``"60 minutes"`` and clamp them.

    Args:
        timeout: Free-form timeout string, or None.
        default: Minutes used when no digits are present.
        maximum: Upper bound in minutes.

    Returns:
        int: The timeout in minutes, between 1 and ``maximum``.
    """
    digits = re.sub(r"\D", "", timeout or "")
    minutes = int(digits) if digits else default
    return max(1, min(minutes, maximum))
