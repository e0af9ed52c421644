"""Environment-based authentication for TriageSuite.

Resolves the GitLab API token from an explicit value, the process
environment, or a ``.env`` file loaded with python-dotenv.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .logging import get_logger

TOKEN_VARS = ("GITLAB_API_TOKEN", "GITLAB_TOKEN", "CI_JOB_TOKEN")
DOTENV_LOCATIONS = (".env", ".env.local")


@dataclass
class EnvAuthConfig:
    """Configuration for environment-based authentication."""

    load_dotenv: bool = True
    dotenv_path: str | None = None
    token_vars: tuple[str, ...] = TOKEN_VARS


class EnvironmentAuthManager:
    """Manages authentication through environment variables and .env files."""

    def __init__(self, config: EnvAuthConfig):
        self.config = config
        self.logger = get_logger()
        self._dotenv_loaded = False
        if config.load_dotenv:
            self._load_dotenv()

    @property
    def dotenv_loaded(self) -> bool:
        return self._dotenv_loaded

    def _load_dotenv(self) -> None:
        """Load the configured .env file, or the first default location that exists."""
        candidates = (
            [self.config.dotenv_path] if self.config.dotenv_path else list(DOTENV_LOCATIONS)
        )
        for location in candidates:
            env_path = Path(location)
            if env_path.exists():
                load_dotenv(str(env_path))
                self._dotenv_loaded = True
                self.logger.debug(f"Loaded environment variables from {env_path}")
                return

    def get_token(self) -> str | None:
        for var in self.config.token_vars:
            token = os.getenv(var)
            if token:
                self.logger.debug(f"Found GitLab token in {var}")
                return token
        return None

    def get_authentication_recommendations(self) -> list[str]:
        if self.get_token():
            return []
        return [
            "Pass --token or set GITLAB_API_TOKEN",
            "Or create .env file with GITLAB_API_TOKEN=your_token",
            "In GitLab CI, store the token as a masked CI/CD variable",
        ]


def create_env_auth_manager(config: EnvAuthConfig | None = None) -> EnvironmentAuthManager:
    """Factory function to create environment authentication manager."""
    return EnvironmentAuthManager(config or EnvAuthConfig())


def resolve_token(explicit: str | None = None, config: EnvAuthConfig | None = None) -> str | None:
    """Explicit value first, then the environment (after loading .env)."""
    if explicit:
        return explicit
    return create_env_auth_manager(config).get_token()


__all__ = [
    "EnvAuthConfig",
    "EnvironmentAuthManager",
    "TOKEN_VARS",
    "create_env_auth_manager",
    "resolve_token",
]
