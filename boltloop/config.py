"""Configuration loading and management."""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from boltloop.constants import (
    DEFAULT_EXEC_TIMEOUT,
    DEFAULT_MAX_READ_MB,
    DEFAULT_MAX_TURNS,
    DEFAULT_MAX_WRITE_MB,
    DEFAULT_MODE,
    DEFAULT_MODEL,
    DEFAULT_SEARCH_ENDPOINT,
    DEFAULT_WEB_MAX_CHARS,
    DEFAULT_WEB_TIMEOUT,
    TASK_MODES,
)


@dataclass
class Config:
    """boltloop configuration.

    Loads from .env and optionally .bolt/config.json
    """

    # API Keys
    anthropic_api_key: Optional[str] = None

    # Model settings
    default_model: str = DEFAULT_MODEL

    # Agent loop settings
    max_turns: int = DEFAULT_MAX_TURNS
    mode: str = DEFAULT_MODE

    # Execution settings
    exec_timeout: int = DEFAULT_EXEC_TIMEOUT

    # File limits
    max_read_mb: int = DEFAULT_MAX_READ_MB
    max_write_mb: int = DEFAULT_MAX_WRITE_MB

    # Web tools
    web_timeout: int = DEFAULT_WEB_TIMEOUT
    web_max_chars: int = DEFAULT_WEB_MAX_CHARS
    search_endpoint: str = DEFAULT_SEARCH_ENDPOINT

    # Custom commands (from .bolt/config.json)
    custom_commands: dict[str, str] = field(default_factory=dict)

    @classmethod
    def load(cls, project_root: Optional[Path] = None) -> "Config":
        """Load configuration from environment and project-specific config.

        Args:
            project_root: Project root directory (for .bolt/config.json)

        Returns:
            Config instance
        """
        load_dotenv()

        config = cls(
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
            default_model=os.getenv("BOLT_DEFAULT_MODEL", DEFAULT_MODEL),
            max_turns=int(os.getenv("BOLT_MAX_TURNS", DEFAULT_MAX_TURNS)),
            exec_timeout=int(os.getenv("BOLT_EXEC_TIMEOUT", DEFAULT_EXEC_TIMEOUT)),
            max_read_mb=int(os.getenv("BOLT_MAX_READ_MB", DEFAULT_MAX_READ_MB)),
            max_write_mb=int(os.getenv("BOLT_MAX_WRITE_MB", DEFAULT_MAX_WRITE_MB)),
            web_timeout=int(os.getenv("BOLT_WEB_TIMEOUT", DEFAULT_WEB_TIMEOUT)),
            web_max_chars=int(os.getenv("BOLT_WEB_MAX_CHARS", DEFAULT_WEB_MAX_CHARS)),
            search_endpoint=os.getenv("BOLT_SEARCH_ENDPOINT", DEFAULT_SEARCH_ENDPOINT),
        )

        # Load project-specific config if available
        if project_root:
            bolt_config_path = project_root / ".bolt" / "config.json"
            if bolt_config_path.exists():
                try:
                    with open(bolt_config_path) as f:
                        bolt_config = json.load(f)
                    config.custom_commands = bolt_config.get("commands", {})
                    if "max_turns" in bolt_config:
                        config.max_turns = int(bolt_config["max_turns"])
                    if "mode" in bolt_config:
                        config.mode = str(bolt_config["mode"])
                except (json.JSONDecodeError, IOError, ValueError, AttributeError):
                    pass  # Ignore invalid config

        return config

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors.

        Returns:
            List of error messages (empty if valid)
        """
        errors = []

        if not self.anthropic_api_key:
            errors.append("No API key found. Set ANTHROPIC_API_KEY")

        if self.max_turns < 1:
            errors.append("max_turns must be at least 1")

        if self.mode not in TASK_MODES:
            errors.append(f"mode must be one of: {', '.join(TASK_MODES)}")

        if self.exec_timeout <= 0:
            errors.append("exec_timeout must be positive")

        if self.max_read_mb <= 0:
            errors.append("max_read_mb must be positive")

        if self.max_write_mb <= 0:
            errors.append("max_write_mb must be positive")

        if self.web_max_chars <= 0:
            errors.append("web_max_chars must be positive")

        return errors

    def to_dict(self) -> dict:
        """Convert config to dictionary (for logging/display)."""
        return {
            "default_model": self.default_model,
            "max_turns": self.max_turns,
            "mode": self.mode,
            "exec_timeout": self.exec_timeout,
            "max_read_mb": self.max_read_mb,
            "max_write_mb": self.max_write_mb,
            "web_timeout": self.web_timeout,
            "web_max_chars": self.web_max_chars,
            "custom_commands": self.custom_commands,
            "has_anthropic_key": bool(self.anthropic_api_key),
        }
