"""
Service bot configuration management.

Loads configuration from environment variables and provides defaults.
The environment (development or production) selects which servers file
is used and whether service actions are actually executed.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

DEVELOPMENT = "development"
PRODUCTION = "production"

# Servers file names per environment
DEV_SERVERS_FILE = "dev.servers.yaml"
PROD_SERVERS_FILE = "servers.yaml"


def _env_int(name: str, default: int) -> int:
    """Read an integer environment variable, falling back to default."""
    value = os.getenv(name, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


@dataclass
class BotConfig:
    """Configuration for the service control bot."""

    # API token (required)
    discord_token: str = field(default_factory=lambda: os.getenv("DISCORD_TOKEN", ""))

    # development | production
    environment: str = field(
        default_factory=lambda: os.getenv("SERVICE_BOT_ENV", PRODUCTION).strip().lower()
    )

    # Resolved in __post_init__ when not given
    servers_file: Path | None = None
    log_dir: Path = field(
        default_factory=lambda: Path(
            os.getenv("SERVICE_BOT_LOG_DIR", str(Path.home() / "logs" / "service_bot"))
        )
    )

    # Invoker limits
    command_timeout: int = field(default_factory=lambda: _env_int("COMMAND_TIMEOUT", 30))
    max_output_size: int = 50000

    # Log command limits
    default_log_lines: int = 50
    max_log_lines: int = 200

    # Extra save attempts before an add-service is given up
    save_retries: int = field(default_factory=lambda: _env_int("SAVE_RETRIES", 2))

    def __post_init__(self):
        """Resolve the servers file path for the selected environment."""
        if self.servers_file is None:
            override = os.getenv("SERVERS_FILE", "").strip()
            if override:
                self.servers_file = Path(override)
            elif self.is_development:
                self.servers_file = Path(DEV_SERVERS_FILE)
            else:
                self.servers_file = Path(PROD_SERVERS_FILE)
        else:
            self.servers_file = Path(self.servers_file)

    @property
    def is_development(self) -> bool:
        """Development builds use the dev servers file and never run systemctl."""
        return self.environment == DEVELOPMENT

    def validate(self) -> tuple[bool, str]:
        """Validate that required configuration is present."""
        if not self.discord_token:
            return False, "DISCORD_TOKEN environment variable not set"
        if self.environment not in (DEVELOPMENT, PRODUCTION):
            return False, (
                f"SERVICE_BOT_ENV must be '{DEVELOPMENT}' or '{PRODUCTION}', "
                f"got '{self.environment}'"
            )
        if self.command_timeout <= 0:
            return False, "COMMAND_TIMEOUT must be positive"
        if self.save_retries < 0:
            return False, "SAVE_RETRIES must not be negative"
        return True, "Configuration valid"


def load_config() -> BotConfig:
    """Load configuration from environment variables."""
    return BotConfig()
