"""
Security helpers for the service bot.

Validates service names before they reach an allow-list or a systemctl
argv, and masks secrets in journal output before it is sent to Discord.
"""

import re
from dataclasses import dataclass

# systemd unit name characters: ASCII alphanumerics, ":", "-", "_", ".", "\" and "@"
SERVICE_NAME_PATTERN = re.compile(r"[A-Za-z0-9:_.@\\-]+")
MAX_SERVICE_NAME_LENGTH = 256


@dataclass
class ValidationResult:
    """Result of service name validation."""

    is_allowed: bool
    reason: str
    service: str


def validate_service_name(service: str) -> ValidationResult:
    """
    Validate a service name against systemd unit naming rules.

    Returns ValidationResult with is_allowed=True only if:
    1. Name is non-empty and at most 256 characters
    2. Name does not start with "-" (would be parsed as a systemctl option)
    3. Name only contains characters valid in a unit name

    Args:
        service: The service name to validate

    Returns:
        ValidationResult with validation outcome and reason
    """
    if not service:
        return ValidationResult(False, "Service name is empty", service)

    if len(service) > MAX_SERVICE_NAME_LENGTH:
        return ValidationResult(
            False,
            f"Service name longer than {MAX_SERVICE_NAME_LENGTH} characters",
            service,
        )

    if service.startswith("-"):
        return ValidationResult(False, "Service name must not start with '-'", service)

    if not SERVICE_NAME_PATTERN.fullmatch(service):
        return ValidationResult(
            False, "Service name contains characters not valid in a unit name", service
        )

    return ValidationResult(True, "Service name valid", service)


def sanitize_output(text: str) -> str:
    """
    Sanitize command output before sending to Discord.

    Masks potential secrets like API keys, passwords, and tokens that
    services commonly print to their journal.

    Args:
        text: Raw command output

    Returns:
        Sanitized text with secrets masked
    """
    # Remove ANSI escape codes
    text = re.sub(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])", "", text)

    # Patterns to mask (pattern, replacement)
    secret_patterns = [
        # API keys
        (r"api[_-]?key[=:]\s*\S+", "api_key=***MASKED***"),
        (r"apikey[=:]\s*\S+", "apikey=***MASKED***"),
        # Secrets and passwords
        (r"secret[=:]\s*\S+", "secret=***MASKED***"),
        (r"password[=:]\s*\S+", "password=***MASKED***"),
        (r"passwd[=:]\s*\S+", "passwd=***MASKED***"),
        # Tokens
        (r"token[=:]\s*\S+", "token=***MASKED***"),
        (r"bearer\s+\S+", "bearer ***MASKED***"),
        # AWS credentials
        (r"AKIA[0-9A-Z]{16}", "***AWS_ACCESS_KEY***"),
        # Discord bot tokens
        (r"[MN][A-Za-z\d]{23,}\.[\w-]{6}\.[\w-]{27}", "***DISCORD_TOKEN***"),
        # Generic long hex strings that might be keys
        (r"\b[a-fA-F0-9]{40,}\b", "***MASKED_HEX***"),
    ]

    for pattern, replacement in secret_patterns:
        text = re.sub(pattern, replacement, text, flags=re.IGNORECASE)

    return text
