"""
Discord message formatting utilities.

Handles Discord's character limits, code blocks and the status listing.
"""

from typing import List, Tuple

# Discord limits
MAX_MESSAGE_LENGTH = 2000
MAX_AUTOCOMPLETE_CHOICES = 25
CODE_BLOCK_OVERHEAD = 8  # ```\n...\n```

NO_SERVICES_MESSAGE = "No services are configured for this server."


def format_code_block(text: str, language: str = "") -> str:
    """
    Wrap text in a Discord code block.

    Args:
        text: The text to wrap
        language: Optional syntax highlighting language

    Returns:
        Text wrapped in code block markers
    """
    return f"```{language}\n{text}\n```"


def truncate_for_discord(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """
    Truncate text to fit Discord's limit with indicator.

    Args:
        text: Text to truncate
        max_length: Maximum length

    Returns:
        Truncated text with indicator if needed
    """
    if len(text) <= max_length:
        return text

    truncate_indicator = "\n... [truncated]"
    return text[: max_length - len(truncate_indicator)] + truncate_indicator


def tail_for_discord(text: str, max_length: int) -> str:
    """Keep the end of text (newest journal lines) within max_length."""
    if len(text) <= max_length:
        return text

    truncate_indicator = "[truncated] ...\n"
    return truncate_indicator + text[-(max_length - len(truncate_indicator)):]


def format_status_listing(statuses: List[Tuple[str, bool]]) -> str:
    """
    Format per-service status lines as "name: up" / "name: down".

    Args:
        statuses: (service, is_active) pairs in allow-list order

    Returns:
        One line per service, or a notice when the list is empty
    """
    if not statuses:
        return NO_SERVICES_MESSAGE

    lines = [f"{service}: {'up' if active else 'down'}" for service, active in statuses]
    return truncate_for_discord("\n".join(lines))


def format_journal(service: str, journal: str) -> str:
    """Wrap journal output in a code block that fits one Discord message."""
    header = f"**{service}** journal:\n"
    budget = MAX_MESSAGE_LENGTH - len(header) - CODE_BLOCK_OVERHEAD
    return header + format_code_block(tail_for_discord(journal, budget))
