"""Utility functions and helpers."""

from typing import Iterable


def truncate_text(text: str, max_length: int = 100) -> str:
    """Truncate text to maximum length.

    Args:
        text: Text to truncate
        max_length: Maximum length

    Returns:
        Truncated text with ellipsis if needed
    """
    text = " ".join(text.split())
    if len(text) <= max_length:
        return text
    return text[:max_length - 3] + "..."


def format_status(status_code: int) -> str:
    """Format an HTTP status with rich markup by class.

    Args:
        status_code: HTTP status code

    Returns:
        Markup string (e.g., "[green]200[/green]")
    """
    if status_code < 300:
        color = "green"
    elif status_code < 400:
        color = "cyan"
    elif status_code == 429:
        color = "yellow"
    elif status_code < 500:
        color = "magenta"
    else:
        color = "red"
    return f"[{color}]{status_code}[/{color}]"


def format_bytes(size: int) -> str:
    """Format a byte count (e.g., "256.0 KB")."""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def parse_header_options(values: Iterable[str]) -> dict:
    """Parse repeated ``Name: value`` CLI options into a header dict.

    Raises:
        ValueError: If an entry has no colon.
    """
    headers = {}
    for item in values:
        name, sep, value = item.partition(":")
        if not sep or not name.strip():
            raise ValueError(f"Invalid header {item!r}, expected 'Name: value'")
        headers[name.strip()] = value.strip()
    return headers


def join_url(base: str, path: str) -> str:
    """Join a base URL and a path with exactly one slash between them."""
    if path.startswith(("http://", "https://")):
        return path
    return base.rstrip("/") + "/" + path.lstrip("/")
