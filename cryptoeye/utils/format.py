"""Number and time formatting helpers for the terminal view."""

from __future__ import annotations

from datetime import datetime


def format_with_spaces(value: float) -> str:
    """
    Format a value with two decimals and space-separated thousands.

    Examples:
        format_with_spaces(1234567.891) -> "1 234 567.89"
        format_with_spaces(-1234.5) -> "-1 234.50"
    """
    return f"{value:,.2f}".replace(",", " ")


def format_kitchen(now: datetime) -> str:
    """Format a time like "3:04PM"."""
    return f"{now.hour % 12 or 12}:{now.minute:02d}{'AM' if now.hour < 12 else 'PM'}"
