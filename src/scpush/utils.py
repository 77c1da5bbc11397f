"""
Console helpers for scpush.
"""

import click


def display_comment(comment: str, prefix: str = "💬") -> None:
    """Display a configuration comment in cyan, if there is one."""
    if comment:
        click.echo(click.style(f"{prefix} {comment}", fg="cyan"))


def format_elapsed(elapsed: float) -> str:
    """
    Format a duration as compact days/hours/minutes/seconds.

    Args:
        elapsed: Duration in seconds.

    Returns:
        String such as ``"1h 0m 5.25s"``; larger units are omitted while zero.
    """
    days = int(elapsed // 86400)
    hours = int((elapsed % 86400) // 3600)
    minutes = int((elapsed % 3600) // 60)
    seconds = elapsed % 60

    time_parts = []
    if days > 0:
        time_parts.append(f"{days}d")
    if hours > 0 or days > 0:
        time_parts.append(f"{hours}h")
    if minutes > 0 or hours > 0 or days > 0:
        time_parts.append(f"{minutes}m")
    time_parts.append(f"{seconds:.2f}s")
    return " ".join(time_parts)
