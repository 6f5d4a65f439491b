"""
CLI UX utilities using Charm tools (gum) with Python fallbacks.

Progressive enhancement: best UX when gum is installed, always works via pip.
Uses rich/questionary as fallbacks when gum is not available.

Environment handling:
- Automatically detects TTY vs pipe/CI
- Respects NO_COLOR and FORCE_COLOR environment variables
- Prompts answer with their default in non-interactive environments
"""

from __future__ import annotations

import asyncio
import os
import shutil
import subprocess
import sys
from typing import Any

import questionary
from questionary import Style as QStyle
from rich.console import Console
from rich.panel import Panel
from rich.theme import Theme

# Nord color palette (https://www.nordtheme.com/)
CHARTFLOW_THEME = Theme(
    {
        "info": "#88C0D0",  # Nord frost - light blue
        "success": "#A3BE8C",  # Nord aurora - green
        "warning": "#EBCB8B",  # Nord aurora - yellow
        "error": "#BF616A bold",  # Nord aurora - red
        "highlight": "#B48EAD",  # Nord aurora - purple
        "muted": "#D8DEE9",  # Nord snow storm - light grey
    }
)


def _is_interactive() -> bool:
    """Check if we're in an interactive terminal environment."""
    ci_vars = ["CI", "GITHUB_ACTIONS", "JENKINS_URL", "GITLAB_CI", "CIRCLECI", "TRAVIS"]
    if any(os.environ.get(var) for var in ci_vars):
        return False
    return sys.stdout.isatty()


console = Console(
    theme=CHARTFLOW_THEME,
    force_terminal=os.environ.get("FORCE_COLOR") is not None,
    no_color=os.environ.get("NO_COLOR") is not None,
)

PROMPT_STYLE = QStyle(
    [
        ("qmark", "fg:#88C0D0 bold"),
        ("question", "bold"),
        ("answer", "fg:#A3BE8C"),
        ("pointer", "fg:#88C0D0 bold"),
        ("highlighted", "fg:#81A1C1 bold"),
        ("selected", "fg:#A3BE8C"),
    ]
)


def has_gum() -> bool:
    """Check if gum is available in PATH."""
    return shutil.which("gum") is not None


def _run_gum(args: list[str], **kwargs: Any) -> subprocess.CompletedProcess:
    return subprocess.run(["gum", *args], **kwargs)


# === Output Formatting ===


def success(message: str) -> None:
    console.print(f"[success]✓ {message}[/success]")


def error(message: str) -> None:
    console.print(f"[error]✗ {message}[/error]")


def warning(message: str) -> None:
    console.print(f"[warning]⚠ {message}[/warning]")


def info(message: str) -> None:
    console.print(f"[info]ℹ {message}[/info]")


def header(title: str) -> None:
    """Print a boxed section header."""
    console.print()
    console.print(Panel(f"[bold]{title}[/bold]", border_style="cyan"))


def print_key_value(items: dict[str, str], title: str | None = None) -> None:
    """Print key-value pairs, one per line."""
    if title:
        console.print(f"\n[bold]{title}[/bold]")

    for key, value in items.items():
        console.print(f"  [cyan]{key}:[/cyan] {value}")


# === Interactive Prompts ===
# Coroutines: prompt_toolkit cannot start a nested event loop inside the workflow.


async def confirm(message: str, default: bool = False) -> bool:
    """Ask a yes/no question; without a terminal the default is the answer."""
    if not _is_interactive():
        return default
    if has_gum():
        default_flag = "--default" if default else "--default=false"
        result = await asyncio.to_thread(_run_gum, ["confirm", default_flag, message])
        return result.returncode == 0
    answer = await questionary.confirm(message, default=default, style=PROMPT_STYLE).ask_async()
    return answer or False


async def select(message: str, choices: list[str], default: str | None = None) -> str:
    """Pick one of ``choices``. An aborted prompt yields ``default`` or ""."""
    if has_gum():
        result = await asyncio.to_thread(
            _run_gum,
            ["choose", "--header", message, *choices],
            capture_output=True,
            text=True,
        )
        return result.stdout.strip() if result.returncode == 0 else (default or "")
    answer = await questionary.select(
        message,
        choices=choices,
        default=default,
        style=PROMPT_STYLE,
    ).ask_async()
    return answer or (default or "")
