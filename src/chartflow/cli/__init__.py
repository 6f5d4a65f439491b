"""
CLI commands for chartflow.
"""

from chartflow.cli.install import install_command

__all__ = [
    "install_command",
]
