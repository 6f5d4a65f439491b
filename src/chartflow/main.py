from __future__ import annotations

import argparse
import sys
from typing import Sequence

from chartflow import __version__
from chartflow.config.settings import get_settings
from chartflow.logging import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chartflow", description="chartflow CLI")
    parser.add_argument("--version", action="version", version=f"chartflow {__version__}")
    parser.add_argument("--log-json", action="store_true", help="Emit logs as JSON")
    subparsers = parser.add_subparsers(dest="command")

    install_parser = subparsers.add_parser(
        "install",
        help="Install ArgoCD and app-of-apps on an existing cluster",
    )
    install_parser.add_argument("cluster", nargs="?", help="Cluster name (prompted if omitted)")
    install_parser.add_argument("-f", "--force", action="store_true",
                                help="Force installation even if charts already exist")
    install_parser.add_argument("--dry-run", action="store_true",
                                help="Show what would be installed without executing")
    install_parser.add_argument("--github-repo", help="App-of-apps repository URL")
    install_parser.add_argument("--github-branch", help="App-of-apps repository branch")
    install_parser.add_argument("--github-username", help="GitHub username for private repositories")
    install_parser.add_argument("--github-token", help="GitHub personal access token")
    install_parser.add_argument("--cert-dir", help="Certificate directory (auto-detected if omitted)")
    install_parser.add_argument("-v", "--verbose", action="store_true",
                                help="Show detailed progress")

    return parser


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    verbose = getattr(args, "verbose", False)
    configure_logging(
        "DEBUG" if verbose else settings.log_level,
        json_output=args.log_json or settings.log_json,
    )

    if args.command == "install":
        from chartflow.cli.install import install_command

        sys.exit(install_command(
            args=[args.cluster] if args.cluster else [],
            force=args.force,
            dry_run=args.dry_run,
            verbose=args.verbose,
            github_repo=args.github_repo,
            github_branch=args.github_branch,
            github_username=args.github_username,
            github_token=args.github_token,
            cert_dir=args.cert_dir,
            settings=settings,
        ))

    parser.print_help()
    sys.exit(0)


if __name__ == "__main__":
    main()
