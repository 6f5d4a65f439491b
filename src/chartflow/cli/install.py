"""
Chart install command.

Installs ArgoCD and the app-of-apps chart on an existing cluster. Ctrl-C
aborts the run at the next step boundary and rolls back generated files.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Sequence

from chartflow.cli.ux import console, header, info, print_key_value, success, warning
from chartflow.config.settings import Settings, get_settings
from chartflow.core.errors import ExitCode, handle_global_error, main_with_error_handling
from chartflow.install.models import InstallationRequest, WorkflowResult
from chartflow.install.service import install_charts
from chartflow.logging import bind_context


@main_with_error_handling()
def install_command(
    args: Sequence[str] = (),
    force: bool = False,
    dry_run: bool = False,
    verbose: bool = False,
    github_repo: Optional[str] = None,
    github_branch: Optional[str] = None,
    github_username: Optional[str] = None,
    github_token: Optional[str] = None,
    cert_dir: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> int:
    """
    Install charts on a cluster.

    Exit codes: 0 = installed (or nothing selected), 130 = cancelled,
    10/11/12 = configuration/provider/validation errors.
    """
    settings = settings or get_settings()
    request = InstallationRequest(
        args=tuple(args),
        force=force,
        dry_run=dry_run,
        verbose=verbose,
        github_repo=github_repo or settings.github_repo,
        github_branch=github_branch or settings.github_branch,
        github_username=github_username or "",
        github_token=github_token or "",
        cert_dir=cert_dir or "",
    )
    log = bind_context(command="install", dry_run=dry_run)
    log.debug("install_requested", args=list(request.args), force=force)

    header("Chart Installation" + (" (dry run)" if dry_run else ""))
    if verbose:
        print_key_value(
            {
                "Repository": request.github_repo,
                "Branch": request.github_branch,
                "Cert dir": request.cert_dir or "(auto)",
            }
        )

    result = asyncio.run(install_charts(request, settings))
    return _report(result, verbose)


def _report(result: WorkflowResult, verbose: bool) -> int:
    """Render the outcome and return the exit code."""
    if verbose:
        for err in result.non_fatal_errors:
            warning(str(err))

    if result.error is not None:
        return handle_global_error(result.error, verbose=verbose)

    if result.target is None:
        info("No cluster selected, nothing installed.")
        return ExitCode.SUCCESS

    success(f"Charts installed on cluster '{result.target}'")
    if verbose:
        console.print(
            f"[muted]{result.attempts} attempt(s) in {result.duration_seconds:.1f}s[/muted]"
        )
    return ExitCode.SUCCESS
