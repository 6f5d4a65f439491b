"""Builds the fully resolved ChartInstallConfig for one run."""

from __future__ import annotations

from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from chartflow.config.settings import Settings
from chartflow.core.errors import ValidationError
from chartflow.install.models import AppOfAppsConfig, ChartInstallConfig, InstallationRequest

DEFAULT_CERT_DIR = Path.home() / ".config" / "chartflow" / "certs"


def resolve_cert_dir(request_cert_dir: str, settings: Settings) -> Path:
    """Request override first, then settings, then the per-user default."""
    if request_cert_dir:
        return Path(request_cert_dir).expanduser()
    if settings.cert_dir:
        return Path(settings.cert_dir).expanduser()
    return DEFAULT_CERT_DIR


class ChartConfigBuilder:
    """Combines request, collected values and target into an install config."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def build(
        self,
        request: InstallationRequest,
        target: str,
        temp_values_path: Optional[Path],
    ) -> ChartInstallConfig:
        if not target:
            raise ValidationError("cluster name is required")

        repo = request.github_repo or self._settings.github_repo
        branch = request.github_branch or self._settings.github_branch
        _validate_repository(repo)
        if not branch or any(ch.isspace() for ch in branch):
            raise ValidationError(f"invalid branch name: {branch!r}", details={"branch": branch})

        app_of_apps = AppOfAppsConfig(
            github_repo=repo,
            github_branch=branch,
            cert_dir=resolve_cert_dir(request.cert_dir, self._settings),
            values_file=temp_values_path,
            github_username=request.github_username or (self._settings.github_username or ""),
            github_token=request.github_token or (self._settings.github_token or ""),
            namespace=self._settings.argocd_namespace,
            chart_path=self._settings.app_of_apps_chart_path,
        )

        return ChartInstallConfig(
            cluster_name=target,
            force=request.force,
            dry_run=request.dry_run,
            verbose=request.verbose,
            silent=False,
            app_of_apps=app_of_apps,
        )


def _validate_repository(repo: str) -> None:
    parsed = urlparse(repo)
    if parsed.scheme not in ("https", "http", "ssh", "git", "file") or not (
        parsed.netloc or parsed.scheme == "file"
    ):
        raise ValidationError(
            f"invalid repository URL: {repo!r}", details={"repository": repo}
        )
