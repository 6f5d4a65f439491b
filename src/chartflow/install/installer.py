"""
Chart installer.

Installs ArgoCD from its helm repository, then the app-of-apps chart cloned
from the configured git repository, then waits for the ArgoCD applications
it declares to sync. Each phase checks the cancel signal before starting;
a running command is always allowed to finish.
"""

from __future__ import annotations

import base64
import json
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from chartflow.config.settings import Settings
from chartflow.core.errors import BranchNotFoundError, CommandError
from chartflow.install.cancellation import CancelSignal
from chartflow.install.collaborators import SyncWaiter
from chartflow.install.executor import CommandExecutor
from chartflow.install.models import AppOfAppsConfig, ChartInstallConfig

logger = structlog.get_logger()

ARGOCD_RELEASE = "argo-cd"
ARGOCD_CHART = "argo/argo-cd"


def kube_context(cluster_name: str) -> str:
    """kubectl/helm context name for a k3d cluster."""
    return f"k3d-{cluster_name}"


def is_branch_not_found(stderr: str) -> bool:
    """Whether git output reports a missing remote branch."""
    text = stderr.lower()
    return "remote branch" in text and "not found" in text


class ChartInstaller:
    """Installs ArgoCD and the app-of-apps chart onto one cluster."""

    def __init__(
        self,
        executor: CommandExecutor,
        waiter: Optional[SyncWaiter],
        settings: Settings,
    ) -> None:
        self._executor = executor
        self._waiter = waiter
        self._settings = settings

    async def install(self, cancel_signal: CancelSignal, config: ChartInstallConfig) -> None:
        cancel_signal.raise_if_cancelled()
        await self._install_argocd(config)

        if not config.has_app_of_apps:
            return

        cancel_signal.raise_if_cancelled()
        await self._install_app_of_apps(config)

        if self._waiter is not None:
            cancel_signal.raise_if_cancelled()
            await self._waiter.wait(cancel_signal, config)

    async def _install_argocd(self, config: ChartInstallConfig) -> None:
        settings = self._settings
        await self._executor.run(
            "helm", "repo", "add", "argo", settings.argocd_repo_url, "--force-update"
        )
        args = [
            "helm", "upgrade", "--install", ARGOCD_RELEASE, ARGOCD_CHART,
            "--version", settings.argocd_chart_version,
            "--namespace", settings.argocd_namespace,
            "--create-namespace",
            "--kube-context", kube_context(config.cluster_name),
            "--wait",
        ]
        if config.app_of_apps is not None and config.app_of_apps.values_file:
            args += ["-f", str(config.app_of_apps.values_file)]
        if config.force:
            args.append("--force")
        logger.info("argocd_install_started", cluster=config.cluster_name)
        await self._executor.run(*args)

    async def _install_app_of_apps(self, config: ChartInstallConfig) -> None:
        app = config.app_of_apps
        if app is None:
            return

        with tempfile.TemporaryDirectory(prefix="chartflow-") as workdir:
            checkout = Path(workdir) / "repo"
            await self._clone(app, checkout)

            args = [
                "helm", "upgrade", "--install", app.release_name,
                str(checkout / app.chart_path),
                "--namespace", app.namespace,
                "--kube-context", kube_context(config.cluster_name),
                "--wait",
            ]
            if app.values_file:
                args += ["-f", str(app.values_file)]
            args += _certificate_args(app.cert_dir)
            logger.info(
                "app_of_apps_install_started",
                cluster=config.cluster_name,
                repository=app.github_repo,
                branch=app.github_branch,
            )
            await self._executor.run(*args)

    async def _clone(self, app: AppOfAppsConfig, checkout: Path) -> None:
        env = _auth_env(app)
        args = [
            "git", "clone", "--depth", "1", "--branch", app.github_branch,
            app.github_repo, str(checkout),
        ]
        try:
            await self._executor.run(*args, env=env)
        except CommandError as exc:
            if is_branch_not_found(exc.stderr):
                raise BranchNotFoundError(app.github_repo, app.github_branch) from exc
            raise


def _auth_env(app: AppOfAppsConfig) -> Optional[Dict[str, str]]:
    """Basic-auth header for git, passed as environment config so it stays off the command line."""
    if not (app.github_username and app.github_token):
        return None
    credentials = f"{app.github_username}:{app.github_token}".encode()
    return {
        "GIT_CONFIG_COUNT": "1",
        "GIT_CONFIG_KEY_0": "http.extraHeader",
        "GIT_CONFIG_VALUE_0": "Authorization: Basic " + base64.b64encode(credentials).decode(),
    }


def _certificate_args(cert_dir: Path) -> List[str]:
    cert = cert_dir / "localhost.pem"
    key = cert_dir / "localhost-key.pem"
    if not (cert.exists() and key.exists()):
        return []
    return [
        "--set-file", f"global.tls.cert={cert}",
        "--set-file", f"global.tls.key={key}",
    ]


class ApplicationSyncWaiter:
    """Polls ArgoCD applications until every one is Synced and Healthy."""

    def __init__(self, executor: CommandExecutor, poll_interval: float = 10.0) -> None:
        self._executor = executor
        self._poll_interval = poll_interval

    async def wait(self, cancel_signal: CancelSignal, config: ChartInstallConfig) -> None:
        app = config.app_of_apps
        if app is None or not config.has_app_of_apps or config.dry_run:
            return

        last_pending: Optional[List[str]] = None
        while True:
            cancel_signal.raise_if_cancelled()
            result = await self._executor.run(
                "kubectl", "get", "applications.argoproj.io",
                "--namespace", app.namespace,
                "--context", kube_context(config.cluster_name),
                "-o", "json",
                check=False,
                mutating=False,
            )
            if result.returncode == 0:
                pending = pending_applications(_parse_items(result.stdout))
                if pending is not None and not pending:
                    logger.info("applications_synced", cluster=config.cluster_name)
                    return
                if pending != last_pending:
                    logger.info("applications_pending", pending=pending or [])
                    last_pending = pending
            else:
                logger.debug("applications_query_failed", stderr=result.stderr.strip())

            await cancel_signal.sleep(self._poll_interval)


def pending_applications(items: List[Dict[str, Any]]) -> Optional[List[str]]:
    """Names of applications not yet Synced/Healthy; None if there are none yet."""
    if not items:
        return None
    pending = []
    for item in items:
        status = item.get("status", {})
        sync = status.get("sync", {}).get("status")
        health = status.get("health", {}).get("status")
        if sync != "Synced" or health != "Healthy":
            pending.append(item.get("metadata", {}).get("name", "<unknown>"))
    return pending


def _parse_items(output: str) -> List[Dict[str, Any]]:
    try:
        data = json.loads(output or "{}")
    except json.JSONDecodeError:
        return []
    return list(data.get("items", []))
