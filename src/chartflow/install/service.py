"""Wires the default collaborators into an InstallationWorkflow."""

from __future__ import annotations

from typing import Optional

from chartflow.config.settings import Settings, get_settings
from chartflow.install.builder import ChartConfigBuilder, resolve_cert_dir
from chartflow.install.cancellation import CancelSignal
from chartflow.install.certificates import MkcertRegenerator
from chartflow.install.executor import CommandExecutor
from chartflow.install.installer import ApplicationSyncWaiter, ChartInstaller
from chartflow.install.models import InstallationRequest, WorkflowResult
from chartflow.install.retry import installation_retry_policy
from chartflow.install.selector import ClusterSelector, K3dClusterLister
from chartflow.install.values import HelmValuesStore, ValuesFileCollector
from chartflow.install.workflow import InstallationWorkflow


class UxConfirmation:
    """Asks the user to confirm the target cluster."""

    async def confirm(self, target: str) -> bool:
        from chartflow.cli.ux import confirm

        return await confirm(f"Install charts on cluster '{target}'?", default=True)


async def ux_chooser(message: str, choices: list[str]) -> str:
    from chartflow.cli.ux import select

    return await select(message, choices)


def build_workflow(
    request: InstallationRequest,
    settings: Optional[Settings] = None,
) -> InstallationWorkflow:
    """Default workflow: values file collector, k3d, mkcert, helm."""
    settings = settings or get_settings()

    store = HelmValuesStore(settings.base_values_file, settings.temp_values_file)
    executor = CommandExecutor(dry_run=request.dry_run, verbose=request.verbose)
    waiter = ApplicationSyncWaiter(executor, poll_interval=settings.sync_poll_interval)

    return InstallationWorkflow(
        collector=ValuesFileCollector(store, branch=request.github_branch),
        selector=ClusterSelector(K3dClusterLister(), chooser=ux_chooser),
        confirmation=UxConfirmation(),
        certificates=MkcertRegenerator(
            resolve_cert_dir(request.cert_dir, settings), dry_run=request.dry_run
        ),
        builder=ChartConfigBuilder(settings),
        installer=ChartInstaller(executor, waiter, settings),
        values_store=store,
        retry_policy=installation_retry_policy(settings),
        install_timeout=settings.install_timeout_minutes * 60,
    )


async def install_charts(
    request: InstallationRequest,
    settings: Optional[Settings] = None,
    parent: Optional[CancelSignal] = None,
) -> WorkflowResult:
    """Run a full chart installation with the default collaborators."""
    workflow = build_workflow(request, settings)
    return await workflow.execute(request, parent=parent)
