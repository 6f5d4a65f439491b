"""Protocols for the steps the installation workflow delegates to.

Synchronous implementations are accepted wherever a method is not marked
async; the workflow awaits whatever awaitable a collaborator returns.
"""

from __future__ import annotations

from pathlib import Path
from typing import Awaitable, Optional, Protocol, Sequence, Union, runtime_checkable

from chartflow.install.cancellation import CancelSignal
from chartflow.install.models import ChartConfiguration, ChartInstallConfig, InstallationRequest


@runtime_checkable
class ConfigurationCollector(Protocol):
    """Produces the chart configuration, possibly by prompting."""

    def collect(self) -> Union[ChartConfiguration, Awaitable[ChartConfiguration]]:
        """Return the collected configuration. Must not leave files behind on error."""
        ...


@runtime_checkable
class TargetSelector(Protocol):
    """Chooses the cluster to install on."""

    def select(self, args: Sequence[str], verbose: bool) -> Union[str, Awaitable[str]]:
        """Return the cluster name, or "" when the user chose not to continue."""
        ...


@runtime_checkable
class ConfirmationPrompt(Protocol):
    def confirm(self, target: str) -> Union[bool, Awaitable[bool]]:
        ...


@runtime_checkable
class CertificateRegenerator(Protocol):
    def regenerate(self) -> Union[None, Awaitable[None]]:
        ...


@runtime_checkable
class ConfigurationBuilder(Protocol):
    """Resolves request + collected configuration + target into install config."""

    def build(
        self,
        request: InstallationRequest,
        target: str,
        temp_values_path: Optional[Path],
    ) -> Union[ChartInstallConfig, Awaitable[ChartInstallConfig]]:
        ...


@runtime_checkable
class Installer(Protocol):
    """Installs the charts. Raises BranchNotFoundError for a missing ref."""

    async def install(self, cancel_signal: CancelSignal, config: ChartInstallConfig) -> None:
        ...


@runtime_checkable
class SyncWaiter(Protocol):
    """Waits until the remotely managed applications have converged."""

    async def wait(self, cancel_signal: CancelSignal, config: ChartInstallConfig) -> None:
        ...
