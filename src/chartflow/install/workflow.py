"""
Installation workflow orchestrator.

Runs the installation steps in order:

1. Pre-check the cancel signal
2. Collect configuration (or synthesize it in dry-run mode)
3. Select the target cluster ("" ends the run without installing)
4. Confirm with the user
5. Refresh certificates (best effort)
6. Build the install configuration
7. Install, retried under the installation policy and bounded by a deadline

and then resolves the temp-file ledger exactly once: commit after a
successful installation, restore in every other case.
"""

from __future__ import annotations

import asyncio
import inspect
import time
import uuid
from typing import Any, Callable, Iterable, Optional

import structlog

from chartflow.core.errors import (
    BranchNotFoundError,
    ChartError,
    ChartflowError,
    ConfigurationError,
    InstallationCancelledError,
    LedgerError,
    WorkflowStateError,
)
from chartflow.install.cancellation import (
    DECLINED,
    DEFAULT_SIGNALS,
    INTERRUPTED,
    CancelSignal,
    SignalBridge,
)
from chartflow.install.collaborators import (
    CertificateRegenerator,
    ConfigurationBuilder,
    ConfigurationCollector,
    ConfirmationPrompt,
    Installer,
    TargetSelector,
)
from chartflow.install.ledger import TempFileLedger
from chartflow.install.models import (
    OUTCOME_STATES,
    ChartConfiguration,
    ChartInstallConfig,
    InstallationRequest,
    WorkflowOutcome,
    WorkflowResult,
    WorkflowState,
)
from chartflow.install.retry import RetryExecutor, RetryPolicy, installation_retry_policy
from chartflow.install.values import HelmValuesStore

logger = structlog.get_logger()

INSTALL_TIMEOUT_SECONDS = 60 * 60


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class InstallationWorkflow:
    """Sequences the installation steps around one cancel signal and ledger."""

    def __init__(
        self,
        *,
        collector: ConfigurationCollector,
        selector: TargetSelector,
        confirmation: ConfirmationPrompt,
        certificates: CertificateRegenerator,
        builder: ConfigurationBuilder,
        installer: Installer,
        values_store: Optional[HelmValuesStore] = None,
        retry_policy: Optional[RetryPolicy] = None,
        install_timeout: float = INSTALL_TIMEOUT_SECONDS,
        ledger_factory: Callable[[], TempFileLedger] = TempFileLedger,
        signals: Iterable[int] = DEFAULT_SIGNALS,
    ) -> None:
        self._collector = collector
        self._selector = selector
        self._confirmation = confirmation
        self._certificates = certificates
        self._builder = builder
        self._installer = installer
        self._values_store = values_store or HelmValuesStore()
        self._retry_policy = retry_policy or installation_retry_policy()
        self._install_timeout = install_timeout
        self._ledger_factory = ledger_factory
        self._signals = tuple(signals)

    async def execute(
        self,
        request: InstallationRequest,
        parent: Optional[CancelSignal] = None,
    ) -> WorkflowResult:
        """Run the workflow. Errors are reported on the result, not raised.

        ``parent`` lets a caller cancel the run; the run also cancels itself
        on SIGINT/SIGTERM while it is executing.
        """
        started = time.monotonic()
        run_signal = CancelSignal(parent=parent)
        ledger = self._ledger_factory()
        result = WorkflowResult(outcome=WorkflowOutcome.SUCCESS, states=[WorkflowState.PENDING])

        with structlog.contextvars.bound_contextvars(
            run_id=uuid.uuid4().hex[:8], dry_run=request.dry_run
        ):
            installed = False
            try:
                with SignalBridge(run_signal, self._signals) as bridge:
                    try:
                        installed = await self._run_steps(request, run_signal, ledger, result)
                    except asyncio.CancelledError:
                        self._resolve_ledger(ledger, result, commit=False, verbose=False)
                        raise
                    except Exception as exc:
                        result.error = exc

                    if result.error is None and (run_signal.cancelled or bridge.interrupted):
                        result.error = InstallationCancelledError(run_signal.reason or INTERRUPTED)
            finally:
                run_signal.detach()

            self._finish(request, ledger, result, installed)
            result.duration_seconds = time.monotonic() - started
            logger.info(
                "installation_finished",
                outcome=result.outcome.value,
                target=result.target,
                attempts=result.attempts,
                duration=round(result.duration_seconds, 2),
            )
        return result

    async def _run_steps(
        self,
        request: InstallationRequest,
        run_signal: CancelSignal,
        ledger: TempFileLedger,
        result: WorkflowResult,
    ) -> bool:
        """Run steps 1-7. Returns False when the run ended early without installing."""
        run_signal.raise_if_cancelled()

        self._transition(result, WorkflowState.CONFIGURING)
        chart_config = await self._configure(request, ledger, result)
        run_signal.raise_if_cancelled()

        self._transition(result, WorkflowState.SELECTING_TARGET)
        target = await _resolve(self._selector.select(request.args, request.verbose))
        if not target:
            logger.info("installation_skipped", reason="no cluster selected")
            return False
        result.target = target
        run_signal.raise_if_cancelled()

        self._transition(result, WorkflowState.CONFIRMING)
        if not await self._confirm(target, result):
            raise InstallationCancelledError(DECLINED)
        run_signal.raise_if_cancelled()

        self._transition(result, WorkflowState.REFRESHING_CERTS)
        await self._refresh_certificates(result)
        run_signal.raise_if_cancelled()

        self._transition(result, WorkflowState.ASSEMBLING)
        try:
            config = await _resolve(
                self._builder.build(request, target, chart_config.temp_values_path)
            )
        except Exception as exc:
            raise ChartError("configuration", "build", exc, cluster=target) from exc
        run_signal.raise_if_cancelled()

        self._transition(result, WorkflowState.INSTALLING)
        await self._install_with_retry(run_signal, config, result)
        return True

    async def _configure(
        self,
        request: InstallationRequest,
        ledger: TempFileLedger,
        result: WorkflowResult,
    ) -> ChartConfiguration:
        if request.dry_run:
            chart_config = self._values_store.dry_run_configuration()
            logger.info("dry_run_configuration", base_values=str(chart_config.base_values_path))
            return chart_config

        try:
            chart_config = await _resolve(self._collector.collect())
        except ChartflowError:
            raise
        except Exception as exc:
            raise ConfigurationError(f"configuration wizard failed: {exc}") from exc

        if chart_config.temp_values_path:
            try:
                ledger.register(chart_config.temp_values_path)
            except LedgerError as exc:
                logger.warning(
                    "temp_file_not_tracked",
                    path=str(chart_config.temp_values_path),
                    error=exc.message,
                )
                result.non_fatal_errors.append(exc)
        return chart_config

    async def _confirm(self, target: str, result: WorkflowResult) -> bool:
        try:
            return bool(await _resolve(self._confirmation.confirm(target)))
        except Exception as exc:
            logger.warning("confirmation_failed", target=target, error=str(exc))
            result.non_fatal_errors.append(exc)
            return False

    async def _refresh_certificates(self, result: WorkflowResult) -> None:
        try:
            await _resolve(self._certificates.regenerate())
        except Exception as exc:
            # Existing certificates may still be valid
            logger.warning("certificate_refresh_failed", error=str(exc))
            result.non_fatal_errors.append(exc)

    async def _install_with_retry(
        self,
        run_signal: CancelSignal,
        config: ChartInstallConfig,
        result: WorkflowResult,
    ) -> None:
        with run_signal.deadline(self._install_timeout) as install_signal:
            executor = RetryExecutor(self._retry_policy, install_signal)
            try:
                await executor.execute(lambda: self._perform_installation(install_signal, config))
            finally:
                result.attempts = executor.stats.attempts

    async def _perform_installation(
        self, install_signal: CancelSignal, config: ChartInstallConfig
    ) -> None:
        try:
            await self._installer.install(install_signal, config)
        except (BranchNotFoundError, InstallationCancelledError):
            raise
        except Exception as exc:
            raise ChartError("installation", "chart", exc, cluster=config.cluster_name) from exc

    def _finish(
        self,
        request: InstallationRequest,
        ledger: TempFileLedger,
        result: WorkflowResult,
        installed: bool,
    ) -> None:
        error = result.error
        if error is None:
            result.outcome = WorkflowOutcome.SUCCESS
            self._resolve_ledger(ledger, result, commit=installed, verbose=request.verbose)
        elif isinstance(error, InstallationCancelledError):
            result.outcome = WorkflowOutcome.CANCELLED
            self._resolve_ledger(ledger, result, commit=False, verbose=False)
        else:
            result.outcome = WorkflowOutcome.FAILED
            logger.error(
                "installation_failed",
                error_type=type(error).__name__,
                error=str(error),
                target=result.target,
            )
            self._resolve_ledger(ledger, result, commit=False, verbose=request.verbose)
        self._transition(result, OUTCOME_STATES[result.outcome])

    @staticmethod
    def _resolve_ledger(
        ledger: TempFileLedger, result: WorkflowResult, *, commit: bool, verbose: bool
    ) -> None:
        try:
            if commit:
                ledger.commit(verbose)
            else:
                ledger.restore(verbose)
        except LedgerError as exc:
            logger.warning("temp_file_cleanup_failed", error=exc.message)
            result.non_fatal_errors.append(exc)
        result.ledger_resolution = ledger.resolution

    @staticmethod
    def _transition(result: WorkflowResult, state: WorkflowState) -> None:
        current = result.final_state
        if current.terminal:
            raise WorkflowStateError(
                f"cannot move from {current.value} to {state.value}",
                details={"from": current.value, "to": state.value},
            )
        result.states.append(state)
        logger.debug("workflow_state", state=state.value)
