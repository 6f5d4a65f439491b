"""
Tests for the installation workflow orchestrator.
"""

import asyncio
import signal
from types import SimpleNamespace

import pytest
from chartflow.core.errors import (
    BranchNotFoundError,
    ChartError,
    ConfigurationError,
    InstallationCancelledError,
    LedgerError,
    WorkflowStateError,
)
from chartflow.install.cancellation import DEADLINE_EXCEEDED, DECLINED, INTERRUPTED, CancelSignal
from chartflow.install.ledger import COMMITTED, RESTORED, TempFileLedger
from chartflow.install.models import (
    ChartConfiguration,
    ChartInstallConfig,
    InstallationRequest,
    WorkflowOutcome,
    WorkflowResult,
    WorkflowState,
)
from chartflow.install.retry import RetryPolicy
from chartflow.install.values import HelmValuesStore
from chartflow.install.workflow import InstallationWorkflow


class RecordingLedger(TempFileLedger):
    def __init__(self):
        super().__init__()
        self.restore_calls = 0
        self.commit_calls = 0

    def restore(self, verbose=False):
        self.restore_calls += 1
        super().restore(verbose)

    def commit(self, verbose=False):
        self.commit_calls += 1
        super().commit(verbose)


class FakeCollector:
    def __init__(self, tmp_path, error=None, temp_path=None):
        self.tmp_path = tmp_path
        self.error = error
        self.temp_path = temp_path or tmp_path / "helm-values-tmp.yaml"
        self.calls = 0

    def collect(self):
        self.calls += 1
        if self.error:
            raise self.error
        if self.temp_path.parent.exists():
            self.temp_path.write_text("global:\n  repoBranch: main\n")
        return ChartConfiguration(
            base_values_path=self.tmp_path / "helm-values.yaml",
            temp_values_path=self.temp_path,
        )


class FakeSelector:
    def __init__(self, target="dev"):
        self.target = target
        self.calls = []

    def select(self, args, verbose):
        self.calls.append((tuple(args), verbose))
        return self.target


class FakeConfirmation:
    def __init__(self, answer=True, error=None):
        self.answer = answer
        self.error = error
        self.calls = []

    async def confirm(self, target):
        self.calls.append(target)
        if self.error:
            raise self.error
        return self.answer


class FakeCertificates:
    def __init__(self, error=None):
        self.error = error
        self.calls = 0

    def regenerate(self):
        self.calls += 1
        if self.error:
            raise self.error


class FakeBuilder:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def build(self, request, target, temp_values_path):
        self.calls.append((target, temp_values_path))
        if self.error:
            raise self.error
        return ChartInstallConfig(cluster_name=target, dry_run=request.dry_run)


class FakeInstaller:
    """Each call pops the next behaviour: an exception, a coroutine function, or None."""

    def __init__(self, behaviours=None):
        self.behaviours = list(behaviours or [])
        self.calls = 0
        self.signals = []

    async def install(self, cancel_signal, config):
        self.calls += 1
        self.signals.append(cancel_signal)
        behaviour = self.behaviours.pop(0) if self.behaviours else None
        if isinstance(behaviour, BaseException):
            raise behaviour
        if callable(behaviour):
            await behaviour(cancel_signal)


def make_workflow(tmp_path, **overrides):
    ledgers = []

    def ledger_factory():
        ledger = RecordingLedger()
        ledgers.append(ledger)
        return ledger

    parts = SimpleNamespace(
        collector=overrides.pop("collector", FakeCollector(tmp_path)),
        selector=overrides.pop("selector", FakeSelector()),
        confirmation=overrides.pop("confirmation", FakeConfirmation()),
        certificates=overrides.pop("certificates", FakeCertificates()),
        builder=overrides.pop("builder", FakeBuilder()),
        installer=overrides.pop("installer", FakeInstaller()),
        ledgers=ledgers,
    )
    options = dict(
        values_store=HelmValuesStore(tmp_path / "helm-values.yaml", tmp_path / "helm-values-tmp.yaml"),
        retry_policy=RetryPolicy(name="installation", max_attempts=3, initial_delay=0.0),
        signals=(),
    )
    options.update(overrides)
    parts.workflow = InstallationWorkflow(
        collector=parts.collector,
        selector=parts.selector,
        confirmation=parts.confirmation,
        certificates=parts.certificates,
        builder=parts.builder,
        installer=parts.installer,
        ledger_factory=ledger_factory,
        **options,
    )
    return parts


class TestSuccessfulRun:
    @pytest.mark.asyncio
    async def test_success_commits_ledger(self, tmp_path):
        parts = make_workflow(tmp_path)

        result = await parts.workflow.execute(InstallationRequest(args=("dev",)))

        assert result.success
        assert result.error is None
        assert result.target == "dev"
        assert result.attempts == 1
        ledger = parts.ledgers[0]
        assert ledger.commit_calls == 1
        assert ledger.restore_calls == 0
        assert result.ledger_resolution == COMMITTED
        assert (tmp_path / "helm-values-tmp.yaml").exists()

    @pytest.mark.asyncio
    async def test_states_follow_step_order(self, tmp_path):
        parts = make_workflow(tmp_path)

        result = await parts.workflow.execute(InstallationRequest())

        assert result.states == [
            WorkflowState.PENDING,
            WorkflowState.CONFIGURING,
            WorkflowState.SELECTING_TARGET,
            WorkflowState.CONFIRMING,
            WorkflowState.REFRESHING_CERTS,
            WorkflowState.ASSEMBLING,
            WorkflowState.INSTALLING,
            WorkflowState.SUCCEEDED,
        ]

    @pytest.mark.asyncio
    async def test_collaborators_receive_run_inputs(self, tmp_path):
        parts = make_workflow(tmp_path)

        await parts.workflow.execute(InstallationRequest(args=("dev",), verbose=True))

        assert parts.selector.calls == [(("dev",), True)]
        assert parts.confirmation.calls == ["dev"]
        assert parts.builder.calls == [("dev", tmp_path / "helm-values-tmp.yaml")]

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, tmp_path):
        installer = FakeInstaller([RuntimeError("helm timeout"), RuntimeError("helm timeout")])
        parts = make_workflow(tmp_path, installer=installer)

        result = await parts.workflow.execute(InstallationRequest())

        assert result.success
        assert installer.calls == 3
        assert result.attempts == 3
        assert parts.ledgers[0].commit_calls == 1

    @pytest.mark.asyncio
    async def test_certificate_failure_is_not_fatal(self, tmp_path):
        certificates = FakeCertificates(error=RuntimeError("mkcert missing"))
        parts = make_workflow(tmp_path, certificates=certificates)

        result = await parts.workflow.execute(InstallationRequest())

        assert result.success
        assert parts.installer.calls == 1
        assert [str(e) for e in result.non_fatal_errors] == ["mkcert missing"]

    @pytest.mark.asyncio
    async def test_dry_run_skips_collector_and_ledger(self, tmp_path):
        parts = make_workflow(tmp_path)

        result = await parts.workflow.execute(InstallationRequest(dry_run=True))

        assert result.success
        assert parts.collector.calls == 0
        assert (tmp_path / "helm-values.yaml").exists()
        assert parts.ledgers[0].commit_calls == 1
        assert parts.builder.calls == [("dev", tmp_path / "helm-values-tmp.yaml")]


class TestEmptySelection:
    @pytest.mark.asyncio
    async def test_no_target_ends_without_error(self, tmp_path):
        parts = make_workflow(tmp_path, selector=FakeSelector(target=""))

        result = await parts.workflow.execute(InstallationRequest())

        assert result.success
        assert result.error is None
        assert result.target is None
        assert parts.confirmation.calls == []
        assert parts.installer.calls == 0

    @pytest.mark.asyncio
    async def test_no_target_rolls_back_temp_values(self, tmp_path):
        parts = make_workflow(tmp_path, selector=FakeSelector(target=""))

        await parts.workflow.execute(InstallationRequest())

        assert parts.ledgers[0].restore_calls == 1
        assert parts.ledgers[0].commit_calls == 0
        assert not (tmp_path / "helm-values-tmp.yaml").exists()


class TestFailures:
    @pytest.mark.asyncio
    async def test_installation_failure_restores_once(self, tmp_path):
        installer = FakeInstaller([RuntimeError("boom")] * 3)
        parts = make_workflow(tmp_path, installer=installer)

        result = await parts.workflow.execute(InstallationRequest())

        assert result.outcome == WorkflowOutcome.FAILED
        assert isinstance(result.error, ChartError)
        assert result.error.operation == "installation"
        assert result.error.cluster == "dev"
        assert isinstance(result.error.__cause__, RuntimeError)
        assert installer.calls == 3
        ledger = parts.ledgers[0]
        assert ledger.restore_calls == 1
        assert ledger.commit_calls == 0
        assert result.ledger_resolution == RESTORED
        assert not (tmp_path / "helm-values-tmp.yaml").exists()
        assert result.final_state == WorkflowState.FAILED

    @pytest.mark.asyncio
    async def test_branch_not_found_is_not_wrapped_or_retried(self, tmp_path):
        error = BranchNotFoundError("https://github.com/org/repo", "feature-x")
        installer = FakeInstaller([error])
        parts = make_workflow(tmp_path, installer=installer)

        result = await parts.workflow.execute(InstallationRequest())

        assert result.error is error
        assert installer.calls == 1
        assert parts.ledgers[0].restore_calls == 1

    @pytest.mark.asyncio
    async def test_build_failure_is_tagged_with_target(self, tmp_path):
        builder = FakeBuilder(error=ValueError("bad repo"))
        parts = make_workflow(tmp_path, builder=builder)

        result = await parts.workflow.execute(InstallationRequest())

        assert isinstance(result.error, ChartError)
        assert result.error.operation == "configuration"
        assert result.error.component == "build"
        assert result.error.cluster == "dev"
        assert parts.installer.calls == 0
        assert parts.ledgers[0].restore_calls == 1

    @pytest.mark.asyncio
    async def test_collector_failure_stops_run(self, tmp_path):
        collector = FakeCollector(tmp_path, error=OSError("disk full"))
        parts = make_workflow(tmp_path, collector=collector)

        result = await parts.workflow.execute(InstallationRequest())

        assert isinstance(result.error, ConfigurationError)
        assert "disk full" in result.error.message
        assert parts.selector.calls == []
        assert parts.ledgers[0].restore_calls == 1

    @pytest.mark.asyncio
    async def test_untrackable_temp_file_is_not_fatal(self, tmp_path):
        collector = FakeCollector(tmp_path, temp_path=tmp_path / "missing" / "tmp.yaml")
        parts = make_workflow(tmp_path, collector=collector)

        result = await parts.workflow.execute(InstallationRequest())

        assert result.success
        assert len(result.non_fatal_errors) == 1
        assert isinstance(result.non_fatal_errors[0], LedgerError)

    @pytest.mark.asyncio
    async def test_raise_for_outcome(self, tmp_path):
        parts = make_workflow(tmp_path, installer=FakeInstaller([RuntimeError("x")] * 3))

        result = await parts.workflow.execute(InstallationRequest())

        with pytest.raises(ChartError):
            result.raise_for_outcome()


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_before_start_calls_nothing(self, tmp_path):
        parent = CancelSignal()
        parent.cancel(INTERRUPTED)
        parts = make_workflow(tmp_path)

        result = await parts.workflow.execute(InstallationRequest(), parent=parent)

        assert result.outcome == WorkflowOutcome.CANCELLED
        assert isinstance(result.error, InstallationCancelledError)
        assert parts.collector.calls == 0
        assert parts.selector.calls == []
        assert parts.installer.calls == 0

    @pytest.mark.asyncio
    async def test_declined_confirmation_rolls_back(self, tmp_path):
        parts = make_workflow(tmp_path, confirmation=FakeConfirmation(answer=False))

        result = await parts.workflow.execute(InstallationRequest())

        assert result.outcome == WorkflowOutcome.CANCELLED
        assert isinstance(result.error, InstallationCancelledError)
        assert result.error.reason == DECLINED
        assert parts.installer.calls == 0
        assert parts.certificates.calls == 0
        assert parts.ledgers[0].restore_calls == 1
        assert not (tmp_path / "helm-values-tmp.yaml").exists()

    @pytest.mark.asyncio
    async def test_confirmation_error_counts_as_decline(self, tmp_path):
        confirmation = FakeConfirmation(error=EOFError("stdin closed"))
        parts = make_workflow(tmp_path, confirmation=confirmation)

        result = await parts.workflow.execute(InstallationRequest())

        assert result.outcome == WorkflowOutcome.CANCELLED
        assert parts.installer.calls == 0
        assert len(result.non_fatal_errors) == 1

    @pytest.mark.asyncio
    async def test_interrupt_during_successful_install_is_cancellation(self, tmp_path):
        parent = CancelSignal()

        async def interrupted(cancel_signal):
            parent.cancel(INTERRUPTED)

        installer = FakeInstaller([interrupted])
        parts = make_workflow(tmp_path, installer=installer)

        result = await parts.workflow.execute(InstallationRequest(), parent=parent)

        assert result.outcome == WorkflowOutcome.CANCELLED
        assert isinstance(result.error, InstallationCancelledError)
        assert parts.ledgers[0].restore_calls == 1
        assert parts.ledgers[0].commit_calls == 0
        assert not (tmp_path / "helm-values-tmp.yaml").exists()

    @pytest.mark.asyncio
    async def test_installer_sees_cancellation_through_its_signal(self, tmp_path):
        parent = CancelSignal()
        seen = []

        async def observe(cancel_signal):
            parent.cancel(INTERRUPTED)
            seen.append(cancel_signal.cancelled)

        parts = make_workflow(tmp_path, installer=FakeInstaller([observe]))

        await parts.workflow.execute(InstallationRequest(), parent=parent)

        assert seen == [True]

    @pytest.mark.asyncio
    async def test_deadline_aborts_retry_wait(self, tmp_path):
        installer = FakeInstaller([RuntimeError("slow")] * 5)
        parts = make_workflow(
            tmp_path,
            installer=installer,
            install_timeout=0.05,
            retry_policy=RetryPolicy(name="installation", max_attempts=5, initial_delay=30.0),
        )

        result = await asyncio.wait_for(
            parts.workflow.execute(InstallationRequest()), timeout=5
        )

        assert result.outcome == WorkflowOutcome.CANCELLED
        assert result.error.reason == DEADLINE_EXCEEDED
        assert installer.calls == 1
        assert parts.ledgers[0].restore_calls == 1

    @pytest.mark.asyncio
    async def test_two_interrupts_cancel_once_and_clean_up_once(self, tmp_path):
        async def double_interrupt(cancel_signal):
            signal.raise_signal(signal.SIGUSR1)
            signal.raise_signal(signal.SIGUSR1)
            await asyncio.sleep(0.1)

        installer = FakeInstaller([double_interrupt])
        parts = make_workflow(tmp_path, installer=installer, signals=(signal.SIGUSR1,))

        result = await parts.workflow.execute(InstallationRequest())

        assert result.outcome == WorkflowOutcome.CANCELLED
        assert result.error.reason == INTERRUPTED
        assert installer.signals[0].reason == INTERRUPTED
        ledger = parts.ledgers[0]
        assert ledger.restore_calls == 1
        assert ledger.commit_calls == 0

    @pytest.mark.asyncio
    async def test_task_cancellation_restores_and_propagates(self, tmp_path):
        started = asyncio.Event()

        async def hang(cancel_signal):
            started.set()
            await asyncio.sleep(3600)

        parts = make_workflow(tmp_path, installer=FakeInstaller([hang]))
        task = asyncio.ensure_future(parts.workflow.execute(InstallationRequest()))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert parts.ledgers[0].restore_calls == 1
        assert not (tmp_path / "helm-values-tmp.yaml").exists()


def test_terminal_state_cannot_transition():
    result = WorkflowResult(
        outcome=WorkflowOutcome.SUCCESS,
        states=[WorkflowState.PENDING, WorkflowState.SUCCEEDED],
    )

    with pytest.raises(WorkflowStateError):
        InstallationWorkflow._transition(result, WorkflowState.INSTALLING)
