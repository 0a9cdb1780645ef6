"""Drives a deployment session through Pre, Main and Post and maps the exit code."""

from __future__ import annotations

import dataclasses
import logging
import threading
import traceback
from datetime import datetime
from typing import Callable, Optional, Union

from deploykit.core import version as versions
from deploykit.core.chain import DependencyChain
from deploykit.core.collaborators import (
    CommandFileVersionReader,
    CommandInstaller,
    InstallerInvoker,
    Notifier,
    NullRegistryReader,
)
from deploykit.core.environment import detect_running_processes
from deploykit.core.errors import (
    DependencyInstallFailed,
    DeploymentCancelled,
    InstallerFailed,
    NotEligible,
    UnhandledOperationError,
)
from deploykit.core.models import (
    DeploymentPlan,
    DeployMode,
    DetectionResult,
    EnvironmentSnapshot,
    ExitCode,
    MessageKind,
    OperationKind,
    SessionState,
)
from deploykit.core.probes import DetectionProbes
from deploykit.core.report import Report, ReportBuilder
from deploykit.core.session import DeploymentSession
from deploykit.data.store import DataStore, ReceiptInventory, RecordingInstaller

logger = logging.getLogger(__name__)

ReportSink = Callable[[Report], None]


class CancellationToken:
    """Cooperative cancellation; observed only at phase boundaries."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


class _NullNotifier:
    def show_message(self, text: str, kind: MessageKind = MessageKind.INFO) -> None:
        return None


class Orchestrator:
    """Runs one deployment operation end to end."""

    def __init__(
        self,
        plan: DeploymentPlan,
        probes: DetectionProbes,
        installer: InstallerInvoker,
        notifier: Optional[Notifier] = None,
        deploy_mode: DeployMode = DeployMode.INTERACTIVE,
        store: Optional[DataStore] = None,
        cancel_token: Optional[CancellationToken] = None,
        debug: bool = False,
        on_report: Optional[ReportSink] = None,
        detect_environment: Optional[Callable[[], EnvironmentSnapshot]] = None,
        list_processes: Optional[Callable[[tuple[str, ...]], list[str]]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.plan = plan
        self.probes = probes
        self.installer = installer
        self.notifier = notifier or _NullNotifier()
        self.deploy_mode = deploy_mode
        self.store = store
        self.cancel_token = cancel_token or CancellationToken()
        self.debug = debug
        self.on_report = on_report
        self.detect_environment = detect_environment or probes.probe_environment
        self.list_processes = list_processes or detect_running_processes
        self.clock = clock

        self.chain = DependencyChain(plan.dependencies, probes, installer, timeout=plan.timeout)
        self.required_version = versions.try_parse(plan.app.version)
        self.session: Optional[DeploymentSession] = None
        self.last_report: Optional[Report] = None
        self._pre_detection: Optional[DetectionResult] = None

        self._handlers: dict[OperationKind, Callable[[DeploymentSession], None]] = {
            OperationKind.INSTALL: self._install,
            OperationKind.UNINSTALL: self._uninstall,
            OperationKind.REPAIR: self._repair,
        }

    def run(self, operation: Union[OperationKind, str]) -> int:
        """Execute the full session and return the process exit code."""
        operation = OperationKind(operation)
        builder = ReportBuilder(self.clock) if self.clock else ReportBuilder()
        session = DeploymentSession(
            self.plan.app, operation, deploy_mode=self.deploy_mode, report=builder
        )
        self.session = session
        self._pre_detection = None

        exit_code: int = ExitCode.FATAL_ERROR
        status = "Failed"
        try:
            session.open()
            self._record_session_start(session)
            self._check_cancelled()
            if not self._pre_operation(session):
                exit_code, status = ExitCode.SUCCESS, "NoActionRequired"
            else:
                self._check_cancelled()
                session.enter_operation()
                self._handlers[operation](session)

                self._check_cancelled()
                session.enter_post()
                status = self._post_operation(session)
                exit_code = ExitCode.REBOOT_REQUIRED if session.reboot_required else ExitCode.SUCCESS
        except DeploymentCancelled:
            logger.warning("Deployment cancelled before %s", self._safe_phase(session))
            self._notify("The deployment was cancelled.", MessageKind.WARNING)
            exit_code, status = ExitCode.USER_CANCELLED, "Cancelled"
        except NotEligible as e:
            logger.error("Host not eligible: %s", e)
            self._notify(str(e), MessageKind.ERROR)
            exit_code, status = ExitCode.NOT_ELIGIBLE, "NotEligible"
        except DependencyInstallFailed as e:
            logger.error("%s", e)
            if e.partial_result is not None:
                session.report.add_dependency_status(e.partial_result)
            self._notify(
                f"A required component ({e.item_name}) could not be installed: {e.reason}",
                MessageKind.ERROR,
            )
            exit_code, status = ExitCode.DEPENDENCY_FAILED, "DependencyFailed"
        except InstallerFailed as e:
            logger.error("%s", e)
            self._notify(f"{self.plan.app.display_name}: {e.reason}", MessageKind.ERROR)
            exit_code, status = ExitCode.INSTALLER_FAILED, "InstallerFailed"
        except Exception as e:
            wrapped = UnhandledOperationError(operation.value, e)
            logger.error(
                "%s (session %s, phase %s)",
                wrapped, session.session_id, self._safe_phase(session),
                exc_info=True,
            )
            self._notify(
                f"{operation.label} of {self.plan.app.display_name} failed unexpectedly.",
                MessageKind.ERROR,
            )
            if self.debug:
                self._notify(traceback.format_exc(), MessageKind.ERROR)
            exit_code, status = ExitCode.FATAL_ERROR, "Failed"
        finally:
            final_code = session.close(exit_code)
            self._finish(session, final_code, status)

        return final_code

    # ── Phases ───────────────────────────────────────────────────────

    def _pre_operation(self, session: DeploymentSession) -> bool:
        """Eligibility and welcome checks. False means there is nothing to do."""
        app = self.plan.app
        snapshot = self.detect_environment()
        session.environment = snapshot
        session.report.add_environment_snapshot(snapshot)

        if self.plan.require_admin and not snapshot.is_admin:
            raise NotEligible(f"{session.operation.label} of {app.name} requires administrator rights")

        self._notify(f"{session.install_phase}: {app.display_name}")

        running = self.list_processes(app.processes_to_close)
        if running:
            logger.warning("Applications still running: %s", ", ".join(running))
            self._notify(
                "Please save your work and close: " + ", ".join(running),
                MessageKind.WARNING,
            )

        detection = self._detect_app()
        self._pre_detection = detection
        session.report.add_application_check(self.plan.detection_name, detection, stage="pre")

        if session.operation == OperationKind.INSTALL and detection.found and not detection.needs_update:
            logger.info("%s already at %s; nothing to install", app.name, detection.current_version)
            self._notify(f"{app.name} {detection.current_version} is already installed.")
            return False
        if session.operation == OperationKind.UNINSTALL and not detection.found:
            logger.info("%s is not installed; nothing to remove", app.name)
            self._notify(f"{app.name} is not installed.")
            return False
        return True

    def _install(self, session: DeploymentSession) -> None:
        chain_result = self.chain.resolve(OperationKind.INSTALL)
        session.report.add_dependency_status(chain_result)
        session.reboot_required |= chain_result.reboot_required
        self._run_main(session, OperationKind.INSTALL)

    def _uninstall(self, session: DeploymentSession) -> None:
        self._run_main(session, OperationKind.UNINSTALL)
        if self.plan.keep_shared_dependencies:
            logger.info("Keeping shared dependencies in place")
            return
        removal = self.chain.remove()
        session.report.add_dependency_status(removal)
        session.reboot_required |= removal.reboot_required

    def _repair(self, session: DeploymentSession) -> None:
        detection = self._pre_detection or self._detect_app()
        if not detection.found:
            branch, action = "reinstall", OperationKind.INSTALL
        elif detection.needs_update:
            branch, action = "update", OperationKind.INSTALL
        else:
            branch, action = "repair-in-place", OperationKind.REPAIR
        logger.info("Repair branch for %s: %s", self.plan.app.name, branch)
        session.report.set_session(repairBranch=branch)

        chain_result = self.chain.resolve(OperationKind.REPAIR)
        session.report.add_dependency_status(chain_result)
        session.reboot_required |= chain_result.reboot_required
        self._run_main(session, action)

    def _post_operation(self, session: DeploymentSession) -> str:
        """Re-probe the end state and return the outcome status label."""
        detection = self._detect_app()
        session.report.add_application_check(self.plan.detection_name, detection, stage="post")

        if self.plan.dependencies:
            session.report.add_dependency_status(self.chain.verify())

        for check in self.plan.file_checks:
            result = self.probes.probe_file_version(check.path, check.required_version)
            session.report.add_application_check(f"file:{check.path}", result, stage="post")
        for check in self.plan.registry_checks:
            result = self.probes.probe_registry_version(
                check.key, check.value_name, check.required_version
            )
            session.report.add_application_check(
                f"registry:{check.key}\\{check.value_name}", result, stage="post"
            )

        if session.operation == OperationKind.UNINSTALL:
            verified = not detection.found
        else:
            verified = detection.found and not detection.needs_update
        if not verified:
            logger.warning(
                "Post-%s check did not confirm the expected state of %s",
                session.operation.value, self.plan.app.name,
            )
            self._notify(
                f"{session.operation.label} finished but could not be verified.",
                MessageKind.WARNING,
            )
            return "CompletedWithWarnings"

        self._notify(
            f"{session.operation.label} of {self.plan.app.display_name} completed.",
            MessageKind.SUCCESS,
        )
        return "Success"

    # ── Helpers ──────────────────────────────────────────────────────

    def _detect_app(self) -> DetectionResult:
        return self.probes.probe_application_version(
            self.plan.detection_name, self.plan.detection_match, self.required_version
        )

    def _run_main(self, session: DeploymentSession, action: OperationKind) -> None:
        item = self.plan.app_item(self.required_version)
        outcome = self.installer.run_installer(item, action, timeout=self.plan.timeout)
        if not outcome.success:
            raise InstallerFailed(self.plan.app.name, action.value, outcome.reason, outcome.exit_code)
        if outcome.reboot_required:
            logger.info("%s requested a reboot (exit code %s)", self.plan.app.name, outcome.exit_code)
            session.reboot_required = True

    def _check_cancelled(self) -> None:
        if self.cancel_token.is_cancelled:
            raise DeploymentCancelled("Cancellation requested")

    def _notify(self, text: str, kind: MessageKind = MessageKind.INFO) -> None:
        try:
            self.notifier.show_message(text, kind)
        except Exception:
            logger.debug("Notifier failed", exc_info=True)

    @staticmethod
    def _safe_phase(session: DeploymentSession) -> str:
        if session.state in (SessionState.CREATED, SessionState.CLOSED):
            return session.state.value
        return session.install_phase

    def _record_session_start(self, session: DeploymentSession) -> None:
        if self.store is None:
            return
        try:
            self.store.create_session(
                session_id=session.session_id,
                operation=session.operation.value,
                app_vendor=self.plan.app.vendor,
                app_name=self.plan.app.name,
                app_version=self.plan.app.version,
                deploy_mode=self.deploy_mode.value,
            )
        except Exception:
            logger.warning("Could not record session start", exc_info=True)

    def _finish(self, session: DeploymentSession, exit_code: int, status: str) -> None:
        session.report.set_session(
            id=session.session_id,
            operation=session.operation.value,
            deployMode=self.deploy_mode.value,
            app=self.plan.app.to_dict(),
            durationSeconds=round(session.duration_seconds, 3),
        )
        session.report.set_outcome(exit_code, status, reboot_required=session.reboot_required)
        report = session.report.build()
        self.last_report = report

        if self.store is not None:
            try:
                self.store.save_report(session.session_id, report)
                self.store.complete_session(
                    session.session_id, status, exit_code, session.duration_seconds
                )
            except Exception:
                logger.warning("Could not persist session report", exc_info=True)

        if self.on_report is not None:
            try:
                self.on_report(report)
            except Exception:
                logger.warning("Report sink failed", exc_info=True)


def run_deployment(
    operation_kind: Union[OperationKind, str],
    plan: DeploymentPlan,
    *,
    store: Optional[DataStore] = None,
    notifier: Optional[Notifier] = None,
    deploy_mode: DeployMode = DeployMode.INTERACTIVE,
    cancel_token: Optional[CancellationToken] = None,
    debug: bool = False,
    on_report: Optional[ReportSink] = None,
    timeout: Optional[float] = None,
) -> int:
    """Wire the default collaborators and run one deployment."""
    store = store or DataStore()
    if timeout is not None and plan.timeout is None:
        plan = dataclasses.replace(plan, timeout=timeout)
    installer = RecordingInstaller(CommandInstaller(plan.app, plan.timeout), store)
    probes = DetectionProbes(
        ReceiptInventory(store),
        file_reader=CommandFileVersionReader(),
        registry=NullRegistryReader(),
    )
    orchestrator = Orchestrator(
        plan,
        probes,
        installer,
        notifier=notifier,
        deploy_mode=deploy_mode,
        store=store,
        cancel_token=cancel_token,
        debug=debug,
        on_report=on_report,
    )
    return orchestrator.run(operation_kind)
