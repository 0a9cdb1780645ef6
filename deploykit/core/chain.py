"""Dependency chain: ordered prerequisite resolution with per-item fatality."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from deploykit.core.collaborators import InstallerInvoker
from deploykit.core.errors import DependencyInstallFailed, DuplicateDependency
from deploykit.core.models import (
    ChainItemResult,
    ChainResult,
    ChainVerificationReport,
    DependencyItem,
    DetectionResult,
    InstallOutcome,
    ItemStatus,
    ItemVerification,
    NonFatalDependencyFailure,
    OperationKind,
)
from deploykit.core.probes import DetectionProbes

logger = logging.getLogger(__name__)


class DependencyChain:
    """Resolves prerequisites in list order before the main action runs.

    Fatal items abort the whole chain on failure. Non-fatal items are
    best-effort: the failure is recorded and the next item is attempted.
    """

    def __init__(
        self,
        items: Iterable[DependencyItem],
        probes: DetectionProbes,
        installer: InstallerInvoker,
        timeout: Optional[float] = None,
    ):
        self.items = list(items)
        self.probes = probes
        self.installer = installer
        self.timeout = timeout
        self.last_result: Optional[ChainResult] = None

        seen: set = set()
        for item in self.items:
            if item.identity in seen:
                raise DuplicateDependency(
                    f"Duplicate dependency {item.name!r} ({item.match_mode.value})"
                )
            seen.add(item.identity)

    def resolve(self, action: OperationKind = OperationKind.INSTALL) -> ChainResult:
        """Install missing items (and, for Repair, update outdated ones)."""
        if action not in (OperationKind.INSTALL, OperationKind.REPAIR):
            raise ValueError(f"Chain resolution does not support {action.value}")

        result = ChainResult(action=action)
        self.last_result = result

        for item in self.items:
            detection = self._detect(item)
            if detection.found and not (action == OperationKind.REPAIR and detection.needs_update):
                logger.info("Dependency %s already present (%s)", item.name, detection.current_version)
                result.items.append(self._item_result(item, detection, "none"))
                continue

            if detection.found:
                installer_action = (
                    OperationKind.REPAIR if OperationKind.REPAIR.value in item.commands
                    else OperationKind.INSTALL
                )
                done_label = "updated"
            else:
                installer_action = OperationKind.INSTALL
                done_label = "installed"

            outcome = self._invoke(item, installer_action)
            if outcome.success:
                logger.info("Dependency %s %s", item.name, done_label)
                result.items.append(self._item_result(item, detection, done_label, outcome))
                continue

            if item.fatal:
                logger.error("Fatal dependency %s failed: %s", item.name, outcome.reason)
                result.items.append(self._item_result(item, detection, "failed", outcome))
                raise DependencyInstallFailed(
                    item.name, outcome.reason, outcome.exit_code, partial_result=result
                )

            logger.warning("Optional dependency %s failed: %s", item.name, outcome.reason)
            failure = NonFatalDependencyFailure(item.name, outcome.reason, outcome.exit_code)
            result.items.append(self._item_result(item, detection, "failed", outcome, failure))

        return result

    def remove(self) -> ChainResult:
        """Uninstall present items in reverse order. Failures never abort."""
        result = ChainResult(action=OperationKind.UNINSTALL)
        for item in reversed(self.items):
            detection = self._detect(item)
            if not detection.found:
                result.items.append(self._item_result(item, detection, "none"))
                continue
            outcome = self._invoke(item, OperationKind.UNINSTALL)
            if outcome.success:
                result.items.append(self._item_result(item, detection, "removed", outcome))
            else:
                logger.warning("Could not remove dependency %s: %s", item.name, outcome.reason)
                failure = NonFatalDependencyFailure(item.name, outcome.reason, outcome.exit_code)
                result.items.append(self._item_result(item, detection, "failed", outcome, failure))
        return result

    def verify(self) -> ChainVerificationReport:
        """Re-probe every item and report presence."""
        report = ChainVerificationReport()
        for item in self.items:
            detection = self._detect(item)
            status = ItemStatus.INSTALLED if detection.found else ItemStatus.MISSING
            report.items.append(
                ItemVerification(
                    name=item.name,
                    match_mode=item.match_mode,
                    status=status,
                    detection=detection,
                )
            )
        return report

    def _detect(self, item: DependencyItem) -> DetectionResult:
        return self.probes.probe_application_version(
            item.name, item.match_mode, item.required_version
        )

    def _invoke(self, item: DependencyItem, action: OperationKind) -> InstallOutcome:
        try:
            return self.installer.run_installer(item, action, timeout=self.timeout)
        except Exception as e:
            logger.debug("Installer for %s raised", item.name, exc_info=True)
            return InstallOutcome(success=False, reason=str(e) or type(e).__name__, exit_code=-1)

    @staticmethod
    def _item_result(
        item: DependencyItem,
        detection: DetectionResult,
        action_taken: str,
        outcome: Optional[InstallOutcome] = None,
        failure: Optional[NonFatalDependencyFailure] = None,
    ) -> ChainItemResult:
        return ChainItemResult(
            name=item.name,
            match_mode=item.match_mode,
            fatal=item.fatal,
            detection=detection,
            action_taken=action_taken,
            outcome=outcome,
            failure=failure,
        )
