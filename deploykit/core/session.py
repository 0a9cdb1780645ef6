"""Deployment session: one instance per run, owning phase transitions."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Callable, Optional

from deploykit.core.errors import SessionStateError
from deploykit.core.models import (
    AppMetadata,
    DeployMode,
    EnvironmentSnapshot,
    OperationKind,
    SessionPhase,
    SessionState,
)
from deploykit.core.report import ReportBuilder

logger = logging.getLogger(__name__)

PhaseListener = Callable[["DeploymentSession", str], None]

_PHASE_FOR_STATE = {
    SessionState.PRE_OPERATION: SessionPhase.PRE_OPERATION,
    SessionState.OPERATION: SessionPhase.OPERATION,
    SessionState.POST_OPERATION: SessionPhase.POST_OPERATION,
}


def phase_label(operation: OperationKind, phase: SessionPhase) -> str:
    """Human label such as 'Pre-Installation' or 'Post-Repair'."""
    if phase == SessionPhase.PRE_OPERATION:
        return f"Pre-{operation.label}"
    if phase == SessionPhase.POST_OPERATION:
        return f"Post-{operation.label}"
    return operation.label


def _log_phase(session: "DeploymentSession", label: str) -> None:
    logger.info("[%s] %s: entering phase %s", session.session_id[:8], session.app.name, label)


class DeploymentSession:
    """State machine: CREATED -> PRE -> OPERATION -> POST -> CLOSED.

    ``close()`` is reachable from any state and only the first call counts.
    """

    def __init__(
        self,
        app: AppMetadata,
        operation: OperationKind,
        deploy_mode: DeployMode = DeployMode.INTERACTIVE,
        report: Optional[ReportBuilder] = None,
        session_id: Optional[str] = None,
    ):
        self.session_id = session_id or str(uuid.uuid4())
        self.app = app
        self.operation = operation
        self.deploy_mode = deploy_mode
        self.report = report or ReportBuilder()
        self.environment: Optional[EnvironmentSnapshot] = None
        self.reboot_required = False
        self._state = SessionState.CREATED
        self._exit_code: Optional[int] = None
        self._listeners: list[PhaseListener] = [_log_phase]
        self._started = time.time()
        self.duration_seconds: float = 0.0

    # ── Observers ────────────────────────────────────────────────────

    def add_phase_listener(self, listener: PhaseListener) -> None:
        self._listeners.append(listener)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state == SessionState.CLOSED

    @property
    def phase(self) -> SessionPhase:
        if self._state not in _PHASE_FOR_STATE:
            raise SessionStateError(
                f"Session phase is not readable in state {self._state.value}"
            )
        return _PHASE_FOR_STATE[self._state]

    @property
    def install_phase(self) -> str:
        """Label consumed by logging and UI collaborators."""
        return phase_label(self.operation, self.phase)

    @property
    def exit_code(self) -> Optional[int]:
        return self._exit_code

    # ── Transitions ──────────────────────────────────────────────────

    def open(self) -> None:
        self._transition(SessionState.CREATED, SessionState.PRE_OPERATION)

    def enter_operation(self) -> None:
        self._transition(SessionState.PRE_OPERATION, SessionState.OPERATION)

    def enter_post(self) -> None:
        self._transition(SessionState.OPERATION, SessionState.POST_OPERATION)

    def close(self, exit_code: int) -> int:
        """Close the session; returns the exit code that was recorded first."""
        if self._state == SessionState.CLOSED:
            logger.debug(
                "Session already closed with %s; ignoring close(%s)",
                self._exit_code, exit_code,
            )
            return self._exit_code  # type: ignore[return-value]
        self._state = SessionState.CLOSED
        self._exit_code = int(exit_code)
        self.duration_seconds = time.time() - self._started
        logger.info(
            "Session %s closed with exit code %s after %.1fs",
            self.session_id[:8], self._exit_code, self.duration_seconds,
        )
        return self._exit_code

    def _transition(self, expected: SessionState, target: SessionState) -> None:
        if self._state != expected:
            raise SessionStateError(
                f"Cannot move to {target.value} from {self._state.value}"
            )
        self._state = target
        label = phase_label(self.operation, _PHASE_FOR_STATE[target])
        for listener in self._listeners:
            try:
                listener(self, label)
            except Exception:
                logger.warning("Phase listener failed for %s", label, exc_info=True)
