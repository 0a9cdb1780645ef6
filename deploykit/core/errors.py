"""Exception hierarchy for deployment sessions."""

from __future__ import annotations

from typing import Any, Optional


class DeploymentError(Exception):
    """Base class for all deploykit errors."""


class MalformedVersion(DeploymentError, ValueError):
    """A version string could not be parsed into numeric components."""

    def __init__(self, text: object):
        self.text = text
        super().__init__(f"Malformed version string: {text!r}")


class ProbeFailure(DeploymentError):
    """A detection probe hit an internal error (I/O, permissions, bad data)."""

    def __init__(self, probe: str, reason: str):
        self.probe = probe
        self.reason = reason
        super().__init__(f"{probe}: {reason}")


class DuplicateDependency(DeploymentError, ValueError):
    """Two chain items share the same (name, match mode) identity."""


class DependencyInstallFailed(DeploymentError):
    """A fatal dependency could not be installed; the chain was aborted."""

    def __init__(
        self,
        item_name: str,
        reason: str,
        exit_code: Optional[int] = None,
        partial_result: Any = None,
    ):
        self.item_name = item_name
        self.reason = reason
        self.exit_code = exit_code
        # ChainResult covering the items processed before the abort
        self.partial_result = partial_result
        super().__init__(f"Dependency {item_name!r} failed: {reason}")


class InstallerFailed(DeploymentError):
    """The main application installer reported failure."""

    def __init__(self, app_name: str, action: str, reason: str, exit_code: Optional[int] = None):
        self.app_name = app_name
        self.action = action
        self.reason = reason
        self.exit_code = exit_code
        super().__init__(f"{action} of {app_name!r} failed: {reason}")


class NotEligible(DeploymentError):
    """A pre-operation eligibility check rejected this host."""


class DeploymentCancelled(DeploymentError):
    """Cancellation was requested and observed at a phase boundary."""


class UnhandledOperationError(DeploymentError):
    """Wraps any unexpected exception escaping an operation handler."""

    def __init__(self, operation: str, original: BaseException):
        self.operation = operation
        self.original = original
        super().__init__(f"Unhandled error during {operation}: {original}")


class SessionStateError(DeploymentError):
    """Illegal session transition or phase access outside the open window."""


class ManifestError(DeploymentError):
    """The deployment manifest is missing or invalid."""
