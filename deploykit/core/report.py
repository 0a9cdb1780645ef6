"""End-of-run report assembly."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

from deploykit.core.models import (
    ChainResult,
    ChainVerificationReport,
    DetectionResult,
    EnvironmentSnapshot,
)

_ACTION_STATUS = {
    "none": "Installed",
    "installed": "Installed",
    "updated": "Installed",
    "removed": "Removed",
    "failed": "Failed",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Report:
    """Structured summary; every key is present even when empty."""

    timestamp: str
    environment: Optional[dict[str, Any]]
    application_checks: list[dict[str, Any]] = field(default_factory=list)
    dependency_status: list[dict[str, Any]] = field(default_factory=list)
    session: dict[str, Any] = field(default_factory=dict)
    outcome: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "environment": self.environment,
            "applicationChecks": [dict(c) for c in self.application_checks],
            "dependencyStatus": [dict(d) for d in self.dependency_status],
            "session": dict(self.session),
            "outcome": dict(self.outcome),
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)

    def to_key_values(self) -> dict[str, str]:
        """Flatten to dotted keys for systems that only take key/value pairs."""
        flat: dict[str, str] = {}

        def walk(prefix: str, value: Any) -> None:
            if isinstance(value, dict):
                for k, v in value.items():
                    walk(f"{prefix}.{k}" if prefix else k, v)
            elif isinstance(value, list):
                for i, v in enumerate(value):
                    walk(f"{prefix}.{i}", v)
            else:
                flat[prefix] = "" if value is None else str(value)

        walk("", self.to_dict())
        return flat

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Report":
        return cls(
            timestamp=data["timestamp"],
            environment=data.get("environment"),
            application_checks=list(data.get("applicationChecks", [])),
            dependency_status=list(data.get("dependencyStatus", [])),
            session=dict(data.get("session", {})),
            outcome=dict(data.get("outcome", {})),
        )


class ReportBuilder:
    """Accumulates probe and chain results during a session."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._environment: Optional[EnvironmentSnapshot] = None
        self._checks: list[dict[str, Any]] = []
        # keyed by (name, matchMode) so a later verification updates the entry
        self._dependencies: dict[tuple[str, str], dict[str, Any]] = {}
        self._session: dict[str, Any] = {}
        self._outcome: dict[str, Any] = {}

    def add_application_check(
        self, name: str, result: DetectionResult, stage: str = "post"
    ) -> None:
        entry = {"name": name, "stage": stage}
        entry.update(result.to_dict())
        self._checks.append(entry)

    def add_dependency_status(
        self, status: Union[ChainResult, ChainVerificationReport]
    ) -> None:
        if isinstance(status, ChainResult):
            for item in status.items:
                entry = self._dependency_entry(item.name, item.match_mode.value)
                entry["actionTaken"] = item.action_taken
                entry["status"] = _ACTION_STATUS.get(item.action_taken, "Unknown")
                entry["fatal"] = item.fatal
                if item.failure is not None:
                    entry["error"] = item.failure.reason
                if item.detection.current_version is not None:
                    entry["version"] = str(item.detection.current_version)
        else:
            for item in status.items:
                entry = self._dependency_entry(item.name, item.match_mode.value)
                entry["status"] = item.status.value
                current = item.detection.current_version
                entry["version"] = str(current) if current is not None else None

    def add_environment_snapshot(self, snapshot: EnvironmentSnapshot) -> None:
        self._environment = snapshot

    def set_session(self, **info: Any) -> None:
        self._session.update(info)

    def set_outcome(self, exit_code: int, status: str, reboot_required: bool = False) -> None:
        self._outcome = {
            "exitCode": int(exit_code),
            "status": status,
            "rebootRequired": reboot_required,
        }

    def build(self) -> Report:
        return Report(
            timestamp=self._clock().isoformat(),
            environment=self._environment.to_dict() if self._environment else None,
            application_checks=[dict(c) for c in self._checks],
            dependency_status=[dict(d) for d in self._dependencies.values()],
            session=dict(self._session),
            outcome=dict(self._outcome),
        )

    def _dependency_entry(self, name: str, match_mode: str) -> dict[str, Any]:
        key = (name, match_mode)
        if key not in self._dependencies:
            self._dependencies[key] = {
                "name": name,
                "matchMode": match_mode,
                "status": "Unknown",
                "actionTaken": "none",
                "fatal": None,
                "version": None,
                "error": None,
            }
        return self._dependencies[key]
