"""Core data models for deploykit."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Optional

from deploykit.core.version import Version


class OperationKind(Enum):
    INSTALL = "install"
    UNINSTALL = "uninstall"
    REPAIR = "repair"

    @property
    def label(self) -> str:
        return {
            OperationKind.INSTALL: "Installation",
            OperationKind.UNINSTALL: "Uninstallation",
            OperationKind.REPAIR: "Repair",
        }[self]


class SessionPhase(Enum):
    PRE_OPERATION = "pre"
    OPERATION = "operation"
    POST_OPERATION = "post"


class SessionState(Enum):
    CREATED = "created"
    PRE_OPERATION = "pre"
    OPERATION = "operation"
    POST_OPERATION = "post"
    CLOSED = "closed"


class MatchMode(Enum):
    EXACT = "exact"
    CONTAINS = "contains"


class ItemStatus(Enum):
    INSTALLED = "Installed"
    MISSING = "Missing"


class DeployMode(Enum):
    INTERACTIVE = "interactive"
    SILENT = "silent"
    NONINTERACTIVE = "noninteractive"


class MessageKind(Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


class ExitCode(IntEnum):
    SUCCESS = 0
    USER_CANCELLED = 1602
    REBOOT_REQUIRED = 3010
    # 60000-68999 is reserved for the toolkit itself
    FATAL_ERROR = 60001
    DEPENDENCY_FAILED = 60002
    NOT_ELIGIBLE = 60003
    INSTALLER_FAILED = 60004


@dataclass(frozen=True)
class InstalledApplication:
    display_name: str
    display_version: Optional[str] = None


@dataclass(frozen=True)
class DetectionResult:
    """Outcome of a single probe. Every field is always present."""

    found: bool
    current_version: Optional[Version]
    required_version: Optional[Version]
    needs_update: bool
    error: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.found and (self.current_version is not None or not self.needs_update):
            raise ValueError(
                "A not-found DetectionResult must have no current version "
                "and needs_update=True"
            )

    @classmethod
    def missing(
        cls, required_version: Optional[Version], error: Optional[str] = None
    ) -> "DetectionResult":
        return cls(
            found=False,
            current_version=None,
            required_version=required_version,
            needs_update=True,
            error=error,
        )

    @property
    def status(self) -> str:
        if not self.found:
            return "Missing"
        if self.needs_update:
            return "UpdateNeeded"
        return "OK"

    def to_dict(self) -> dict[str, Any]:
        return {
            "found": self.found,
            "currentVersion": str(self.current_version) if self.current_version else None,
            "requiredVersion": str(self.required_version) if self.required_version else None,
            "needsUpdate": self.needs_update,
            "error": self.error,
            "status": self.status,
        }


@dataclass(frozen=True)
class DependencyItem:
    """A named prerequisite. Identity is (name, match_mode)."""

    name: str
    required_version: Optional[Version] = None
    match_mode: MatchMode = MatchMode.EXACT
    fatal: bool = True
    commands: dict[str, str] = field(default_factory=dict, compare=False, hash=False)

    @property
    def identity(self) -> tuple[str, MatchMode]:
        return (self.name, self.match_mode)


@dataclass
class InstallOutcome:
    success: bool
    reason: str = ""
    exit_code: int = 0
    reboot_required: bool = False


@dataclass
class NonFatalDependencyFailure:
    """Recorded when a best-effort chain item fails; the chain carries on."""

    item_name: str
    reason: str
    exit_code: Optional[int] = None


@dataclass
class ChainItemResult:
    name: str
    match_mode: MatchMode
    fatal: bool
    detection: DetectionResult
    action_taken: str  # none, installed, updated, removed or failed
    outcome: Optional[InstallOutcome] = None
    failure: Optional[NonFatalDependencyFailure] = None


@dataclass
class ChainResult:
    action: OperationKind
    items: list[ChainItemResult] = field(default_factory=list)

    @property
    def failures(self) -> list[NonFatalDependencyFailure]:
        return [r.failure for r in self.items if r.failure is not None]

    @property
    def reboot_required(self) -> bool:
        return any(r.outcome is not None and r.outcome.reboot_required for r in self.items)


@dataclass
class ItemVerification:
    name: str
    match_mode: MatchMode
    status: ItemStatus
    detection: DetectionResult


@dataclass
class ChainVerificationReport:
    items: list[ItemVerification] = field(default_factory=list)

    @property
    def all_satisfied(self) -> bool:
        return all(i.status == ItemStatus.INSTALLED for i in self.items)

    def status_of(self, name: str) -> Optional[ItemStatus]:
        for item in self.items:
            if item.name == name:
                return item.status
        return None


@dataclass(frozen=True)
class AppMetadata:
    vendor: str
    name: str
    version: str
    architecture: str = "x64"
    language: str = "EN"
    revision: str = "01"
    success_exit_codes: tuple[int, ...] = (0,)
    reboot_exit_codes: tuple[int, ...] = (1641, 3010)
    processes_to_close: tuple[str, ...] = ()

    @property
    def display_name(self) -> str:
        return f"{self.vendor} {self.name} {self.version}".strip()

    def to_dict(self) -> dict[str, Any]:
        return {
            "vendor": self.vendor,
            "name": self.name,
            "version": self.version,
            "architecture": self.architecture,
            "language": self.language,
            "revision": self.revision,
        }


@dataclass(frozen=True)
class EnvironmentSnapshot:
    is_laptop: bool = False
    is_domain_joined: bool = False
    is_server: bool = False
    is_virtual_machine: bool = False
    is_terminal_server: bool = False
    is_admin: bool = False
    hour: int = 0
    architecture: str = "x64"

    def to_dict(self) -> dict[str, Any]:
        return {
            "isLaptop": self.is_laptop,
            "isDomainJoined": self.is_domain_joined,
            "isServer": self.is_server,
            "isVirtualMachine": self.is_virtual_machine,
            "isTerminalServer": self.is_terminal_server,
            "isAdmin": self.is_admin,
            "hour": self.hour,
            "architecture": self.architecture,
        }


@dataclass(frozen=True)
class FileCheck:
    path: str
    required_version: Optional[Version] = None


@dataclass(frozen=True)
class RegistryCheck:
    key: str
    value_name: str
    required_version: Optional[Version] = None


@dataclass
class DeploymentPlan:
    """Everything one deployment needs, usually loaded from a manifest."""

    app: AppMetadata
    detection_name: str
    detection_match: MatchMode = MatchMode.EXACT
    dependencies: list[DependencyItem] = field(default_factory=list)
    commands: dict[str, str] = field(default_factory=dict)
    file_checks: list[FileCheck] = field(default_factory=list)
    registry_checks: list[RegistryCheck] = field(default_factory=list)
    require_admin: bool = False
    keep_shared_dependencies: bool = True
    timeout: Optional[float] = None

    def app_item(self, required_version: Optional[Version] = None) -> DependencyItem:
        """The main application expressed as an installable item."""
        return DependencyItem(
            name=self.detection_name,
            required_version=required_version,
            match_mode=self.detection_match,
            fatal=True,
            commands=dict(self.commands),
        )
