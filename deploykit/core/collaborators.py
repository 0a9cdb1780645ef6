"""Interfaces to the surrounding toolkit, plus the implementations the CLI uses."""

from __future__ import annotations

import logging
import os
import re
import subprocess
from typing import Optional, Protocol

from rich.console import Console

from deploykit.core.models import (
    AppMetadata,
    DependencyItem,
    DeployMode,
    InstalledApplication,
    InstallOutcome,
    MatchMode,
    MessageKind,
    OperationKind,
)

logger = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"\d+(?:\.\d+)+")


class ApplicationInventory(Protocol):
    """Lists installed applications."""

    def query_installed_applications(
        self, name_pattern: str, match_mode: MatchMode
    ) -> list[InstalledApplication]:
        ...


class FileMetadataReader(Protocol):
    def read_file_version(self, path: str) -> Optional[str]:
        ...


class RegistryReader(Protocol):
    def read_value(self, key: str, value_name: str) -> Optional[str]:
        ...


class InstallerInvoker(Protocol):
    """Runs the installer for a dependency item or the main application."""

    def run_installer(
        self,
        item: DependencyItem,
        action: OperationKind,
        timeout: Optional[float] = None,
    ) -> InstallOutcome:
        ...


class Notifier(Protocol):
    def show_message(self, text: str, kind: MessageKind = MessageKind.INFO) -> None:
        ...


# ── Implementations ──────────────────────────────────────────────────


_KIND_STYLES = {
    MessageKind.INFO: "cyan",
    MessageKind.WARNING: "yellow",
    MessageKind.ERROR: "bold red",
    MessageKind.SUCCESS: "bold green",
}


class ConsoleNotifier:
    """Prints user-facing messages; silent deploy mode suppresses everything."""

    def __init__(
        self,
        console: Optional[Console] = None,
        deploy_mode: DeployMode = DeployMode.INTERACTIVE,
    ):
        self.console = console or Console()
        self.deploy_mode = deploy_mode

    def show_message(self, text: str, kind: MessageKind = MessageKind.INFO) -> None:
        if self.deploy_mode == DeployMode.SILENT:
            return
        style = _KIND_STYLES.get(kind, "white")
        self.console.print(f"[{style}]{text}[/]")


class CommandInstaller:
    """Executes the per-action shell command attached to an item."""

    def __init__(self, app: AppMetadata, default_timeout: Optional[float] = None):
        self.app = app
        self.default_timeout = default_timeout

    def run_installer(
        self,
        item: DependencyItem,
        action: OperationKind,
        timeout: Optional[float] = None,
    ) -> InstallOutcome:
        command = item.commands.get(action.value)
        if not command:
            return InstallOutcome(
                success=False,
                reason=f"No {action.value} command defined for {item.name}",
                exit_code=-1,
            )

        effective_timeout = timeout or self.default_timeout
        logger.info("Running %s for %s: %s", action.value, item.name, command)
        try:
            result = subprocess.run(
                command,
                shell=True,
                capture_output=True,
                text=True,
                timeout=effective_timeout,
            )
        except subprocess.TimeoutExpired:
            return InstallOutcome(
                success=False,
                reason=f"Timed out after {effective_timeout} seconds",
                exit_code=-1,
            )
        except OSError as e:
            return InstallOutcome(success=False, reason=str(e), exit_code=-1)

        code = result.returncode
        if code in self.app.reboot_exit_codes:
            return InstallOutcome(success=True, exit_code=code, reboot_required=True)
        if code in self.app.success_exit_codes:
            return InstallOutcome(success=True, exit_code=code)
        reason = (result.stderr or result.stdout).strip() or f"exit code {code}"
        return InstallOutcome(success=False, reason=reason, exit_code=code)


class CommandFileVersionReader:
    """Reads a binary's version by running ``<path> --version``.

    This executes the target, so it is only suitable for the CLI running
    against trusted manifests. Paths that are not executable regular files
    report no version and are never run.
    """

    def __init__(self, timeout: float = 10):
        self.timeout = timeout

    def read_file_version(self, path: str) -> Optional[str]:
        if not (os.path.isfile(path) and os.access(path, os.X_OK)):
            logger.debug("Not an executable file, skipping version read: %s", path)
            return None
        result = subprocess.run(
            [path, "--version"],
            capture_output=True, text=True, timeout=self.timeout,
        )
        match = _VERSION_RE.search(result.stdout or result.stderr or "")
        return match.group(0) if match else None


class NullRegistryReader:
    """Registry access belongs to the OS wrapper layer; every value is absent."""

    def read_value(self, key: str, value_name: str) -> Optional[str]:
        return None
