"""Shared test fixtures for deploykit tests."""

from __future__ import annotations

from typing import Optional

import pytest

from deploykit.core import version as versions
from deploykit.core.models import (
    AppMetadata,
    DependencyItem,
    DeploymentPlan,
    EnvironmentSnapshot,
    InstalledApplication,
    InstallOutcome,
    MatchMode,
    OperationKind,
)
from deploykit.core.probes import DetectionProbes
from deploykit.data.store import DataStore


class FakeInventory:
    """In-memory application inventory: display name -> display version."""

    def __init__(self, apps: Optional[dict[str, Optional[str]]] = None):
        self.apps = dict(apps or {})
        self.queries: list[tuple[str, MatchMode]] = []

    def query_installed_applications(self, name_pattern, match_mode):
        self.queries.append((name_pattern, match_mode))
        return [InstalledApplication(name, ver) for name, ver in self.apps.items()]


class FakeInstaller:
    """Records calls and updates the inventory the way a real installer would."""

    def __init__(
        self,
        inventory: FakeInventory,
        fail: tuple[str, ...] = (),
        reboot: tuple[str, ...] = (),
        default_version: str = "1.0",
    ):
        self.inventory = inventory
        self.fail = set(fail)
        self.reboot = set(reboot)
        self.default_version = default_version
        self.calls: list[tuple[str, OperationKind]] = []

    def run_installer(self, item, action, timeout=None):
        self.calls.append((item.name, action))
        if item.name in self.fail:
            return InstallOutcome(success=False, reason="installer error", exit_code=1603)
        if action == OperationKind.UNINSTALL:
            self.inventory.apps.pop(item.name, None)
        else:
            installed = item.required_version or versions.parse(self.default_version)
            self.inventory.apps[item.name] = str(installed)
        if item.name in self.reboot:
            return InstallOutcome(success=True, exit_code=3010, reboot_required=True)
        return InstallOutcome(success=True)


def make_item(name, required=None, fatal=True, match=MatchMode.EXACT, **commands):
    return DependencyItem(
        name=name,
        required_version=versions.parse(required) if required else None,
        match_mode=match,
        fatal=fatal,
        commands=commands or {"install": f"install {name}"},
    )


@pytest.fixture
def app_metadata() -> AppMetadata:
    return AppMetadata(vendor="Contoso", name="Widget", version="2.1.0")


@pytest.fixture
def plan(app_metadata) -> DeploymentPlan:
    """Widget 2.1.0 with no dependencies."""
    return DeploymentPlan(
        app=app_metadata,
        detection_name="Widget",
        commands={
            "install": "setup.exe /quiet",
            "uninstall": "setup.exe /uninstall /quiet",
            "repair": "setup.exe /repair /quiet",
        },
    )


@pytest.fixture
def inventory() -> FakeInventory:
    return FakeInventory()


@pytest.fixture
def installer(inventory) -> FakeInstaller:
    return FakeInstaller(inventory)


@pytest.fixture
def probes(inventory) -> DetectionProbes:
    return DetectionProbes(inventory)


@pytest.fixture
def snapshot() -> EnvironmentSnapshot:
    """Desktop, admin, 10 o'clock."""
    return EnvironmentSnapshot(is_admin=True, hour=10, architecture="x64")


@pytest.fixture
def temp_db(tmp_path):
    """DataStore with a temporary SQLite database."""
    db_path = str(tmp_path / "test.db")
    store = DataStore(db_path=db_path)
    yield store
    store.close()
