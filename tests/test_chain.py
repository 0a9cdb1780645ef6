"""Tests for deploykit.core.chain — DependencyChain."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from deploykit.core.chain import DependencyChain
from deploykit.core.errors import DependencyInstallFailed, DuplicateDependency
from deploykit.core.models import ItemStatus, MatchMode, OperationKind
from deploykit.core.probes import DetectionProbes
from tests.conftest import FakeInstaller, FakeInventory, make_item


def _chain(items, installed=None, fail=(), reboot=()):
    inventory = FakeInventory(installed)
    installer = FakeInstaller(inventory, fail=fail, reboot=reboot)
    chain = DependencyChain(items, DetectionProbes(inventory), installer)
    return chain, installer, inventory


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

class TestConstruction:
    def test_duplicate_identity_rejected(self):
        with pytest.raises(DuplicateDependency):
            _chain([make_item("VC Runtime"), make_item("VC Runtime")])

    def test_same_name_different_match_mode_allowed(self):
        chain, _, _ = _chain([
            make_item("VC Runtime"),
            make_item("VC Runtime", match=MatchMode.CONTAINS),
        ])
        assert len(chain.items) == 2

    def test_rejects_uninstall_action(self):
        chain, _, _ = _chain([make_item("A")])
        with pytest.raises(ValueError):
            chain.resolve(OperationKind.UNINSTALL)


# ---------------------------------------------------------------------------
# resolve
# ---------------------------------------------------------------------------

class TestResolve:
    def test_installs_missing_items_in_order(self):
        chain, installer, _ = _chain([make_item("A"), make_item("B"), make_item("C")])
        result = chain.resolve()
        assert [c[0] for c in installer.calls] == ["A", "B", "C"]
        assert [r.action_taken for r in result.items] == ["installed"] * 3
        assert result.failures == []

    def test_present_items_are_skipped(self):
        chain, installer, _ = _chain([make_item("A"), make_item("B")], installed={"A": "1.0"})
        result = chain.resolve()
        assert installer.calls == [("B", OperationKind.INSTALL)]
        assert result.items[0].action_taken == "none"

    def test_fatal_failure_aborts_before_next_item(self):
        items = [make_item("A"), make_item("B"), make_item("C")]
        chain, installer, _ = _chain(items, fail=("B",))
        with pytest.raises(DependencyInstallFailed) as exc_info:
            chain.resolve()
        assert exc_info.value.item_name == "B"
        assert [c[0] for c in installer.calls] == ["A", "B"]
        partial = exc_info.value.partial_result
        assert [r.name for r in partial.items] == ["A", "B"]
        assert partial.items[1].action_taken == "failed"

    def test_non_fatal_failure_continues(self):
        items = [make_item("A", fatal=False), make_item("B", fatal=False), make_item("C", fatal=False)]
        chain, installer, _ = _chain(items, fail=("B",))
        result = chain.resolve()
        assert [c[0] for c in installer.calls] == ["A", "B", "C"]
        assert len(result.failures) == 1
        assert result.failures[0].item_name == "B"
        assert result.failures[0].exit_code == 1603

        report = chain.verify()
        assert report.status_of("A") == ItemStatus.INSTALLED
        assert report.status_of("B") == ItemStatus.MISSING
        assert report.status_of("C") == ItemStatus.INSTALLED
        assert report.all_satisfied is False

    def test_installer_exception_treated_as_failure(self):
        inventory = FakeInventory()
        installer = MagicMock()
        installer.run_installer.side_effect = RuntimeError("msiexec crashed")
        chain = DependencyChain([make_item("A", fatal=False)], DetectionProbes(inventory), installer)
        result = chain.resolve()
        assert result.failures[0].reason == "msiexec crashed"

    def test_install_does_not_update_outdated(self):
        chain, installer, _ = _chain([make_item("A", required="2.0")], installed={"A": "1.0"})
        result = chain.resolve(OperationKind.INSTALL)
        assert installer.calls == []
        assert result.items[0].action_taken == "none"

    def test_repair_updates_outdated(self):
        chain, installer, inventory = _chain([make_item("A", required="2.0")], installed={"A": "1.0"})
        result = chain.resolve(OperationKind.REPAIR)
        assert installer.calls == [("A", OperationKind.INSTALL)]
        assert result.items[0].action_taken == "updated"
        assert inventory.apps["A"] == "2.0"

    def test_repair_prefers_repair_command(self):
        item = make_item("A", required="2.0", install="setup", repair="setup /repair")
        chain, installer, _ = _chain([item], installed={"A": "1.0"})
        chain.resolve(OperationKind.REPAIR)
        assert installer.calls == [("A", OperationKind.REPAIR)]

    def test_reboot_bubbles_up(self):
        chain, _, _ = _chain([make_item("A")], reboot=("A",))
        assert chain.resolve().reboot_required is True

    def test_last_result_kept(self):
        chain, _, _ = _chain([make_item("A")])
        result = chain.resolve()
        assert chain.last_result is result


# ---------------------------------------------------------------------------
# remove / verify
# ---------------------------------------------------------------------------

class TestRemove:
    def test_reverse_order(self):
        items = [make_item("A"), make_item("B"), make_item("C")]
        chain, installer, inventory = _chain(items, installed={"A": "1", "B": "1", "C": "1"})
        result = chain.remove()
        assert [c[0] for c in installer.calls] == ["C", "B", "A"]
        assert all(c[1] == OperationKind.UNINSTALL for c in installer.calls)
        assert [r.action_taken for r in result.items] == ["removed"] * 3
        assert inventory.apps == {}

    def test_absent_items_skipped_and_failures_recorded(self):
        items = [make_item("A"), make_item("B"), make_item("C")]
        chain, installer, _ = _chain(items, installed={"A": "1", "C": "1"}, fail=("C",))
        result = chain.remove()
        assert [c[0] for c in installer.calls] == ["C", "A"]
        by_name = {r.name: r.action_taken for r in result.items}
        assert by_name == {"C": "failed", "B": "none", "A": "removed"}
        assert result.failures[0].item_name == "C"


class TestVerify:
    def test_presence_only(self):
        items = [make_item("A", required="5.0"), make_item("B")]
        chain, _, _ = _chain(items, installed={"A": "1.0"})
        report = chain.verify()
        # outdated still counts as installed
        assert report.status_of("A") == ItemStatus.INSTALLED
        assert report.status_of("B") == ItemStatus.MISSING
        assert report.status_of("Z") is None
