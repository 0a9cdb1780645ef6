"""Environment detection: chassis, domain, server, VM, RDP, admin, clock."""

from __future__ import annotations

import ctypes
import glob
import logging
import os
import platform
import subprocess
from datetime import datetime
from typing import Callable, Optional

from deploykit.core.models import EnvironmentSnapshot

logger = logging.getLogger(__name__)

# Win32_SystemEnclosure.ChassisTypes values that denote portable hardware
_LAPTOP_CHASSIS = {8, 9, 10, 11, 12, 14, 18, 21, 30, 31, 32}

_VM_MARKERS = ("virtual", "vmware", "kvm", "qemu", "xen", "hvm", "virtualbox", "parallels")

_ARCH_ALIASES = {
    "amd64": "x64",
    "x86_64": "x64",
    "x64": "x64",
    "i386": "x86",
    "i686": "x86",
    "x86": "x86",
    "arm64": "arm64",
    "aarch64": "arm64",
}


class EnvironmentDetector:
    """Detects host facts once per session."""

    @staticmethod
    def detect_current(clock: Optional[Callable[[], datetime]] = None) -> EnvironmentSnapshot:
        """Detect the current environment.

        Each check is independent: a failure degrades that one field to
        False without affecting the others.
        """
        now = (clock or datetime.now)()
        return EnvironmentSnapshot(
            is_laptop=_false_safe("laptop", _detect_laptop),
            is_domain_joined=_false_safe("domain", _detect_domain_joined),
            is_server=_false_safe("server", _detect_server),
            is_virtual_machine=_false_safe("virtual machine", _detect_virtual_machine),
            is_terminal_server=_false_safe("terminal server", _detect_terminal_server),
            is_admin=_false_safe("admin", _detect_admin),
            hour=now.hour,
            architecture=_detect_architecture(),
        )


def _false_safe(name: str, check: Callable[[], bool]) -> bool:
    try:
        return bool(check())
    except Exception:
        logger.warning("Environment check %r failed; assuming False", name, exc_info=True)
        return False


def _powershell(command: str, timeout: int = 10) -> Optional[str]:
    result = subprocess.run(
        ["powershell", "-NoLogo", "-NoProfile", "-Command", command],
        capture_output=True, text=True, timeout=timeout,
    )
    if result.returncode != 0:
        return None
    return result.stdout.strip()


def _detect_laptop() -> bool:
    system = platform.system()
    if system == "Windows":
        out = _powershell("(Get-CimInstance Win32_SystemEnclosure).ChassisTypes")
        if not out:
            return False
        chassis = {int(tok) for tok in out.split() if tok.isdigit()}
        return bool(chassis & _LAPTOP_CHASSIS)
    if system == "Darwin":
        result = subprocess.run(
            ["pmset", "-g", "batt"],
            capture_output=True, text=True, timeout=5,
        )
        return result.returncode == 0 and "InternalBattery" in result.stdout
    return bool(glob.glob("/sys/class/power_supply/BAT*"))


def _detect_domain_joined() -> bool:
    if platform.system() == "Windows":
        out = _powershell("(Get-CimInstance Win32_ComputerSystem).PartOfDomain")
        return (out or "").lower() == "true"
    result = subprocess.run(
        ["realm", "list", "--name-only"],
        capture_output=True, text=True, timeout=5,
    )
    return result.returncode == 0 and bool(result.stdout.strip())


def _detect_server() -> bool:
    if platform.system() == "Windows":
        return "server" in (platform.win32_edition() or "").lower()
    if platform.system() == "Linux":
        result = subprocess.run(
            ["systemctl", "get-default"],
            capture_output=True, text=True, timeout=5,
        )
        return result.returncode == 0 and result.stdout.strip() == "multi-user.target"
    return False


def _detect_virtual_machine() -> bool:
    system = platform.system()
    if system == "Windows":
        out = _powershell(
            "$cs = Get-CimInstance Win32_ComputerSystem; \"$($cs.Manufacturer) $($cs.Model)\""
        )
        return any(marker in (out or "").lower() for marker in _VM_MARKERS)
    if system == "Darwin":
        result = subprocess.run(
            ["sysctl", "-n", "kern.hv_vmm_present"],
            capture_output=True, text=True, timeout=5,
        )
        return result.returncode == 0 and result.stdout.strip() == "1"
    result = subprocess.run(
        ["systemd-detect-virt"],
        capture_output=True, text=True, timeout=5,
    )
    return result.returncode == 0 and result.stdout.strip() not in ("", "none")


def _detect_terminal_server() -> bool:
    if platform.system() == "Windows":
        return os.environ.get("SESSIONNAME", "").upper().startswith("RDP-")
    return bool(os.environ.get("SSH_CONNECTION"))


def _detect_admin() -> bool:
    if hasattr(os, "geteuid"):
        return os.geteuid() == 0
    return bool(ctypes.windll.shell32.IsUserAnAdmin())


def _detect_architecture() -> str:
    machine = platform.machine().lower()
    return _ARCH_ALIASES.get(machine, machine or "unknown")


def detect_running_processes(names: list[str] | tuple[str, ...]) -> list[str]:
    """Return which of ``names`` are currently running (case-insensitive).

    Errors yield an empty list; process inspection is advisory only.
    """
    if not names:
        return []
    try:
        if platform.system() == "Windows":
            result = subprocess.run(
                ["tasklist", "/fo", "csv", "/nh"],
                capture_output=True, text=True, timeout=10,
            )
            running = {
                line.split(",")[0].strip('"').lower()
                for line in result.stdout.splitlines() if line.strip()
            }
        else:
            result = subprocess.run(
                ["ps", "-A", "-o", "comm="],
                capture_output=True, text=True, timeout=10,
            )
            running = {
                os.path.basename(line.strip()).lower()
                for line in result.stdout.splitlines() if line.strip()
            }
    except Exception:
        logger.warning("Could not list running processes", exc_info=True)
        return []

    found = []
    for name in names:
        candidates = {name.lower(), f"{name.lower()}.exe"}
        if candidates & running:
            found.append(name)
    return found
