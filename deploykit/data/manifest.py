"""Deployment manifest loading (JSON)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional, Union

from deploykit.core import version as versions
from deploykit.core.errors import MalformedVersion, ManifestError
from deploykit.core.models import (
    AppMetadata,
    DependencyItem,
    DeploymentPlan,
    FileCheck,
    MatchMode,
    OperationKind,
    RegistryCheck,
)
from deploykit.core.version import Version

_ACTIONS = {kind.value for kind in OperationKind}


def load_manifest(path: Union[str, Path]) -> DeploymentPlan:
    """Read and validate a manifest file."""
    manifest_path = Path(path)
    try:
        data = json.loads(manifest_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ManifestError(f"Manifest not found: {manifest_path}") from None
    except json.JSONDecodeError as e:
        raise ManifestError(f"{manifest_path}: invalid JSON ({e})") from e
    return parse_manifest(data)


def parse_manifest(data: Any) -> DeploymentPlan:
    if not isinstance(data, dict):
        raise ManifestError("Manifest root must be an object")

    app = _parse_app(_require(data, "app", dict))
    detection = data.get("detection", {})
    if not isinstance(detection, dict):
        raise ManifestError("'detection' must be an object")

    timeout = data.get("timeout")
    if timeout is not None and (not isinstance(timeout, (int, float)) or timeout <= 0):
        raise ManifestError("'timeout' must be a positive number of seconds")

    dependencies = [
        _parse_dependency(entry, index)
        for index, entry in enumerate(_list(data, "dependencies", "manifest"))
    ]
    checks = data.get("checks", {})
    if not isinstance(checks, dict):
        raise ManifestError("'checks' must be an object")

    seen: set = set()
    for item in dependencies:
        if item.identity in seen:
            raise ManifestError(
                f"Duplicate dependency {item.name!r} ({item.match_mode.value})"
            )
        seen.add(item.identity)

    return DeploymentPlan(
        app=app,
        detection_name=detection.get("name") or app.name,
        detection_match=_match_mode(detection.get("match", "exact"), "detection"),
        dependencies=dependencies,
        commands=_commands(data.get("commands", {}), "commands"),
        file_checks=[
            FileCheck(
                path=_require(entry, "path", str),
                required_version=_version(entry.get("version"), "file check"),
            )
            for entry in _entries(checks, "files")
        ],
        registry_checks=[
            RegistryCheck(
                key=_require(entry, "key", str),
                value_name=_require(entry, "value", str),
                required_version=_version(entry.get("version"), "registry check"),
            )
            for entry in _entries(checks, "registry")
        ],
        require_admin=bool(data.get("require_admin", False)),
        keep_shared_dependencies=bool(data.get("keep_shared_dependencies", True)),
        timeout=float(timeout) if timeout is not None else None,
    )


def _parse_app(data: dict[str, Any]) -> AppMetadata:
    app_version = _require(data, "version", str)
    _version(app_version, "app")
    return AppMetadata(
        vendor=data.get("vendor", ""),
        name=_require(data, "name", str),
        version=app_version,
        architecture=data.get("architecture", "x64"),
        language=data.get("language", "EN"),
        revision=str(data.get("revision", "01")),
        success_exit_codes=_exit_codes(data, "success_exit_codes", [0]),
        reboot_exit_codes=_exit_codes(data, "reboot_exit_codes", [1641, 3010]),
        processes_to_close=tuple(_strings(data, "processes_to_close")),
    )


def _parse_dependency(entry: Any, index: int) -> DependencyItem:
    if not isinstance(entry, dict):
        raise ManifestError(f"dependencies[{index}] must be an object")
    where = f"dependencies[{index}]"
    return DependencyItem(
        name=_require(entry, "name", str),
        required_version=_version(entry.get("required_version"), where),
        match_mode=_match_mode(entry.get("match", "exact"), where),
        fatal=bool(entry.get("fatal", True)),
        commands=_commands(entry.get("commands", {}), where),
    )


def _list(data: dict[str, Any], key: str, where: str) -> list:
    value = data.get(key, [])
    if not isinstance(value, list):
        raise ManifestError(f"{where}: {key!r} must be a list")
    return value


def _entries(checks: dict[str, Any], key: str) -> list[dict[str, Any]]:
    entries = _list(checks, key, "checks")
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ManifestError(f"checks.{key}[{index}] must be an object")
    return entries


def _exit_codes(data: dict[str, Any], key: str, default: list[int]) -> tuple[int, ...]:
    codes = data.get(key, default)
    # bool is an int subclass; true/false are never exit codes
    if not isinstance(codes, list) or not all(
        isinstance(c, int) and not isinstance(c, bool) for c in codes
    ):
        raise ManifestError(f"app: {key!r} must be a list of integers")
    return tuple(codes)


def _strings(data: dict[str, Any], key: str) -> list[str]:
    values = _list(data, key, "app")
    if not all(isinstance(v, str) for v in values):
        raise ManifestError(f"app: {key!r} must be a list of strings")
    return values


def _require(data: Any, key: str, kind: type) -> Any:
    if not isinstance(data, dict) or key not in data:
        raise ManifestError(f"Missing required key {key!r}")
    value = data[key]
    if not isinstance(value, kind):
        raise ManifestError(f"{key!r} must be of type {kind.__name__}")
    return value


def _version(text: Optional[str], where: str) -> Optional[Version]:
    if text is None:
        return None
    try:
        return versions.parse(str(text))
    except MalformedVersion as e:
        raise ManifestError(f"{where}: {e}") from e


def _match_mode(value: str, where: str) -> MatchMode:
    try:
        return MatchMode(str(value).lower())
    except ValueError:
        raise ManifestError(f"{where}: unknown match mode {value!r}") from None


def _commands(data: Any, where: str) -> dict[str, str]:
    if not isinstance(data, dict):
        raise ManifestError(f"{where}: commands must be an object")
    unknown = set(data) - _ACTIONS
    if unknown:
        raise ManifestError(f"{where}: unknown actions {sorted(unknown)}")
    return {str(k): str(v) for k, v in data.items()}
