"""Detection probes over installed applications, files, registry and host."""

from __future__ import annotations

import logging
import os
from typing import Optional, Union

from deploykit.core import version as versions
from deploykit.core.collaborators import (
    ApplicationInventory,
    FileMetadataReader,
    RegistryReader,
)
from deploykit.core.environment import EnvironmentDetector
from deploykit.core.errors import ProbeFailure
from deploykit.core.models import (
    DetectionResult,
    EnvironmentSnapshot,
    InstalledApplication,
    MatchMode,
)
from deploykit.core.version import Version

logger = logging.getLogger(__name__)

RequiredVersion = Optional[Union[Version, str]]


def matches(display_name: str, name_pattern: str, match_mode: MatchMode) -> bool:
    """EXACT is a case-sensitive full match, CONTAINS a substring match."""
    if match_mode == MatchMode.EXACT:
        return display_name == name_pattern
    return name_pattern in display_name


def pick_application(apps: list[InstalledApplication]) -> InstalledApplication:
    """Deterministic tie-break: highest parseable version, then display name.

    Unparseable or missing versions rank below every parseable one.
    """
    def key(app: InstalledApplication):
        parsed = versions.try_parse(app.display_version)
        return (parsed is not None, parsed or Version(()))

    # max() keeps the first of equal keys, so pre-sorting by name breaks ties
    return max(sorted(apps, key=lambda a: a.display_name), key=key)


def _evaluate(current: Optional[str], required: Optional[Version]) -> DetectionResult:
    """Build a found DetectionResult from a raw current-version string."""
    parsed = versions.try_parse(current)
    if required is None:
        needs_update = False
    else:
        needs_update = versions.is_older(parsed, required)
    error = None
    if parsed is None:
        if current is None:
            error = "No version reported"
        else:
            error = f"Unparseable current version: {current!r}"
    return DetectionResult(
        found=True,
        current_version=parsed,
        required_version=required,
        needs_update=needs_update,
        error=error,
    )


class DetectionProbes:
    """Side-effect-free queries. Internal errors never escape a probe."""

    def __init__(
        self,
        inventory: ApplicationInventory,
        file_reader: Optional[FileMetadataReader] = None,
        registry: Optional[RegistryReader] = None,
    ):
        self.inventory = inventory
        self.file_reader = file_reader
        self.registry = registry

    def probe_application(
        self, name_pattern: str, match_mode: MatchMode = MatchMode.EXACT
    ) -> list[InstalledApplication]:
        try:
            apps = self.inventory.query_installed_applications(name_pattern, match_mode)
        except Exception as e:
            logger.warning(
                "Probe failed: %s",
                ProbeFailure("application", f"inventory lookup for {name_pattern!r} failed: {e}"),
            )
            return []
        return [a for a in apps if matches(a.display_name, name_pattern, match_mode)]

    def probe_application_version(
        self,
        name_pattern: str,
        match_mode: MatchMode = MatchMode.EXACT,
        required_version: RequiredVersion = None,
    ) -> DetectionResult:
        required = self._required(required_version)
        try:
            apps = self.inventory.query_installed_applications(name_pattern, match_mode)
        except Exception as e:
            return self._failed("application", required, f"inventory lookup for {name_pattern!r} failed: {e}")

        apps = [a for a in apps if matches(a.display_name, name_pattern, match_mode)]
        if not apps:
            return DetectionResult.missing(required)
        if len(apps) > 1:
            logger.debug("%d applications match %r; choosing highest version", len(apps), name_pattern)
        chosen = pick_application(apps)
        return _evaluate(chosen.display_version, required)

    def probe_file_version(
        self, path: str, required_version: RequiredVersion = None
    ) -> DetectionResult:
        required = self._required(required_version)
        try:
            if not os.path.exists(path):
                return DetectionResult.missing(required)
            if self.file_reader is None:
                raise ProbeFailure("file", "no file metadata reader configured")
            current = self.file_reader.read_file_version(path)
        except Exception as e:
            return self._failed("file", required, f"{path}: {e}")
        return _evaluate(current, required)

    def probe_registry_version(
        self, key: str, value_name: str, required_version: RequiredVersion = None
    ) -> DetectionResult:
        required = self._required(required_version)
        try:
            if self.registry is None:
                raise ProbeFailure("registry", "no registry reader configured")
            value = self.registry.read_value(key, value_name)
        except Exception as e:
            return self._failed("registry", required, f"{key}\\{value_name}: {e}")
        if value is None:
            return DetectionResult.missing(required)
        return _evaluate(str(value), required)

    def probe_environment(self) -> EnvironmentSnapshot:
        return EnvironmentDetector.detect_current()

    @staticmethod
    def _required(required_version: RequiredVersion) -> Optional[Version]:
        # A malformed *required* version is a configuration bug, so let it raise
        if required_version is None:
            return None
        return versions.parse(required_version)

    @staticmethod
    def _failed(probe: str, required: Optional[Version], reason: str) -> DetectionResult:
        failure = ProbeFailure(probe, reason)
        logger.warning("Probe failed, treating as not found: %s", failure)
        return DetectionResult.missing(required, error=str(failure))
