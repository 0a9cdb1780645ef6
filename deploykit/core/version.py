"""Dotted numeric version parsing and comparison."""

from __future__ import annotations

from dataclasses import dataclass
from itertools import zip_longest
from typing import Optional, Union

from deploykit.core.errors import MalformedVersion


@dataclass(frozen=True, eq=False)
class Version:
    """Immutable major.minor.build.revision style version."""

    components: tuple[int, ...]

    def __str__(self) -> str:
        return ".".join(str(c) for c in self.components)

    def _key(self) -> tuple[int, ...]:
        key = list(self.components)
        while key and key[-1] == 0:
            key.pop()
        return tuple(key)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __lt__(self, other: "Version") -> bool:
        return compare(self, other) < 0

    def __le__(self, other: "Version") -> bool:
        return compare(self, other) <= 0

    def __gt__(self, other: "Version") -> bool:
        return compare(self, other) > 0

    def __ge__(self, other: "Version") -> bool:
        return compare(self, other) >= 0


VersionLike = Union[Version, str]


def parse(text: str) -> Version:
    """Parse ``text`` into a Version, raising MalformedVersion on bad input."""
    if isinstance(text, Version):
        return text
    if not isinstance(text, str):
        raise MalformedVersion(text)
    stripped = text.strip()
    if not stripped:
        raise MalformedVersion(text)
    components = []
    for segment in stripped.split("."):
        # isdigit() alone accepts superscripts and other non-ASCII digits
        if not segment.isascii() or not segment.isdigit():
            raise MalformedVersion(text)
        components.append(int(segment))
    return Version(tuple(components))


def try_parse(text: Optional[VersionLike]) -> Optional[Version]:
    """Return the parsed version, or None when absent or malformed."""
    if text is None:
        return None
    try:
        return parse(text)
    except MalformedVersion:
        return None


def compare(a: VersionLike, b: VersionLike) -> int:
    """Return -1, 0 or 1; missing trailing components count as zero."""
    left = parse(a).components
    right = parse(b).components
    for x, y in zip_longest(left, right, fillvalue=0):
        if x < y:
            return -1
        if x > y:
            return 1
    return 0


def is_older(current: Optional[VersionLike], required: VersionLike) -> bool:
    """True when ``current`` is below ``required``.

    An absent or unparseable ``current`` is always older, so a detection
    never aborts on bad version data; it just takes the update path.
    """
    parsed = try_parse(current)
    if parsed is None:
        return True
    return compare(parsed, parse(required)) < 0
