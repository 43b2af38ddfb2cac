"""
PipeGate Suppression Registry

Time-bounded exemptions that keep a known finding from failing the gate.

A suppression matches a finding when its identifier pattern matches the
finding identifier and its component pattern matches the affected
component. Patterns are exact strings or shell-style globs. A component
pattern containing '@' is matched against the full name@version
coordinate, otherwise against the component name only.

Expiry is half-open: a suppression is active while ``at < expires`` and
expired from ``at >= expires`` onward. Expired suppressions stay loaded so
the report can tell "never suppressed" apart from "suppression lapsed".

Example suppression file:

    suppressions:
      - id: CVE-2021-44228
        component: "log4j-core@2.14.*"
        expires: 2025-09-10
        justification: "JNDI lookups disabled via system property"
"""

from __future__ import annotations

import fnmatch
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml

from pipegate.core.errors import ConfigError
from pipegate.core.finding import Finding

logger = logging.getLogger(__name__)

GLOB_CHARS = set("*?[")


class SuppressionStatus(Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    NONE = "none"


def _specificity(pattern: str) -> tuple[int, int]:
    """Exact patterns outrank globs; among globs, more literal characters win."""
    is_exact = 0 if GLOB_CHARS & set(pattern) else 1
    literal = sum(1 for ch in pattern if ch not in GLOB_CHARS and ch != "]")
    return is_exact, literal


def _matches(pattern: str, value: str) -> bool:
    if GLOB_CHARS & set(pattern):
        return fnmatch.fnmatchcase(value, pattern)
    return pattern == value


def parse_expiry(value: Any) -> datetime:
    """
    Parse an ISO 8601 date or timestamp into an aware UTC datetime.

    A bare date means midnight UTC at the start of that day.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        text = value.strip()
        try:
            if "T" in text or " " in text:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            else:
                parsed = datetime.combine(date.fromisoformat(text), time.min)
        except ValueError as exc:
            raise ConfigError(f"Invalid suppression expiry {value!r}: {exc}") from exc
    else:
        raise ConfigError(f"Invalid suppression expiry {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class Suppression:
    id_pattern: str
    component_pattern: str
    expires: datetime
    justification: str

    def matches(self, finding: Finding) -> bool:
        if not _matches(self.id_pattern, finding.id):
            return False
        component = finding.component
        target = component.coordinate if "@" in self.component_pattern else component.name
        return _matches(self.component_pattern, target)

    def is_active(self, at: datetime) -> bool:
        return at < self.expires

    @property
    def precedence(self) -> tuple:
        """Sort key: most specific component, then identifier, then earliest expiry."""
        comp_exact, comp_literal = _specificity(self.component_pattern)
        id_exact, id_literal = _specificity(self.id_pattern)
        return (-comp_exact, -comp_literal, -id_exact, -id_literal, self.expires)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Suppression":
        missing = [name for name in ("id", "component", "expires", "justification")
                   if not data.get(name)]
        if missing:
            raise ConfigError(
                f"Suppression {data.get('id', '<unnamed>')!r} is missing: {', '.join(missing)}"
            )
        return cls(
            id_pattern=str(data["id"]),
            component_pattern=str(data["component"]),
            expires=parse_expiry(data["expires"]),
            justification=str(data["justification"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id_pattern,
            "component": self.component_pattern,
            "expires": self.expires.isoformat(),
            "justification": self.justification,
        }


@dataclass(frozen=True)
class SuppressionMatch:
    status: SuppressionStatus
    suppression: Optional[Suppression] = None


NO_MATCH = SuppressionMatch(SuppressionStatus.NONE)


class SuppressionRegistry:
    """Read-only collection of suppressions, evaluated against a reference clock."""

    def __init__(self, suppressions: Iterable[Suppression] = ()) -> None:
        self._suppressions = sorted(suppressions, key=lambda s: s.precedence)

    def __len__(self) -> int:
        return len(self._suppressions)

    def __iter__(self):
        return iter(self._suppressions)

    def match(self, finding: Finding, at: datetime) -> SuppressionMatch:
        """Return the winning suppression for a finding and its status at ``at``."""
        for suppression in self._suppressions:
            if suppression.matches(finding):
                status = (
                    SuppressionStatus.ACTIVE if suppression.is_active(at)
                    else SuppressionStatus.EXPIRED
                )
                return SuppressionMatch(status, suppression)
        return NO_MATCH

    def is_suppressed(self, finding: Finding, at: datetime) -> SuppressionStatus:
        return self.match(finding, at).status

    def expired_at(self, at: datetime) -> list[Suppression]:
        """Suppressions that have lapsed and need re-review."""
        return [s for s in self._suppressions if not s.is_active(at)]

    @classmethod
    def from_list(cls, entries: list[dict[str, Any]]) -> "SuppressionRegistry":
        if not isinstance(entries, list):
            raise ConfigError("Suppressions must be a list of entries")
        suppressions = []
        for entry in entries:
            if not isinstance(entry, dict):
                raise ConfigError(f"Invalid suppression entry: {entry!r}")
            suppressions.append(Suppression.from_dict(entry))
        return cls(suppressions)

    @classmethod
    def load(cls, path: Path) -> "SuppressionRegistry":
        """Load suppressions from a YAML file. A missing file means no suppressions."""
        if not path.exists():
            logger.debug("No suppression file at %s", path)
            return cls()

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"Cannot read suppression file {path}: {exc}") from exc

        entries = data.get("suppressions", []) if isinstance(data, dict) else data
        registry = cls.from_list(entries or [])
        logger.info("Loaded %d suppression(s) from %s", len(registry), path)
        return registry


def generate_example_suppressions() -> str:
    """Generate an example .pipegate-suppressions.yaml file content."""
    return """\
# PipeGate suppressions
# Each entry exempts matching findings from failing the gate until it expires.
# Expired entries are reported as "expired - needs re-review".
suppressions: []
#  - id: CVE-2021-44228
#    component: "log4j-core@2.14.*"
#    expires: 2025-09-10
#    justification: "JNDI lookups disabled via log4j2.formatMsgNoLookups"
"""
