"""
PipeGate Finding Model

A Finding represents one issue reported by a scan stage: a vulnerability
in a dependency or container layer, or a static-analysis rule violation.
Severity is a numeric CVSS score, an ordinal bucket, or both.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def from_string(cls, value: str) -> "Severity":
        """Parse a severity from a string (case-insensitive, scanner aliases allowed)."""
        key = value.strip().lower()
        if key in SEVERITY_ALIASES:
            return SEVERITY_ALIASES[key]
        return cls(key)

    @classmethod
    def from_cvss(cls, score: float) -> "Severity":
        """Bucket a CVSS score onto the ordinal scale."""
        for severity in reversed(SEVERITY_ORDER):
            if score >= severity.cvss_floor:
                return severity
        return cls.LOW

    @property
    def rank(self) -> int:
        return SEVERITY_ORDER.index(self)

    @property
    def cvss_floor(self) -> float:
        """Lowest CVSS score that falls in this bucket."""
        return CVSS_FLOORS[self]

    def __ge__(self, other: "Severity") -> bool:
        return self.rank >= other.rank

    def __gt__(self, other: "Severity") -> bool:
        return self.rank > other.rank

    def __le__(self, other: "Severity") -> bool:
        return self.rank <= other.rank

    def __lt__(self, other: "Severity") -> bool:
        return self.rank < other.rank


SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]

CVSS_FLOORS = {
    Severity.LOW: 0.0,
    Severity.MEDIUM: 4.0,
    Severity.HIGH: 7.0,
    Severity.CRITICAL: 9.0,
}

# Names used by Trivy, Dependency-Check and SARIF producers
SEVERITY_ALIASES = {
    "info": Severity.LOW,
    "informational": Severity.LOW,
    "negligible": Severity.LOW,
    "unknown": Severity.LOW,
    "note": Severity.LOW,
    "moderate": Severity.MEDIUM,
    "warning": Severity.MEDIUM,
    "error": Severity.HIGH,
}


@dataclass(frozen=True)
class Component:
    name: str
    version: Optional[str] = None

    @property
    def coordinate(self) -> str:
        if self.version:
            return f"{self.name}@{self.version}"
        return self.name

    @classmethod
    def parse(cls, coordinate: str) -> "Component":
        """Parse a ``name@version`` coordinate."""
        name, sep, version = coordinate.rpartition("@")
        if not sep or not name:
            return cls(name=coordinate)
        return cls(name=name, version=version or None)

    def __str__(self) -> str:
        return self.coordinate


@dataclass(frozen=True)
class Finding:
    id: str
    component: Component
    description: str = ""
    cvss: Optional[float] = None
    severity: Optional[Severity] = None
    scanner: str = ""

    def __post_init__(self) -> None:
        if self.cvss is None and self.severity is None:
            raise ValueError(f"Finding {self.id} has neither a CVSS score nor a severity")
        if self.cvss is not None and not 0.0 <= self.cvss <= 10.0:
            raise ValueError(f"Finding {self.id} has CVSS {self.cvss} outside 0-10")

    @property
    def bucket(self) -> Severity:
        """Ordinal severity, derived from CVSS when the scanner gave none."""
        if self.severity is not None:
            return self.severity
        return Severity.from_cvss(self.cvss)

    @property
    def sort_key(self) -> tuple:
        return (self.id, self.component.coordinate, self.scanner)

    def display(self) -> str:
        """Human-readable output for console printing."""
        score = f"CVSS {self.cvss:.1f}" if self.cvss is not None else self.bucket.value
        parts = [
            f"[{score}] {self.id}",
            f"  Component: {self.component.coordinate}",
        ]
        if self.description:
            parts.append(f"  {self.description}")
        return "\n".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Convert finding to a dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "id": self.id,
            "severity": self.bucket.value,
            "component": {
                "name": self.component.name,
                "version": self.component.version,
            },
            "description": self.description,
        }
        if self.cvss is not None:
            result["cvss"] = self.cvss
        if self.scanner:
            result["scanner"] = self.scanner
        return result
