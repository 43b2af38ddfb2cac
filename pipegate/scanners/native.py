"""
PipeGate findings files

Loads a findings set from disk for ``pipegate explain-gate``. Besides the
raw reports of the supported scanners, a native format is accepted
(JSON or YAML):

    findings:
      - id: CVE-2024-1234
        cvss: 8.7
        component: "jackson-databind@2.13.0"
        description: "Deserialization of untrusted data"
      - id: java:S2076
        severity: high
        component: {name: src/main/java/App.java}
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, List

import yaml

from pipegate.core.errors import ConfigError, StageExecutionError
from pipegate.core.finding import Component, Finding, Severity
from pipegate.scanners.dependencies import DependencyScanner
from pipegate.scanners.docker import ContainerScanner
from pipegate.scanners.static import StaticAnalysisScanner

FINDINGS_FORMATS = ("native", "trivy", "dependency-check", "sarif")

_REPORT_PARSERS = {
    "trivy": ContainerScanner,
    "dependency-check": DependencyScanner,
    "sarif": StaticAnalysisScanner,
}


def finding_from_dict(data: dict[str, Any]) -> Finding:
    """Build a Finding from one native entry."""
    if not isinstance(data, dict) or not data.get("id"):
        raise ConfigError(f"Finding entry without an id: {data!r}")

    raw_component = data.get("component") or "unknown"
    if isinstance(raw_component, dict):
        component = Component(
            str(raw_component.get("name", "unknown")),
            str(raw_component["version"]) if raw_component.get("version") else None,
        )
    else:
        component = Component.parse(str(raw_component))

    try:
        cvss = float(data["cvss"]) if data.get("cvss") is not None else None
        severity = Severity.from_string(str(data["severity"])) if data.get("severity") else None
        return Finding(
            id=str(data["id"]),
            component=component,
            description=str(data.get("description", "")),
            cvss=cvss,
            severity=severity,
            scanner=str(data.get("scanner", "")),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid finding {data.get('id')!r}: {exc}") from exc


def parse_findings(text: str, fmt: str = "native") -> List[Finding]:
    """Parse findings text in one of FINDINGS_FORMATS."""
    if fmt in _REPORT_PARSERS:
        parser = _REPORT_PARSERS[fmt](command="", workdir=Path("."))
        try:
            return parser.parse_report(text)
        except StageExecutionError as exc:
            raise ConfigError(str(exc)) from exc

    if fmt != "native":
        raise ConfigError(f"Unknown findings format {fmt!r}")

    try:
        data = yaml.safe_load(text) or []
    except yaml.YAMLError as exc:
        raise ConfigError(f"Cannot parse findings: {exc}") from exc

    entries = data.get("findings", []) if isinstance(data, dict) else data
    if not isinstance(entries, list):
        raise ConfigError("Findings must be a list")
    return [finding_from_dict(entry) for entry in entries]


def load_findings(path: Path, fmt: str = "native") -> List[Finding]:
    """Read and parse a findings file."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read findings file {path}: {exc}") from exc
    return parse_findings(text, fmt)
