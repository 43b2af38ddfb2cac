"""
PipeGate Dependency Scanner

Runs OWASP Dependency-Check and reads its JSON report
(``-Dformat=JSON``). Each vulnerability of each dependency becomes a
Finding; the component coordinate comes from the dependency's package URL
when the report has one, otherwise from the file name.
"""

from __future__ import annotations

from typing import Any, List, Optional
from urllib.parse import unquote

from pipegate.core.finding import Component, Finding, Severity
from pipegate.core.scanner import BaseScanner, objects


def component_from_purl(purl: str) -> Optional[Component]:
    """
    Parse a package URL such as ``pkg:maven/org.apache.logging.log4j/log4j-core@2.14.1``.

    Maven coordinates are joined as group:artifact, other ecosystems keep
    their namespace/name path.
    """
    if not purl.startswith("pkg:"):
        return None
    body = purl[4:].split("?", 1)[0].split("#", 1)[0]
    kind, _, path = body.partition("/")
    if not path:
        return None

    name_path, sep, version = path.rpartition("@")
    if not sep:
        name_path, version = path, ""
    segments = [unquote(s) for s in name_path.split("/") if s]
    separator = ":" if kind == "maven" else "/"
    return Component(separator.join(segments), unquote(version) or None)


class DependencyScanner(BaseScanner):
    """
    Reads OWASP Dependency-Check results for the project's dependencies.
    """

    name = "dependency"

    def parse(self, text: str) -> List[Finding]:
        findings: List[Finding] = []
        data = self._load_json(text)

        for dependency in objects(data.get("dependencies")):
            vulns = objects(dependency.get("vulnerabilities"))
            if not vulns:
                continue

            component = self._component(dependency)
            for vuln in vulns:
                findings.append(
                    Finding(
                        id=vuln.get("name", "UNKNOWN"),
                        component=component,
                        description=self._summary(vuln.get("description") or ""),
                        cvss=self._cvss_score(vuln),
                        severity=self._severity(vuln),
                        scanner=self.name,
                    )
                )

        return findings

    @staticmethod
    def _component(dependency: dict[str, Any]) -> Component:
        for package in objects(dependency.get("packages")):
            component = component_from_purl(str(package.get("id", "")))
            if component is not None:
                return component
        return Component(dependency.get("fileName", "unknown"))

    @staticmethod
    def _cvss_score(vuln: dict[str, Any]) -> Optional[float]:
        for key, field in (("cvssv3", "baseScore"), ("cvssv2", "score")):
            metrics = vuln.get(key)
            score = metrics.get(field) if isinstance(metrics, dict) else None
            if isinstance(score, (int, float)):
                return float(score)
        return None

    @staticmethod
    def _severity(vuln: dict[str, Any]) -> Severity:
        try:
            return Severity.from_string(str(vuln.get("severity") or "unknown"))
        except ValueError:
            return Severity.LOW

    @staticmethod
    def _summary(description: Any) -> str:
        lines = str(description).strip().splitlines()
        return lines[0] if lines else ""
