"""
PipeGate Container Scanner

Scans the built container image with Trivy and maps every reported
vulnerability onto a Finding. Trivy is run with ``--format json`` and
its report is read from standard output.
"""

from __future__ import annotations

from typing import Any, List, Optional

from pipegate.core.finding import Component, Finding, Severity
from pipegate.core.scanner import BaseScanner, objects

# Preferred CVSS sources, most authoritative first
CVSS_SOURCES = ("nvd", "redhat", "ghsa")


class ContainerScanner(BaseScanner):
    """
    Runs Trivy against a container image.
    """

    name = "container"

    def parse(self, text: str) -> List[Finding]:
        findings: List[Finding] = []
        data = self._load_json(text)

        for result_obj in objects(data.get("Results")):
            for vuln in objects(result_obj.get("Vulnerabilities")):
                vuln_id = vuln.get("VulnerabilityID", "UNKNOWN")
                pkg = vuln.get("PkgName", "unknown")
                installed = vuln.get("InstalledVersion") or None
                fixed = vuln.get("FixedVersion", "")
                title = vuln.get("Title") or vuln.get("Description") or f"Vulnerability in {pkg}"

                description = title
                if fixed:
                    description += f" (fixed in {fixed})"

                findings.append(
                    Finding(
                        id=vuln_id,
                        component=Component(pkg, installed),
                        description=description,
                        cvss=self._cvss_score(vuln.get("CVSS")),
                        severity=self._severity(vuln),
                        scanner=self.name,
                    )
                )

        return findings

    @staticmethod
    def _cvss_score(cvss: Any) -> Optional[float]:
        """Pick a CVSS v3 base score, falling back to any source that has one."""
        if not isinstance(cvss, dict):
            return None
        sources = [cvss[s] for s in CVSS_SOURCES if s in cvss]
        sources += [v for k, v in cvss.items() if k not in CVSS_SOURCES]
        for source in sources:
            if not isinstance(source, dict):
                continue
            for field in ("V3Score", "V2Score"):
                score = source.get(field)
                if isinstance(score, (int, float)):
                    return float(score)
        return None

    @staticmethod
    def _severity(vuln: dict[str, Any]) -> Severity:
        try:
            return Severity.from_string(str(vuln.get("Severity") or "UNKNOWN"))
        except ValueError:
            return Severity.LOW
