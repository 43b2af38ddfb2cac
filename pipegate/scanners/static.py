"""
PipeGate Static Analysis Scanner

Reads SARIF 2.1.0 output from a static analyzer (Semgrep, CodeQL,
SonarQube exports, ...). The rule id becomes the finding id and the
analyzed file the component. A ``security-severity`` property on the
result or its rule is used as the numeric score; the SARIF level
(error / warning / note) gives the ordinal bucket.
"""

from __future__ import annotations

from typing import Any, List, Optional

from pipegate.core.finding import Component, Finding, Severity
from pipegate.core.scanner import BaseScanner, objects

# SARIF result level → severity bucket
LEVEL_MAP = {
    "error": Severity.HIGH,
    "warning": Severity.MEDIUM,
    "note": Severity.LOW,
    "none": Severity.LOW,
}


def _object(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


class StaticAnalysisScanner(BaseScanner):
    """
    Runs a static analyzer that writes a SARIF report.
    """

    name = "static"

    def parse(self, text: str) -> List[Finding]:
        findings: List[Finding] = []
        data = self._load_json(text)

        for run in objects(data.get("runs")):
            driver = _object(_object(run.get("tool")).get("driver"))
            rules = {rule.get("id"): rule for rule in objects(driver.get("rules"))}
            for result in objects(run.get("results")):
                rule_id = result.get("ruleId") or "unknown-rule"
                rule = rules.get(rule_id, {})
                level = result.get("level") or _object(rule.get("defaultConfiguration")).get(
                    "level", "warning"
                )

                findings.append(
                    Finding(
                        id=rule_id,
                        component=Component(self._location(result)),
                        description=str(_object(result.get("message")).get("text", "")),
                        cvss=self._security_severity(result, rule),
                        severity=LEVEL_MAP.get(level, Severity.MEDIUM),
                        scanner=self.name,
                    )
                )

        return findings

    @staticmethod
    def _location(result: dict[str, Any]) -> str:
        for location in objects(result.get("locations")):
            physical = _object(location.get("physicalLocation"))
            uri = _object(physical.get("artifactLocation")).get("uri")
            if isinstance(uri, str) and uri:
                return uri.replace("\\", "/")
        return "unknown"

    @staticmethod
    def _security_severity(result: dict[str, Any], rule: dict[str, Any]) -> Optional[float]:
        for props in (_object(result.get("properties")), _object(rule.get("properties"))):
            value = props.get("security-severity")
            if value is None:
                continue
            try:
                score = float(value)
            except (TypeError, ValueError):
                continue
            if 0.0 <= score <= 10.0:
                return score
        return None
