"""
Pytest Configuration and Fixtures

Shared fixtures for PipeGate tests.
"""

import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Generator

import pytest

from pipegate.core.config import DEFAULTS, ConfigResolver, PipelineConfig
from pipegate.core.finding import Component, Finding, Severity
from pipegate.policy.suppressions import Suppression, SuppressionRegistry, parse_expiry


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def make_config() -> Callable[..., PipelineConfig]:
    """Build a resolved configuration from raw key=value overrides."""

    def factory(**overrides: str) -> PipelineConfig:
        values = {"publish.target": "registry.example.com/naming-server-service"}
        values.update({key.replace("__", "."): value for key, value in overrides.items()})
        return ConfigResolver().resolve(DEFAULTS, {}, values)

    return factory


@pytest.fixture
def config(make_config) -> PipelineConfig:
    """Create a default configuration with a publish target."""
    return make_config()


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    instant = datetime(2025, 7, 1, 12, 0, tzinfo=timezone.utc)
    return lambda: instant


@pytest.fixture
def log4j_finding() -> Finding:
    """Create a sample critical dependency finding."""
    return Finding(
        id="CVE-2021-44228",
        component=Component("org.apache.logging.log4j:log4j-core", "2.14.1"),
        description="Apache Log4j2 JNDI features do not protect against attacker controlled LDAP",
        cvss=10.0,
        severity=Severity.CRITICAL,
        scanner="dependency",
    )


@pytest.fixture
def sample_findings() -> list[Finding]:
    """A spread of findings across scanners and severities."""
    return [
        Finding(
            id="CVE-2022-42003",
            component=Component("com.fasterxml.jackson.core:jackson-databind", "2.13.0"),
            description="Resource exhaustion via deep wrapper array nesting",
            cvss=7.5,
            scanner="dependency",
        ),
        Finding(
            id="CVE-2023-0464",
            component=Component("openssl", "3.0.2"),
            description="Excessive resource use verifying policy constraints",
            severity=Severity.MEDIUM,
            scanner="container",
        ),
        Finding(
            id="java:S2076",
            component=Component("src/main/java/App.java"),
            description="OS commands should not be vulnerable to injection",
            severity=Severity.LOW,
            scanner="static",
        ),
    ]


@pytest.fixture
def suppression_factory() -> Callable[..., Suppression]:
    def factory(
        id_pattern: str = "CVE-2021-44228",
        component_pattern: str = "org.apache.logging.log4j:log4j-core",
        expires: str = "2025-09-10",
        justification: str = "JNDI lookups disabled",
    ) -> Suppression:
        return Suppression(id_pattern, component_pattern, parse_expiry(expires), justification)

    return factory


@pytest.fixture
def registry(suppression_factory) -> SuppressionRegistry:
    return SuppressionRegistry([suppression_factory()])


@pytest.fixture
def suppressions_file(temp_dir: Path) -> Path:
    """Create a test suppression file."""
    path = temp_dir / "suppressions.yaml"
    path.write_text('''
suppressions:
  - id: CVE-2021-44228
    component: "org.apache.logging.log4j:log4j-core@2.14.*"
    expires: 2025-09-10
    justification: "JNDI lookups disabled via log4j2.formatMsgNoLookups"

  - id: "CVE-2020-*"
    component: "openssl"
    expires: 2024-01-31
    justification: "Base image upgrade scheduled"
''')
    return path
