"""
Tests for the Suppression Registry
"""

from datetime import date, datetime, timezone
from pathlib import Path

import pytest

from pipegate.core.errors import ConfigError
from pipegate.core.finding import Component, Finding, Severity
from pipegate.policy.suppressions import (
    Suppression,
    SuppressionRegistry,
    SuppressionStatus,
    generate_example_suppressions,
    parse_expiry,
)


def _at(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestParseExpiry:
    """Tests for expiry parsing."""

    def test_bare_date_is_midnight_utc(self):
        assert parse_expiry("2025-09-10") == _at(2025, 9, 10)

    def test_yaml_date_object(self):
        """Test PyYAML date values are accepted."""
        assert parse_expiry(date(2025, 9, 10)) == _at(2025, 9, 10)

    def test_timestamp_with_offset_normalized(self):
        assert parse_expiry("2025-09-10T02:00:00+02:00") == _at(2025, 9, 10)
        assert parse_expiry("2025-09-10T00:00:00Z") == _at(2025, 9, 10)

    def test_invalid(self):
        with pytest.raises(ConfigError):
            parse_expiry("next tuesday")
        with pytest.raises(ConfigError):
            parse_expiry(42)


class TestSuppressionMatching:
    """Tests for pattern matching and expiry."""

    def test_exact_match_on_name(self, suppression_factory, log4j_finding):
        """Test a component pattern without '@' ignores the version."""
        assert suppression_factory().matches(log4j_finding)

    def test_glob_on_coordinate(self, suppression_factory, log4j_finding):
        suppression = suppression_factory(
            id_pattern="CVE-2021-*",
            component_pattern="org.apache.logging.log4j:log4j-core@2.14.*",
        )
        assert suppression.matches(log4j_finding)

        patched = Finding(
            id="CVE-2021-44228",
            component=Component("org.apache.logging.log4j:log4j-core", "2.17.1"),
            cvss=10.0,
        )
        assert not suppression.matches(patched)

    def test_identifier_must_match(self, suppression_factory, log4j_finding):
        assert not suppression_factory(id_pattern="CVE-2021-45046").matches(log4j_finding)

    def test_expiry_is_half_open(self, suppression_factory):
        """Test a suppression is active before its expiry and expired at it."""
        suppression = suppression_factory(expires="2025-09-10")

        assert suppression.is_active(_at(2025, 9, 9, 23, 59, 59))
        assert not suppression.is_active(_at(2025, 9, 10))
        assert not suppression.is_active(_at(2025, 10, 1))


class TestSuppressionRegistry:
    """Tests for SuppressionRegistry."""

    def test_statuses(self, registry, log4j_finding, sample_findings):
        assert registry.is_suppressed(log4j_finding, _at(2025, 7, 1)) is SuppressionStatus.ACTIVE
        assert registry.is_suppressed(log4j_finding, _at(2025, 10, 1)) is SuppressionStatus.EXPIRED
        assert registry.is_suppressed(sample_findings[0], _at(2025, 7, 1)) is SuppressionStatus.NONE

    def test_most_specific_wins(self, suppression_factory, log4j_finding):
        """Test the exact component pattern beats a broader glob regardless of order."""
        broad = suppression_factory(id_pattern="*", component_pattern="org.apache.*",
                                    expires="2030-01-01", justification="broad")
        narrow = suppression_factory(expires="2025-01-01", justification="narrow")

        for entries in ([broad, narrow], [narrow, broad]):
            match = SuppressionRegistry(entries).match(log4j_finding, _at(2025, 7, 1))
            assert match.suppression is narrow
            assert match.status is SuppressionStatus.EXPIRED

    def test_earliest_expiry_breaks_ties(self, suppression_factory, log4j_finding):
        later = suppression_factory(expires="2026-01-01")
        sooner = suppression_factory(expires="2025-12-01")

        match = SuppressionRegistry([later, sooner]).match(log4j_finding, _at(2025, 7, 1))
        assert match.suppression is sooner

    def test_expired_at(self, suppressions_file: Path):
        registry = SuppressionRegistry.load(suppressions_file)

        assert len(registry) == 2
        assert [s.id_pattern for s in registry.expired_at(_at(2025, 7, 1))] == ["CVE-2020-*"]
        assert len(registry.expired_at(_at(2025, 9, 10))) == 2

    def test_load_file(self, suppressions_file: Path, log4j_finding):
        registry = SuppressionRegistry.load(suppressions_file)

        match = registry.match(log4j_finding, _at(2025, 7, 1))
        assert match.status is SuppressionStatus.ACTIVE
        assert "formatMsgNoLookups" in match.suppression.justification

    def test_load_missing_file(self, temp_dir: Path):
        assert len(SuppressionRegistry.load(temp_dir / "none.yaml")) == 0

    def test_load_top_level_list(self, temp_dir: Path):
        path = temp_dir / "list.yaml"
        path.write_text(
            "- id: CVE-2023-0464\n"
            "  component: openssl\n"
            "  expires: 2025-12-31\n"
            "  justification: not reachable\n"
        )
        assert len(SuppressionRegistry.load(path)) == 1

    def test_missing_fields(self, temp_dir: Path):
        path = temp_dir / "bad.yaml"
        path.write_text("suppressions:\n  - id: CVE-2023-0464\n    component: openssl\n")

        with pytest.raises(ConfigError, match="expires, justification"):
            SuppressionRegistry.load(path)

    def test_invalid_yaml(self, temp_dir: Path):
        path = temp_dir / "broken.yaml"
        path.write_text("suppressions: [unclosed\n")

        with pytest.raises(ConfigError):
            SuppressionRegistry.load(path)

    def test_example_file_loads(self, temp_dir: Path):
        path = temp_dir / ".pipegate-suppressions.yaml"
        path.write_text(generate_example_suppressions())

        assert len(SuppressionRegistry.load(path)) == 0

    def test_round_trip_dict(self, suppression_factory):
        suppression = suppression_factory()
        assert Suppression.from_dict(suppression.to_dict()) == suppression


class TestSeverity:
    """Tests for the severity scale used by suppressions and the gate."""

    def test_ordering(self):
        assert Severity.LOW < Severity.MEDIUM < Severity.HIGH < Severity.CRITICAL

    def test_from_cvss(self):
        assert Severity.from_cvss(0.0) == Severity.LOW
        assert Severity.from_cvss(4.0) == Severity.MEDIUM
        assert Severity.from_cvss(8.7) == Severity.HIGH
        assert Severity.from_cvss(9.0) == Severity.CRITICAL

    def test_aliases(self):
        assert Severity.from_string("UNKNOWN") == Severity.LOW
        assert Severity.from_string("Moderate") == Severity.MEDIUM
        with pytest.raises(ValueError):
            Severity.from_string("catastrophic")

    def test_finding_requires_score(self):
        with pytest.raises(ValueError):
            Finding(id="X", component=Component("lib"))
        with pytest.raises(ValueError):
            Finding(id="X", component=Component("lib"), cvss=11.0)
