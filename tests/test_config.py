"""
Tests for Configuration Resolution
"""

from pathlib import Path

import pytest

from pipegate.core.config import (
    DEFAULTS,
    ConfigResolver,
    generate_default_config,
    load_config,
    overrides_from_env,
    parse_key_values,
    parse_set_options,
)
from pipegate.core.errors import ConfigError
from pipegate.core.finding import Severity


class TestParseKeyValues:
    """Tests for the key=value source parser."""

    def test_comments_and_blank_lines_ignored(self):
        """Test comments and blank lines produce nothing."""
        values, warnings = parse_key_values("# comment\n\n   \n  # indented comment\n")

        assert values == {}
        assert warnings == []

    def test_parse_values(self):
        """Test key=value lines are parsed and stripped."""
        values, warnings = parse_key_values(
            "build.command = mvn clean verify\ngate.fail_cvss=9.0\n"
        )

        assert values == {"build.command": "mvn clean verify", "gate.fail_cvss": "9.0"}
        assert warnings == []

    def test_value_may_contain_equals(self):
        """Test only the first '=' separates key from value."""
        values, _ = parse_key_values("build.command = mvn -Dsonar.login=abc verify")

        assert values["build.command"] == "mvn -Dsonar.login=abc verify"

    def test_malformed_lines_warn(self):
        """Test lines without '=' or without a key are reported."""
        values, warnings = parse_key_values("not a setting\n= orphan value\ntag.strategy=floating")

        assert values == {"tag.strategy": "floating"}
        assert len(warnings) == 2
        assert ":1:" in warnings[0]
        assert ":2:" in warnings[1]


class TestConfigResolver:
    """Tests for ConfigResolver layering."""

    def test_defaults_only_requires_target(self):
        """Test a missing publish target is a configuration error."""
        with pytest.raises(ConfigError, match="publish.target"):
            ConfigResolver().resolve(DEFAULTS, {}, {})

    def test_required_check_can_be_skipped(self):
        """Test resolution without the required check."""
        config = ConfigResolver().resolve(DEFAULTS, {}, {}, check_required=False)

        assert config.get("publish.target") is None

    def test_precedence(self):
        """Test defaults < file < overrides."""
        config = ConfigResolver().resolve(
            DEFAULTS,
            {"gate.fail_cvss": "9.0", "tag.strategy": "floating", "publish.target": "file/repo"},
            {"publish.target": "secret/repo"},
        )

        assert config.fail_cvss == 9.0
        assert config["tag.strategy"] == "floating"
        assert config["publish.target"] == "secret/repo"
        assert config["build.artifact"] == DEFAULTS["build.artifact"]

    def test_unknown_keys_warn(self):
        """Test unknown keys are ignored with a warning."""
        config = ConfigResolver().resolve(
            DEFAULTS, {"sonar.projectKey": "svktek"}, {"publish.target": "repo"}
        )

        assert "sonar.projectKey" not in config.values
        assert any("sonar.projectKey" in w for w in config.warnings)

    def test_invalid_values_warn(self):
        """Test unparseable values keep the lower layer's value."""
        config = ConfigResolver().resolve(
            DEFAULTS,
            {"gate.fail_cvss": "eleven", "scan.static.enabled": "maybe"},
            {"publish.target": "repo", "tag.strategy": "rolling"},
        )

        assert config.fail_cvss == 7.0
        assert config.scanner_enabled("static") is True
        assert config["tag.strategy"] == "immutable"
        assert len(config.warnings) == 3

    def test_resolution_is_deterministic(self):
        """Test identical inputs resolve to identical snapshots."""
        layers = ({"gate.fail_cvss": "8.0"}, {"publish.target": "repo"})
        first = ConfigResolver().resolve(DEFAULTS, *layers)
        second = ConfigResolver().resolve(DEFAULTS, *layers)

        assert dict(first.values) == dict(second.values)

    def test_snapshot_is_immutable(self, config):
        """Test the resolved values cannot be mutated."""
        with pytest.raises(TypeError):
            config.values["gate.fail_cvss"] = 1.0
        with pytest.raises(AttributeError):
            config.values = {}

    def test_fail_severity_derived_from_cvss(self, make_config):
        """Test the ordinal fail threshold follows the CVSS threshold by default."""
        assert make_config(gate__fail_cvss="9.0").fail_severity == Severity.CRITICAL
        assert make_config(gate__fail_cvss="7.0").fail_severity == Severity.HIGH
        assert make_config(gate__fail_cvss="9.0", gate__fail_severity="medium").fail_severity \
            == Severity.MEDIUM

    def test_stage_timeouts(self, make_config):
        """Test per-stage timeouts fall back to stage.timeout."""
        config = make_config(stage__timeout="600", build__timeout="60")

        assert config.timeout_for("build") == 60.0
        assert config.timeout_for("publish") == 600.0

    def test_protected_branches_list(self, make_config):
        """Test comma lists are parsed into tuples."""
        config = make_config(tag__protected_branches="main, release ,")

        assert config["tag.protected_branches"] == ("main", "release")

    def test_to_dict_redacts_secrets(self, make_config):
        """Test secret values are masked in the plain view."""
        config = make_config(notify__webhook="https://hooks.example.com/T000/B000/xyz")

        data = config.to_dict()
        assert data["notify.webhook"] == "********"
        assert data["gate.report_severity"] == "medium"
        assert config.to_dict(redact=False)["notify.webhook"].startswith("https://")


class TestOverrides:
    """Tests for environment and --set overrides."""

    def test_env_overrides(self):
        """Test PIPEGATE_* variables map onto keys."""
        values, warnings = overrides_from_env({
            "PIPEGATE_PUBLISH_TARGET": "ecr/repo",
            "PIPEGATE_SCAN_CONTAINER_ENABLED": "false",
            "PIPEGATE_NOPE": "x",
            "HOME": "/root",
        })

        assert values == {"publish.target": "ecr/repo", "scan.container.enabled": "false"}
        assert len(warnings) == 1

    def test_set_options(self):
        """Test --set parsing."""
        assert parse_set_options(["a.b=1", "c = two"]) == {"a.b": "1", "c": "two"}

    def test_set_option_malformed(self):
        """Test a --set value without '=' is a configuration error."""
        with pytest.raises(ConfigError):
            parse_set_options(["publish.target"])


class TestLoadConfig:
    """Tests for load_config."""

    def test_load_file_env_and_set(self, temp_dir: Path):
        """Test all layers are merged with --set winning."""
        path = temp_dir / "pipegate.conf"
        path.write_text(
            "# pipeline\n"
            "publish.target = file/repo\n"
            "gate.fail_cvss = 9.0\n"
            "tag.strategy = floating\n"
        )

        config = load_config(
            path,
            environ={"PIPEGATE_PUBLISH_TARGET": "env/repo", "PIPEGATE_TAG_STRATEGY": "immutable"},
            overrides=["publish.target=cli/repo"],
        )

        assert config["publish.target"] == "cli/repo"
        assert config["tag.strategy"] == "immutable"
        assert config.fail_cvss == 9.0

    def test_explicit_missing_file(self, temp_dir: Path):
        """Test an explicitly named file must exist."""
        with pytest.raises(ConfigError, match="Cannot read"):
            load_config(temp_dir / "missing.conf", environ={})

    def test_default_config_parses_cleanly(self, temp_dir: Path):
        """Test the generated default file has no malformed or unknown lines."""
        path = temp_dir / ".pipegate.conf"
        path.write_text(generate_default_config())

        config = load_config(path, environ={"PIPEGATE_PUBLISH_TARGET": "repo"})

        assert config.warnings == ()
        assert config["scan.container.failure_mode"] == "soft"
