"""
PipeGate Configuration Management

Resolves a PipelineConfig snapshot from three layers, lowest to highest
precedence:

1. Built-in defaults
2. A key=value configuration file (.pipegate.conf)
3. Injected overrides: PIPEGATE_* environment variables, then --set options

Unknown keys, malformed lines and unparseable values are ignored with a
warning. Only a missing required key or an unreadable file is fatal.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional, Sequence

from pipegate.core.errors import ConfigError
from pipegate.core.finding import Severity

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".pipegate.conf"
ENV_PREFIX = "PIPEGATE_"

TAG_STRATEGIES = ("immutable", "floating")
FAILURE_MODES = ("hard", "soft")
SCANNERS = ("static", "dependency", "container")


# ── Value parsers ──

def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("true", "yes", "on", "1"):
        return True
    if lowered in ("false", "no", "off", "0"):
        return False
    raise ValueError(f"expected a boolean, got {value!r}")


def _parse_str(value: str) -> str:
    return value.strip()


def _parse_optional_str(value: str) -> Optional[str]:
    return value.strip() or None


def _parse_cvss(value: str) -> float:
    score = float(value)
    if not 0.0 <= score <= 10.0:
        raise ValueError(f"CVSS threshold must be within 0-10, got {score}")
    return score


def _parse_severity(value: str) -> Optional[Severity]:
    if not value.strip():
        return None
    return Severity.from_string(value)


def _parse_seconds(value: str) -> Optional[float]:
    if not value.strip():
        return None
    seconds = float(value)
    if seconds <= 0:
        raise ValueError(f"timeout must be positive, got {seconds}")
    return seconds


def _parse_positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise ValueError(f"expected a positive integer, got {number}")
    return number


def _parse_list(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _choice(*choices: str) -> Callable[[str], str]:
    def parse(value: str) -> str:
        lowered = value.strip().lower()
        if lowered not in choices:
            raise ValueError(f"expected one of {', '.join(choices)}, got {value!r}")
        return lowered
    return parse


@dataclass(frozen=True)
class ConfigKey:
    name: str
    parse: Callable[[str], Any]
    default: Any = None
    required: bool = False
    secret: bool = False

    @property
    def env_name(self) -> str:
        return ENV_PREFIX + self.name.upper().replace(".", "_").replace("-", "_")


KNOWN_KEYS: tuple[ConfigKey, ...] = (
    ConfigKey("workdir", _parse_str, "."),
    # Build
    ConfigKey("build.command", _parse_str,
              "mvn --batch-mode --errors --fail-at-end --show-version clean verify"),
    ConfigKey("build.artifact", _parse_str, "target/*.jar"),
    ConfigKey("build.timeout", _parse_seconds),
    ConfigKey("image.name", _parse_optional_str),
    ConfigKey("image.command", _parse_optional_str),
    # Scanners
    ConfigKey("scan.static.enabled", _parse_bool, True),
    ConfigKey("scan.static.command", _parse_str,
              "semgrep scan --config auto --sarif --output {report}"),
    ConfigKey("scan.static.report", _parse_str, "target/static-analysis.sarif"),
    ConfigKey("scan.static.failure_mode", _choice(*FAILURE_MODES), "hard"),
    ConfigKey("scan.static.timeout", _parse_seconds),
    ConfigKey("scan.dependency.enabled", _parse_bool, True),
    ConfigKey("scan.dependency.command", _parse_str,
              "mvn org.owasp:dependency-check-maven:check -Dformat=JSON -Dfailbuild=false"),
    ConfigKey("scan.dependency.report", _parse_str, "target/dependency-check-report.json"),
    ConfigKey("scan.dependency.failure_mode", _choice(*FAILURE_MODES), "hard"),
    ConfigKey("scan.dependency.timeout", _parse_seconds),
    ConfigKey("scan.container.enabled", _parse_bool, True),
    ConfigKey("scan.container.command", _parse_str,
              "trivy image --format json --quiet --scanners vuln {image}"),
    ConfigKey("scan.container.failure_mode", _choice(*FAILURE_MODES), "soft"),
    ConfigKey("scan.container.timeout", _parse_seconds),
    # Gate
    ConfigKey("gate.fail_cvss", _parse_cvss, 7.0),
    ConfigKey("gate.fail_severity", _parse_severity),
    ConfigKey("gate.report_severity", _parse_severity, Severity.MEDIUM),
    # Tagging
    ConfigKey("tag.strategy", _choice(*TAG_STRATEGIES), "immutable"),
    ConfigKey("tag.floating_label", _parse_str, "latest"),
    ConfigKey("tag.protected_branches", _parse_list, ("main",)),
    ConfigKey("tag.length", _parse_positive_int, 7),
    # Publish
    ConfigKey("publish.enabled", _parse_bool, True),
    ConfigKey("publish.target", _parse_optional_str, required=True),
    ConfigKey("publish.prepare_command", _parse_optional_str, "docker tag {source} {reference}"),
    ConfigKey("publish.command", _parse_str, "docker push {reference}"),
    ConfigKey("publish.timeout", _parse_seconds),
    # Misc
    ConfigKey("stage.timeout", _parse_seconds, 1800.0),
    ConfigKey("suppressions.file", _parse_str, ".pipegate-suppressions.yaml"),
    ConfigKey("notify.webhook", _parse_optional_str, secret=True),
)

KEYS_BY_NAME = {key.name: key for key in KNOWN_KEYS}
KEYS_BY_ENV = {key.env_name: key for key in KNOWN_KEYS}
SECRET_KEYS = frozenset(key.name for key in KNOWN_KEYS if key.secret)

DEFAULTS: Mapping[str, Any] = MappingProxyType({key.name: key.default for key in KNOWN_KEYS})


@dataclass(frozen=True, eq=False)
class PipelineConfig:
    """Immutable, resolved configuration shared by every stage of a run."""

    values: Mapping[str, Any]
    warnings: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def __getitem__(self, key: str) -> Any:
        return self.values[key]

    def get(self, key: str, default: Any = None) -> Any:
        value = self.values.get(key)
        return default if value is None else value

    def scanner_enabled(self, scanner: str) -> bool:
        return bool(self.values[f"scan.{scanner}.enabled"])

    def timeout_for(self, prefix: str) -> float:
        """Wall-clock budget for a stage, falling back to stage.timeout."""
        return self.get(f"{prefix}.timeout", self.values["stage.timeout"])

    @property
    def fail_cvss(self) -> float:
        return self.values["gate.fail_cvss"]

    @property
    def fail_severity(self) -> Severity:
        return self.get("gate.fail_severity") or Severity.from_cvss(self.fail_cvss)

    @property
    def report_severity(self) -> Severity:
        return self.get("gate.report_severity", Severity.MEDIUM)

    @property
    def workdir(self) -> Path:
        return Path(self.values["workdir"])

    def to_dict(self, redact: bool = True) -> dict[str, Any]:
        """Plain, JSON-friendly view of the snapshot."""
        result: dict[str, Any] = {}
        for name in sorted(self.values):
            value = self.values[name]
            if redact and value is not None and name in SECRET_KEYS:
                value = "********"
            elif isinstance(value, Severity):
                value = value.value
            elif isinstance(value, tuple):
                value = list(value)
            result[name] = value
        return result


class ConfigResolver:
    """Merges configuration layers into one PipelineConfig."""

    def resolve(
        self,
        defaults: Optional[Mapping[str, Any]] = None,
        file_overrides: Optional[Mapping[str, str]] = None,
        secret_overrides: Optional[Mapping[str, str]] = None,
        warnings: Sequence[str] = (),
        check_required: bool = True,
    ) -> PipelineConfig:
        """
        Merge the layers and validate required keys.

        Args:
            defaults: Typed default values (DEFAULTS when omitted).
            file_overrides: Raw string values parsed from the key=value file.
            secret_overrides: Raw string values that always win.
            warnings: Warnings already collected while reading the sources.
            check_required: Raise when a required key is missing.

        Returns:
            The resolved PipelineConfig.

        Raises:
            ConfigError: A required key is still missing after the merge.
        """
        collected = list(warnings)
        merged = dict(DEFAULTS if defaults is None else defaults)

        for layer_name, layer in (("file", file_overrides), ("override", secret_overrides)):
            for name, raw in (layer or {}).items():
                key = KEYS_BY_NAME.get(name)
                if key is None:
                    collected.append(f"{layer_name}: unknown key '{name}' ignored")
                    continue
                try:
                    merged[name] = key.parse(raw)
                except ValueError as exc:
                    collected.append(f"{layer_name}: invalid value for '{name}' ignored ({exc})")

        missing = [key.name for key in KNOWN_KEYS if key.required and merged.get(key.name) is None]
        if missing and check_required:
            raise ConfigError(f"Missing required configuration key(s): {', '.join(missing)}")

        for warning in collected:
            logger.warning(warning)

        return PipelineConfig(values=merged, warnings=tuple(collected))


def parse_key_values(text: str, source: str = "<config>") -> tuple[dict[str, str], list[str]]:
    """
    Parse key=value text.

    Comments (#) and blank lines are skipped. Lines without '=' or with an
    empty key are reported as warnings. The last occurrence of a key wins.
    """
    values: dict[str, str] = {}
    warnings: list[str] = []

    for line_no, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue

        name, sep, value = line.partition("=")
        name = name.strip()
        if not sep or not name:
            warnings.append(f"{source}:{line_no}: malformed line ignored: {line!r}")
            continue

        values[name] = value.strip()

    return values, warnings


def overrides_from_env(environ: Mapping[str, str]) -> tuple[dict[str, str], list[str]]:
    """Pick PIPEGATE_* variables out of an environment mapping."""
    values: dict[str, str] = {}
    warnings: list[str] = []
    for env_name in sorted(environ):
        if not env_name.startswith(ENV_PREFIX):
            continue
        key = KEYS_BY_ENV.get(env_name)
        if key is None:
            warnings.append(f"environment: unknown variable '{env_name}' ignored")
            continue
        values[key.name] = environ[env_name]
    return values, warnings


def parse_set_options(options: Sequence[str]) -> dict[str, str]:
    """Parse repeated --set key=value command-line options."""
    values: dict[str, str] = {}
    for option in options:
        name, sep, value = option.partition("=")
        if not sep or not name.strip():
            raise ConfigError(f"Invalid --set value {option!r}, expected key=value")
        values[name.strip()] = value.strip()
    return values


def load_config(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    overrides: Sequence[str] = (),
    check_required: bool = True,
) -> PipelineConfig:
    """
    Load configuration from a key=value file, the environment and --set options.

    An explicitly given file must exist; the default .pipegate.conf in the
    current directory is optional.
    """
    explicit = config_path is not None
    path = config_path or Path.cwd() / CONFIG_FILENAME

    file_values: dict[str, str] = {}
    warnings: list[str] = []
    if path.exists() or explicit:
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigError(f"Cannot read configuration file {path}: {exc}") from exc
        file_values, warnings = parse_key_values(text, source=str(path))

    env_values, env_warnings = overrides_from_env(os.environ if environ is None else environ)
    warnings.extend(env_warnings)
    secret_values = {**env_values, **parse_set_options(overrides)}

    return ConfigResolver().resolve(
        DEFAULTS, file_values, secret_values, warnings=warnings, check_required=check_required
    )


def generate_default_config() -> str:
    """Generate a default .pipegate.conf file content."""
    return """\
# PipeGate configuration
# One key = value per line. Lines starting with # are comments.
# PIPEGATE_<KEY> environment variables and --set key=value override this file.

# Build
build.command = mvn --batch-mode --errors --fail-at-end --show-version clean verify
build.artifact = target/*.jar
# image.name = naming-server-service
# image.command = docker build -t {image} .

# Security scans
scan.static.enabled = true
scan.static.command = semgrep scan --config auto --sarif --output {report}
scan.static.report = target/static-analysis.sarif

scan.dependency.enabled = true
scan.dependency.report = target/dependency-check-report.json

scan.container.enabled = true
scan.container.failure_mode = soft

# Gate: findings at or above the fail threshold break the pipeline,
# findings at or above the report severity produce warnings.
gate.fail_cvss = 7.0
gate.report_severity = medium

# Tagging: immutable (short commit id) or floating (constant label)
tag.strategy = immutable
tag.floating_label = latest
tag.protected_branches = main

# Publish (required; usually injected as PIPEGATE_PUBLISH_TARGET)
# publish.target = 123456789012.dkr.ecr.us-east-1.amazonaws.com/naming-server-service
publish.prepare_command = docker tag {source} {reference}
publish.command = docker push {reference}

stage.timeout = 1800
suppressions.file = .pipegate-suppressions.yaml
"""
