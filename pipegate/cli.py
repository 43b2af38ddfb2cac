"""
PipeGate CLI

Command-line interface for the build → scan → publish pipeline.

Commands:
    pipegate run                    - Execute the full pipeline
    pipegate validate-config        - Resolve configuration and report problems
    pipegate explain-gate FINDINGS  - Evaluate a findings file against the gate
    pipegate init                   - Create default config & suppression files

Exit status: 0 success, 1 policy failure, 2 configuration error,
3 external tool error.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

import click


def _safe_echo(text: str = "", **kwargs) -> None:
    """Echo text, handling Unicode issues on Windows consoles."""
    try:
        click.echo(text, **kwargs)
    except UnicodeEncodeError:
        safe = text.encode(sys.stdout.encoding or "utf-8", errors="replace").decode(
            sys.stdout.encoding or "utf-8", errors="replace"
        )
        click.echo(safe, **kwargs)

from pipegate import __version__
from pipegate.core.config import (
    CONFIG_FILENAME,
    PipelineConfig,
    generate_default_config,
    load_config,
)
from pipegate.core.errors import (
    EXIT_CONFIG_ERROR,
    EXIT_POLICY_FAILURE,
    EXIT_SUCCESS,
    ConfigError,
)
from pipegate.integrations.github import (
    emit_annotations,
    is_github_actions,
    resolve_branch,
    resolve_commit,
    write_step_summary,
)
from pipegate.integrations.webhook import notify
from pipegate.pipeline.runner import PipelineRunner, utcnow
from pipegate.pipeline.stages import build_pipeline
from pipegate.policy.gate import GatePolicy, Verdict
from pipegate.policy.suppressions import (
    SuppressionRegistry,
    generate_example_suppressions,
    parse_expiry,
)
from pipegate.reporting.console import ConsoleReporter
from pipegate.reporting.json_reporter import JSONReporter
from pipegate.scanners.native import FINDINGS_FORMATS, load_findings

logger = logging.getLogger(__name__)


def config_options(func):
    """Options shared by every command that resolves configuration."""
    func = click.option("--suppressions", "suppressions_path", type=click.Path(), default=None,
                        help="Suppression file (overrides suppressions.file).")(func)
    func = click.option("--set", "overrides", multiple=True, metavar="KEY=VALUE",
                        help="Override a configuration key (highest precedence).")(func)
    func = click.option("--config", "config_path", type=click.Path(), default=None,
                        help=f"Path to the key=value configuration file (default: {CONFIG_FILENAME}).")(func)
    return func


def output_options(func):
    func = click.option("--output", "-o", "output_file", type=click.Path(), default=None,
                        help="Write a JSON report to a file.")(func)
    func = click.option("--format", "-f", "output_format", type=click.Choice(["console", "json"]),
                        default="console", help="Output format (default: console).")(func)
    return func


@click.group()
@click.version_option(version=__version__, prog_name="PipeGate")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """
    PipeGate - Build, scan and publish pipeline orchestrator

    Build the project, run static analysis, dependency and container scans,
    gate the results against policy and suppressions, then publish.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


# ═══════════════════════════════════════════════════════
#  pipegate run
# ═══════════════════════════════════════════════════════
@cli.command()
@config_options
@output_options
@click.option("--commit", default=None, help="Commit identity (default: GITHUB_SHA or git HEAD).")
@click.option("--branch", default=None, help="Branch name (default: GITHUB_REF_NAME or git).")
@click.option("--ci", is_flag=True, help="Enable CI mode (GitHub Actions annotations, etc.).")
def run(
    config_path: Optional[str],
    overrides: tuple,
    suppressions_path: Optional[str],
    output_format: str,
    output_file: Optional[str],
    commit: Optional[str],
    branch: Optional[str],
    ci: bool,
) -> None:
    """Execute the full pipeline.

    Examples:

        pipegate run

        pipegate run --set publish.target=registry.example.com/app --format json

        pipegate run --commit $GITHUB_SHA --branch main --ci
    """
    try:
        config = _load(config_path, overrides)
        registry = _load_registry(config, suppressions_path)
        commit = resolve_commit(commit)
        branch = resolve_branch(branch)
        graph = build_pipeline(config, commit, branch)
    except ConfigError as exc:
        _config_error(exc)

    runner = PipelineRunner(graph, config, GatePolicy(registry), commit=commit, branch=branch)
    report = runner.run()

    target = str(config.workdir.resolve())
    json_reporter = JSONReporter(target=target)
    if output_format == "json":
        json_str = json_reporter.report(report, output_file=output_file)
        if not output_file:
            _safe_echo(json_str)
    else:
        ConsoleReporter(target=target).report(report)
        if output_file:
            json_reporter.report(report, output_file=output_file)

    # ── CI integrations ──
    if ci or is_github_actions():
        emit_annotations(report)
        write_step_summary(report)

    webhook = config.get("notify.webhook")
    if webhook:
        notify(webhook, json_reporter.build(report))

    sys.exit(report.exit_code)


# ═══════════════════════════════════════════════════════
#  pipegate validate-config
# ═══════════════════════════════════════════════════════
@cli.command("validate-config")
@config_options
def validate_config(
    config_path: Optional[str],
    overrides: tuple,
    suppressions_path: Optional[str],
) -> None:
    """Resolve configuration and suppressions without running any stage."""
    try:
        config = _load(config_path, overrides)
        registry = _load_registry(config, suppressions_path)
    except ConfigError as exc:
        _config_error(exc)

    _safe_echo(click.style("  Resolved configuration:", fg="bright_white", bold=True))
    for name, value in config.to_dict().items():
        _safe_echo(click.style(f"    {name} = ", fg="white") + click.style(str(value), fg="cyan"))

    _safe_echo("")
    _safe_echo(click.style(f"  Suppressions: {len(registry)} loaded", fg="bright_white", bold=True))
    for suppression in registry.expired_at(utcnow()):
        _safe_echo(click.style(
            f"    [!] {suppression.id_pattern} ({suppression.component_pattern}) "
            f"expired {suppression.expires.date().isoformat()} - needs re-review",
            fg="yellow",
        ))

    for warning in config.warnings:
        _safe_echo(click.style(f"  [!] {warning}", fg="yellow"))

    _safe_echo("")
    _safe_echo(click.style("  [OK] Configuration is valid", fg="green", bold=True))
    sys.exit(EXIT_SUCCESS)


# ═══════════════════════════════════════════════════════
#  pipegate explain-gate
# ═══════════════════════════════════════════════════════
@cli.command("explain-gate")
@click.argument("findings_file", type=click.Path())
@config_options
@output_options
@click.option("--input-format", "input_format", type=click.Choice(FINDINGS_FORMATS),
              default="native", help="Format of the findings file.")
@click.option("--at", "at", default=None,
              help="Evaluate suppressions at this ISO 8601 date or time (default: now).")
def explain_gate(
    findings_file: str,
    config_path: Optional[str],
    overrides: tuple,
    suppressions_path: Optional[str],
    output_format: str,
    output_file: Optional[str],
    input_format: str,
    at: Optional[str],
) -> None:
    """Print the gate decision for a findings file without running the pipeline.

    Example:

        pipegate explain-gate trivy.json --input-format trivy --at 2025-10-01
    """
    try:
        config = _load(config_path, overrides, check_required=False)
        registry = _load_registry(config, suppressions_path)
        findings = load_findings(Path(findings_file), input_format)
        instant = parse_expiry(at) if at else utcnow()
    except ConfigError as exc:
        _config_error(exc)

    decision = GatePolicy(registry).evaluate(findings, config, instant)
    expired = registry.expired_at(instant)

    json_reporter = JSONReporter(target=findings_file)
    if output_format == "json":
        json_str = json_reporter.report_decision(decision, expired, output_file=output_file)
        if not output_file:
            _safe_echo(json_str)
    else:
        ConsoleReporter(target=findings_file).report_decision(decision, expired)
        if output_file:
            json_reporter.report_decision(decision, expired, output_file=output_file)

    sys.exit(EXIT_POLICY_FAILURE if decision.verdict is Verdict.FAIL else EXIT_SUCCESS)


# ═══════════════════════════════════════════════════════
#  pipegate init
# ═══════════════════════════════════════════════════════
@cli.command()
@click.option("--path", "-p", "target_path", type=click.Path(), default=".",
              help="Directory to create config files in.")
def init(target_path: str) -> None:
    """Create default .pipegate.conf and suppression file."""
    target = Path(target_path).resolve()
    target.mkdir(parents=True, exist_ok=True)

    for file_path, content in (
        (target / CONFIG_FILENAME, generate_default_config()),
        (target / ".pipegate-suppressions.yaml", generate_example_suppressions()),
    ):
        if file_path.exists():
            _safe_echo(click.style(f"  [!] {file_path} already exists, skipping.", fg="yellow"))
        else:
            file_path.write_text(content, encoding="utf-8")
            _safe_echo(click.style(f"  [+] Created {file_path}", fg="green"))

    _safe_echo("")
    _safe_echo("  Set publish.target (or PIPEGATE_PUBLISH_TARGET) before running.")
    _safe_echo("  Run 'pipegate validate-config' to check the configuration.")


# ── Helpers ──

def _load(config_path: Optional[str], overrides: tuple, check_required: bool = True) -> PipelineConfig:
    return load_config(
        Path(config_path) if config_path else None,
        overrides=list(overrides),
        check_required=check_required,
    )


def _load_registry(config: PipelineConfig, suppressions_path: Optional[str]) -> SuppressionRegistry:
    path = Path(suppressions_path) if suppressions_path else Path(config["suppressions.file"])
    if suppressions_path is None and not path.is_absolute():
        path = config.workdir / path
    if suppressions_path is not None and not path.exists():
        raise ConfigError(f"Suppression file {path} does not exist")
    return SuppressionRegistry.load(path)


def _config_error(exc: ConfigError) -> None:
    _safe_echo(click.style(f"  [X] Configuration error: {exc}", fg="red"), err=True)
    sys.exit(EXIT_CONFIG_ERROR)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
