"""
PipeGate Standard Pipeline

Declares the stages of the build → scan → publish pipeline:

    build ─────────────────────────┐
      └┄┄▶ container-scan ─────────┤
    static-analysis ───────────────┼── publish
    dependency-scan ───────────────┘

(┄┄▶ waits for the stage without requiring its success)

Static analysis and the dependency scan read the sources, so they run
alongside the build. The container scan waits for the build (ordering
only) and fails on its own terms when no image came out of it. Publish
hard-depends on the build and on every scan stage, so a gate violation
anywhere keeps the artifact from being pushed.
"""

from __future__ import annotations

import glob
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Sequence

from pipegate.core.config import PipelineConfig
from pipegate.core.errors import StageExecutionError
from pipegate.core.scanner import BaseScanner
from pipegate.core.stage import Artifact, FailureMode, Stage, StageContext, StageOutput
from pipegate.core.tools import render_command, run_tool
from pipegate.pipeline.graph import StageGraph
from pipegate.pipeline.tagger import ArtifactTagger
from pipegate.scanners.dependencies import DependencyScanner
from pipegate.scanners.docker import ContainerScanner
from pipegate.scanners.static import StaticAnalysisScanner

logger = logging.getLogger(__name__)

STAGE_BUILD = "build"
STAGE_STATIC = "static-analysis"
STAGE_DEPENDENCY = "dependency-scan"
STAGE_CONTAINER = "container-scan"
STAGE_PUBLISH = "publish"

SCAN_STAGES = (STAGE_STATIC, STAGE_DEPENDENCY, STAGE_CONTAINER)

ARTIFACT_BUILD = "build"
ARTIFACT_IMAGE = "image"
ARTIFACT_PUBLISHED = "published"


class Publisher(ABC):
    """Pushes a build output to a destination. Registry protocols live outside PipeGate."""

    @abstractmethod
    def push(self, source: Artifact, reference: str, timeout: Optional[float] = None) -> None:
        raise NotImplementedError


class CommandPublisher(Publisher):
    """Publishes by running the configured commands (docker tag + docker push by default)."""

    def __init__(self, command: str, workdir: Path, prepare_command: Optional[str] = None) -> None:
        self.command = command
        self.prepare_command = prepare_command
        self.workdir = workdir

    def push(self, source: Artifact, reference: str, timeout: Optional[float] = None) -> None:
        values = {"source": source.reference, "reference": reference}
        if self.prepare_command:
            run_tool(render_command(self.prepare_command, **values), cwd=self.workdir, timeout=timeout)
        run_tool(render_command(self.command, **values), cwd=self.workdir, timeout=timeout)
        logger.info("Published %s", reference)


def _build_action(config: PipelineConfig):
    workdir = config.workdir

    def build(context: StageContext) -> StageOutput:
        run_tool(config["build.command"], cwd=workdir, timeout=context.remaining())

        pattern = config["build.artifact"]
        matches = sorted(glob.glob(str(workdir / pattern)))
        if not matches:
            raise StageExecutionError(f"Build produced no artifact matching {pattern}")
        artifacts = [Artifact(ARTIFACT_BUILD, str(Path(matches[0]).relative_to(workdir)))]

        image = config.get("image.name")
        image_command = config.get("image.command")
        if image and image_command:
            run_tool(render_command(image_command, image=image, artifact=artifacts[0].reference),
                     cwd=workdir, timeout=context.remaining())
            artifacts.append(Artifact(ARTIFACT_IMAGE, image))

        return StageOutput(artifacts=artifacts)

    return build


def _scan_action(scanner: BaseScanner, needs_image: bool = False):
    def scan(context: StageContext) -> StageOutput:
        placeholders = {}
        image = context.artifact(ARTIFACT_IMAGE)
        if image is not None:
            placeholders["image"] = image.reference
        elif needs_image:
            raise StageExecutionError("No image to scan: the build produced no image")
        findings = scanner.scan(timeout=context.remaining(), **placeholders)
        logger.info("%s reported %d finding(s)", scanner.name, len(findings))
        return StageOutput(findings=findings)

    return scan


def _publish_action(config: PipelineConfig, publisher: Publisher, tags: Sequence[str]):
    target = config["publish.target"]

    def publish(context: StageContext) -> StageOutput:
        source = context.artifact(ARTIFACT_IMAGE) or context.artifact(ARTIFACT_BUILD)
        if source is None:
            raise StageExecutionError("Nothing to publish: the build produced no artifact")
        for tag in tags:
            publisher.push(source, f"{target}:{tag}", timeout=context.remaining())
        return StageOutput(artifacts=[Artifact(ARTIFACT_PUBLISHED, target, tuple(tags))])

    return publish


def build_pipeline(
    config: PipelineConfig,
    commit: str,
    branch: str = "",
    publisher: Optional[Publisher] = None,
) -> StageGraph:
    """
    Declare the standard stages for a resolved configuration.

    Publish tags are computed here, before any stage runs, so an invalid
    commit identity is reported as a configuration error.
    """
    workdir = config.workdir
    has_image = bool(config.get("image.name") and config.get("image.command"))

    scanners = {
        STAGE_STATIC: StaticAnalysisScanner(
            config["scan.static.command"], workdir, config["scan.static.report"]
        ),
        STAGE_DEPENDENCY: DependencyScanner(
            config["scan.dependency.command"], workdir, config["scan.dependency.report"]
        ),
        STAGE_CONTAINER: ContainerScanner(config["scan.container.command"], workdir),
    }

    stages = [
        Stage(
            id=STAGE_BUILD,
            action=_build_action(config),
            timeout=config.timeout_for("build"),
        )
    ]
    for stage_id, scanner in scanners.items():
        is_container = stage_id == STAGE_CONTAINER
        enabled = config.scanner_enabled(scanner.name)
        if is_container:
            enabled = enabled and has_image
        stages.append(
            Stage(
                id=stage_id,
                action=_scan_action(scanner, needs_image=is_container),
                after=(STAGE_BUILD,) if is_container else (),
                enabled=enabled,
                failure_mode=FailureMode(config[f"scan.{scanner.name}.failure_mode"]),
                gated=True,
                timeout=config.timeout_for(f"scan.{scanner.name}"),
            )
        )

    tags: list[str] = []
    if config["publish.enabled"]:
        tagger = ArtifactTagger.from_config(config)
        tags = tagger.tags_for(commit, config["tag.strategy"], branch)
    publisher = publisher or CommandPublisher(
        config["publish.command"], workdir, config.get("publish.prepare_command")
    )
    stages.append(
        Stage(
            id=STAGE_PUBLISH,
            action=_publish_action(config, publisher, tags),
            dependencies=(STAGE_BUILD, *SCAN_STAGES),
            enabled=config["publish.enabled"],
            timeout=config.timeout_for("publish"),
        )
    )

    return StageGraph(stages)
