"""
PipeGate Artifact Tagger

Derives publish tags for the build output:
- immutable: short commit id, same commit always gives the same tag
- floating: a constant label (e.g. "latest") that is overwritten on every publish

A floating tag is never published alone from a protected branch; the
immutable tag is always published next to it so every image stays
traceable to a commit.
"""

from __future__ import annotations

import re
from typing import Sequence

from pipegate.core.config import PipelineConfig
from pipegate.core.errors import ConfigError

IMMUTABLE = "immutable"
FLOATING = "floating"

_COMMIT_RE = re.compile(r"^[0-9a-f]{4,64}$")


class ArtifactTagger:
    def __init__(
        self,
        floating_label: str = "latest",
        length: int = 7,
        protected_branches: Sequence[str] = ("main",),
    ) -> None:
        self.floating_label = floating_label
        self.length = length
        self.protected_branches = tuple(protected_branches)

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "ArtifactTagger":
        return cls(
            floating_label=config["tag.floating_label"],
            length=config["tag.length"],
            protected_branches=config["tag.protected_branches"],
        )

    def tag(self, commit: str, strategy: str) -> str:
        """Compute a single tag. Pure: no clock, no external state."""
        if strategy == FLOATING:
            return self.floating_label
        if strategy == IMMUTABLE:
            normalized = commit.strip().lower()
            if not _COMMIT_RE.match(normalized):
                raise ConfigError(f"Invalid commit identity {commit!r}")
            return normalized[: self.length]
        raise ConfigError(f"Unknown tag strategy {strategy!r}")

    def tags_for(self, commit: str, strategy: str, branch: str = "") -> list[str]:
        """Tags to publish, dual-tagging floating publishes from protected branches."""
        if strategy == FLOATING and branch in self.protected_branches:
            return [self.tag(commit, IMMUTABLE), self.tag(commit, FLOATING)]
        return [self.tag(commit, strategy)]
