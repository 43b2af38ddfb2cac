"""
Tests for the Artifact Tagger
"""

import pytest

from pipegate.core.errors import ConfigError
from pipegate.pipeline.tagger import FLOATING, IMMUTABLE, ArtifactTagger

COMMIT = "3f9a2c1e8b7d6054a1b2c3d4e5f60718293a4b5c"


class TestArtifactTagger:
    """Tests for tag derivation."""

    def test_immutable_is_short_commit(self):
        assert ArtifactTagger().tag(COMMIT, IMMUTABLE) == "3f9a2c1"

    def test_immutable_is_stable(self):
        """Test the same commit always yields the same tag."""
        tagger = ArtifactTagger(length=12)

        assert tagger.tag(COMMIT.upper(), IMMUTABLE) == tagger.tag(COMMIT, IMMUTABLE) == "3f9a2c1e8b7d"

    def test_floating_label(self):
        assert ArtifactTagger(floating_label="edge").tag(COMMIT, FLOATING) == "edge"

    def test_invalid_commit(self):
        with pytest.raises(ConfigError):
            ArtifactTagger().tag("", IMMUTABLE)
        with pytest.raises(ConfigError):
            ArtifactTagger().tag("not-a-sha", IMMUTABLE)

    def test_unknown_strategy(self):
        with pytest.raises(ConfigError):
            ArtifactTagger().tag(COMMIT, "semver")

    def test_floating_on_protected_branch_is_dual_tagged(self):
        tagger = ArtifactTagger(protected_branches=("main", "release"))

        assert tagger.tags_for(COMMIT, FLOATING, "main") == ["3f9a2c1", "latest"]
        assert tagger.tags_for(COMMIT, FLOATING, "feature/login") == ["latest"]
        assert tagger.tags_for(COMMIT, IMMUTABLE, "main") == ["3f9a2c1"]

    def test_from_config(self, make_config):
        config = make_config(
            tag__floating_label="stable", tag__length="10", tag__protected_branches="prod"
        )
        tagger = ArtifactTagger.from_config(config)

        assert tagger.tags_for(COMMIT, FLOATING, "prod") == ["3f9a2c1e8b", "stable"]
