"""Unit tests for confidence scoring."""
import pytest

from supportline.services.routing.models import ConfidenceBucket
from supportline.services.routing.scoring import ConfidenceScorer, PatternConfig, bucket_for


class TestBuckets:
    """Test bucket thresholds."""

    @pytest.mark.parametrize(
        "confidence,bucket",
        [
            (1.0, ConfidenceBucket.HIGH),
            (0.7, ConfidenceBucket.HIGH),
            (0.69, ConfidenceBucket.MEDIUM),
            (0.4, ConfidenceBucket.MEDIUM),
            (0.39, ConfidenceBucket.LOW),
            (0.3, ConfidenceBucket.LOW),
            (0.29, ConfidenceBucket.NON_FACTUAL),
            (0.0, ConfidenceBucket.NON_FACTUAL),
        ],
    )
    def test_bucket_for(self, confidence, bucket):
        assert bucket_for(confidence) == bucket


class TestScoring:
    """Test scoring against the bundled pattern table."""

    def test_shelter_with_location_is_high(self, scorer):
        result = scorer.score("shelter near Austin")
        assert result.bucket == ConfidenceBucket.HIGH
        assert result.top_category == "shelter"
        assert scorer.requires_location(result)

    def test_where_question_is_medium(self, scorer):
        result = scorer.score("where can I find legal help")
        assert result.bucket == ConfidenceBucket.MEDIUM
        assert result.top_category == "location"

    def test_definition_question_is_low(self, scorer):
        result = scorer.score("what is a safety plan")
        assert result.bucket == ConfidenceBucket.LOW
        assert not scorer.requires_location(result)

    def test_conversational_utterance_is_non_factual(self, scorer):
        result = scorer.score("I feel really scared tonight")
        assert result.bucket == ConfidenceBucket.NON_FACTUAL
        assert result.confidence == 0.0
        assert result.matched_patterns == []

    def test_scoring_is_case_and_whitespace_insensitive(self, scorer):
        assert scorer.score("  SHELTER NEAR AUSTIN ").confidence == scorer.score("shelter near austin").confidence

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "   ",
            "where where where find find shelter shelter domestic violence safe house near me",
            "emergency shelter near me domestic violence shelter safe house refuge sanctuary haven",
            "!!!???",
            "a" * 5000,
        ],
    )
    def test_confidence_is_clamped(self, scorer, text):
        result = scorer.score(text)
        assert 0.0 <= result.confidence <= 1.0

    def test_matched_patterns_report_weights(self, scorer):
        result = scorer.score("shelter near Austin")
        assert any("keyword:shelter" in p for p in result.matched_patterns)
        assert all("(weight:" in p for p in result.matched_patterns)


class TestPatternConfig:
    """Test loading declarative pattern tables."""

    def test_from_dict(self):
        config = PatternConfig.from_dict(
            {
                "normalization": 4.0,
                "location_categories": ["clinic"],
                "categories": [{"category": "clinic", "weight": 3.0, "patterns": [r"\bclinic\b"]}],
                "keywords": [{"word": "counseling", "weight": 1.0}],
            }
        )
        scorer = ConfidenceScorer(config)

        result = scorer.score("free counseling clinic")
        assert result.raw_score == 4.0
        assert result.confidence == 1.0
        assert scorer.requires_location(result)

    def test_rejects_non_positive_normalization(self):
        with pytest.raises(ValueError):
            PatternConfig.from_dict({"normalization": 0})

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "patterns.yaml"
        path.write_text(
            "normalization: 2.0\n"
            "categories:\n"
            "  - category: legal\n"
            "    weight: 1.0\n"
            "    patterns:\n"
            "      - 'protective order'\n"
        )
        config = PatternConfig.load(str(path))
        assert config.normalization == 2.0
        assert ConfidenceScorer(config).score("how do I get a protective order").confidence == 0.5

    def test_bundled_table_has_follow_up_groups(self, pattern_config):
        assert set(pattern_config.follow_ups) >= {"reference", "details", "ordinal", "attribute"}
