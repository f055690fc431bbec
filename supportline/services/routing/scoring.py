"""Weighted-pattern confidence scoring."""
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Pattern

import yaml

from supportline.services.routing.cache import normalize_query
from supportline.services.routing.models import ConfidenceBucket

logger = logging.getLogger(__name__)

DEFAULT_PATTERNS_FILE = Path(__file__).parent / "data" / "routing_patterns.yaml"

HIGH_CONFIDENCE = 0.7
MEDIUM_CONFIDENCE = 0.4
LOW_CONFIDENCE = 0.3


@dataclass
class WeightedPattern:
    """One scoring rule: a regex or keyword with its category weight."""

    category: str
    weight: float
    pattern: Pattern
    label: str


@dataclass
class PatternConfig:
    """Declarative scoring and follow-up tables."""

    normalization: float
    rules: List[WeightedPattern]
    location_categories: List[str] = field(default_factory=list)
    follow_ups: Dict[str, List[Pattern]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "PatternConfig":
        rules: List[WeightedPattern] = []
        for entry in data.get("categories", []):
            category = entry["category"]
            weight = float(entry["weight"])
            for raw in entry.get("patterns", []):
                rules.append(
                    WeightedPattern(
                        category=category,
                        weight=weight,
                        pattern=re.compile(raw, re.IGNORECASE),
                        label=f"{category}:{raw}",
                    )
                )
        for entry in data.get("keywords", []):
            word = entry["word"].lower()
            rules.append(
                WeightedPattern(
                    category="keyword",
                    weight=float(entry["weight"]),
                    pattern=re.compile(rf"\b{re.escape(word)}", re.IGNORECASE),
                    label=f"keyword:{word}",
                )
            )

        follow_ups = {
            kind: [re.compile(raw, re.IGNORECASE) for raw in patterns]
            for kind, patterns in (data.get("follow_ups") or {}).items()
        }

        normalization = float(data.get("normalization", 8.0))
        if normalization <= 0:
            raise ValueError("normalization must be positive")

        return cls(
            normalization=normalization,
            rules=rules,
            location_categories=list(data.get("location_categories", [])),
            follow_ups=follow_ups,
        )

    @classmethod
    def load(cls, path: Optional[str] = None) -> "PatternConfig":
        """Load the pattern tables from YAML."""
        config_path = Path(path) if path else DEFAULT_PATTERNS_FILE
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
        config = cls.from_dict(data)
        logger.info(
            f"[SCORER] Loaded {len(config.rules)} weighted patterns from {config_path}"
        )
        return config


@dataclass
class ScoreResult:
    """Outcome of scoring one utterance."""

    confidence: float
    raw_score: float
    matched_patterns: List[str]
    matched_categories: List[str]

    @property
    def bucket(self) -> ConfidenceBucket:
        return bucket_for(self.confidence)

    @property
    def top_category(self) -> Optional[str]:
        """Category contributing the most weight, used as the turn's intent."""
        for category in self.matched_categories:
            if category not in ("keyword", "general"):
                return category
        return self.matched_categories[0] if self.matched_categories else None


def bucket_for(confidence: float) -> ConfidenceBucket:
    """Map a confidence value to its routing bucket."""
    if confidence >= HIGH_CONFIDENCE:
        return ConfidenceBucket.HIGH
    if confidence >= MEDIUM_CONFIDENCE:
        return ConfidenceBucket.MEDIUM
    if confidence >= LOW_CONFIDENCE:
        return ConfidenceBucket.LOW
    return ConfidenceBucket.NON_FACTUAL


class ConfidenceScorer:
    """Scores utterances against the weighted pattern table."""

    def __init__(self, config: PatternConfig):
        self.config = config

    def score(self, text: str) -> ScoreResult:
        normalized = normalize_query(text)
        if not normalized:
            return ScoreResult(confidence=0.0, raw_score=0.0, matched_patterns=[], matched_categories=[])

        raw_score = 0.0
        matched: List[str] = []
        category_weights: Dict[str, float] = {}
        for rule in self.config.rules:
            if rule.pattern.search(normalized):
                raw_score += rule.weight
                matched.append(f"{rule.label} (weight: {rule.weight})")
                category_weights[rule.category] = category_weights.get(rule.category, 0.0) + rule.weight

        confidence = min(max(raw_score / self.config.normalization, 0.0), 1.0)
        categories = sorted(category_weights, key=lambda c: category_weights[c], reverse=True)

        logger.debug(
            f"[SCORER] '{normalized}' - Score: {raw_score}, Confidence: {confidence:.2f}, "
            f"Matches: {matched}"
        )
        return ScoreResult(
            confidence=confidence,
            raw_score=raw_score,
            matched_patterns=matched,
            matched_categories=categories,
        )

    def requires_location(self, result: ScoreResult) -> bool:
        """True when the matched categories describe a place-based search."""
        return any(c in self.config.location_categories for c in result.matched_categories)
