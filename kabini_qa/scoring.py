"""
Answer scoring heuristics and cost pricing.

Pure functions over question/answer/content text:
- analyze_sentiment: lexicon ratio, "Positive" / "Negative" / "Neutral"
- calculate_geo_score: blended GEO score (accuracy, coverage, structure,
  FAQ schema presence, crawler access)
- calculate_semantic_relevance: accuracy/GEO blend
- calculate_vector_similarity: term-frequency cosine similarity, 0-100
- calculate_cost: USD cost from token counts and a per-model price table
"""

from __future__ import annotations

import math
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

# =============================================================================
# Pricing
# =============================================================================

# USD per million tokens: (input, output)
MODEL_PRICING: dict[str, tuple[float, float]] = {
    # Google
    "gemini-pro": (0.50, 1.50),
    "gemini-1.5-flash": (0.075, 0.30),
    "gemini-1.5-pro": (1.25, 5.00),
    "gemini-2.0-flash": (0.10, 0.40),
    # OpenAI
    "gpt-4o": (2.50, 10.00),
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-3.5-turbo": (0.50, 1.50),
    # Anthropic
    "claude-3-5-sonnet-20241022": (3.00, 15.00),
    "claude-3-haiku-20240307": (0.25, 1.25),
    # Perplexity
    "sonar": (1.00, 1.00),
}

DEFAULT_PRICING_MODEL = "gemini-1.5-flash"


def calculate_cost(input_tokens: int, output_tokens: int, model: str) -> float:
    """Cost in USD; unknown models are priced as DEFAULT_PRICING_MODEL."""
    input_price, output_price = MODEL_PRICING.get(model, MODEL_PRICING[DEFAULT_PRICING_MODEL])
    return (input_tokens * input_price + output_tokens * output_price) / 1_000_000


# =============================================================================
# Sentiment
# =============================================================================

POSITIVE_WORDS = frozenset({
    "good", "great", "excellent", "amazing", "wonderful", "fantastic", "positive", "helpful",
    "useful", "clear", "effective", "beneficial", "advantageous", "superior", "quality",
    "reliable", "efficient", "powerful", "comprehensive", "detailed", "accurate",
    "professional", "innovative", "advanced", "secure", "fast", "easy", "simple",
    "convenient", "flexible", "scalable", "robust", "stable", "trusted", "proven",
    "leading", "premium", "exclusive", "modern", "intuitive", "seamless", "smooth",
    "responsive", "optimized", "enhanced", "improved", "upgraded", "streamlined",
})

NEGATIVE_WORDS = frozenset({
    "bad", "terrible", "awful", "horrible", "negative", "unclear", "confusing", "useless",
    "ineffective", "poor", "unreliable", "slow", "difficult", "complex", "outdated",
    "limited", "restrictive", "expensive", "risky", "unstable", "buggy", "glitchy",
    "broken", "faulty", "defective", "inferior", "substandard", "mediocre",
    "disappointing", "frustrating", "annoying", "problematic", "troublesome",
    "cumbersome", "clunky", "awkward", "unintuitive", "complicated", "overwhelming",
    "stressful",
})

# Business vocabulary counts at half weight
BUSINESS_POSITIVE = frozenset({
    "solution", "platform", "service", "product", "feature", "capability", "functionality",
    "performance", "reliability", "security", "support", "documentation", "integration",
    "automation", "optimization", "efficiency", "productivity", "growth", "success",
    "achievement", "innovation", "technology", "development", "improvement",
    "enhancement", "upgrade", "update", "maintenance", "monitoring", "analytics",
})

BUSINESS_NEGATIVE = frozenset({
    "issue", "problem", "error", "bug", "failure", "crash", "downtime", "outage",
    "disruption", "delay", "limitation", "constraint", "restriction", "barrier",
    "obstacle", "challenge", "difficulty", "complexity", "confusion", "uncertainty",
    "risk", "threat", "vulnerability", "weakness", "deficiency", "shortcoming",
    "drawback", "disadvantage", "inconvenience", "frustration",
})

SENTIMENT_THRESHOLD = 0.6


def analyze_sentiment(text: str) -> str:
    """Classify text as Positive, Negative or Neutral."""
    positive = 0.0
    negative = 0.0

    for word in text.lower().split():
        clean = re.sub(r"[^\w]", "", word)
        if len(clean) < 3:
            continue

        if clean in POSITIVE_WORDS:
            positive += 1
        elif clean in BUSINESS_POSITIVE:
            positive += 0.5

        if clean in NEGATIVE_WORDS:
            negative += 1
        elif clean in BUSINESS_NEGATIVE:
            negative += 0.5

    total = positive + negative
    if total == 0:
        return "Neutral"
    if positive / total > SENTIMENT_THRESHOLD:
        return "Positive"
    if negative / total > SENTIMENT_THRESHOLD:
        return "Negative"
    return "Neutral"


# =============================================================================
# GEO score
# =============================================================================

DEFAULT_QUESTION_CONFIDENCE = 85

_FAQ_SCHEMA = re.compile(r"@type['\"]?\s*[:=]\s*['\"]?FAQPage['\"]?", re.IGNORECASE)


@dataclass
class GeoScoreResult:
    """GEO score with its components."""

    geo_score: int
    breakdown: dict[str, Any] = field(default_factory=dict)


def _words(text: str, min_len: int) -> list[str]:
    return [w for w in re.split(r"\W+", text.lower()) if len(w) > min_len]


def question_similarity(first: str, second: str) -> float:
    """Jaccard similarity of the words longer than two characters."""
    words1 = _words(first, 2)
    words2 = _words(second, 2)
    union = set(words1) | set(words2)
    if not union:
        return 0.0
    intersection = [w for w in words1 if w in words2]
    return len(intersection) / len(union)


def _structure_score(answer: str, content: str) -> float:
    score = 0.0

    length = len(answer)
    if 50 <= length <= 500:
        score += 20
    elif 30 <= length <= 800:
        score += 15
    elif 20 <= length <= 1000:
        score += 10

    if re.search(r"^Q:|<h[1-6]>|<h[1-6] ", answer) or re.search(r"<h[1-6]>", content):
        score += 15
    if re.search(r"\n\s*[-*1.]", answer) or re.search(r"<ul>|<ol>", answer):
        score += 15

    sentences = [s for s in re.split(r"[.!?]", answer) if s.strip()]
    words = answer.split()
    avg_sentence_len = len(words) / len(sentences) if sentences else 0
    if 10 <= avg_sentence_len <= 25:
        score += 25
    elif 8 <= avg_sentence_len <= 30:
        score += 20
    elif 5 <= avg_sentence_len <= 35:
        score += 15

    organization = 0
    if re.search(r"first|second|third|finally|in conclusion|to summarize", answer, re.IGNORECASE):
        organization += 10
    if re.search(r"however|but|although|while|on the other hand", answer, re.IGNORECASE):
        organization += 5
    if re.search(r"for example|such as|including|specifically", answer, re.IGNORECASE):
        organization += 5
    if re.search(r"therefore|thus|as a result|consequently", answer, re.IGNORECASE):
        organization += 5
    score += min(organization, 25)

    return min(score, 100)


def calculate_geo_score(
    accuracy: float,
    question: str,
    answer: str,
    important_questions: list[str],
    content: str,
    confidences: list[float] | None = None,
    accessible: bool = True,
) -> GeoScoreResult:
    """
    GEO score = 0.4*accuracy + 0.2*coverage + 0.2*structure
                + 10*schema + 10*access.

    Coverage is the confidence-weighted similarity of the question to every
    important question. Crawler access is supplied by the caller; nothing
    here touches the network.
    """
    coverage = 0.0
    if important_questions:
        total = 0.0
        for i, important in enumerate(important_questions):
            if confidences is not None:
                confidence = confidences[i] if i < len(confidences) else 0
            else:
                confidence = DEFAULT_QUESTION_CONFIDENCE
            total += confidence * question_similarity(question, important) / 100
        coverage = total / len(important_questions) * 100

    structure = _structure_score(answer, content)
    schema = 1 if (_FAQ_SCHEMA.search(answer) or _FAQ_SCHEMA.search(content)) else 0
    access = 1 if accessible else 0

    geo = 0.4 * accuracy + 0.2 * coverage + 0.2 * structure + 0.1 * schema * 100 + 0.1 * access * 100
    return GeoScoreResult(
        geo_score=round(geo),
        breakdown={
            "accuracy": accuracy,
            "coverage": coverage,
            "structure": structure,
            "schema": schema,
            "access": access,
        },
    )


def calculate_semantic_relevance(accuracy: float, geo_score: float) -> int:
    return round(accuracy * 0.8 + geo_score * 0.2)


# =============================================================================
# Vector similarity
# =============================================================================


def _term_vector(text: str) -> Counter[str]:
    return Counter(_words(text, 2))


def calculate_vector_similarity(text: str, content: str) -> float | None:
    """
    Cosine similarity of term-frequency vectors, as a percentage.

    Returns None when either side has no terms.
    """
    a = _term_vector(text)
    b = _term_vector(content)
    if not a or not b:
        return None
    dot = sum(count * b[term] for term, count in a.items())
    norm = math.sqrt(sum(c * c for c in a.values())) * math.sqrt(sum(c * c for c in b.values()))
    return round(dot / norm * 100, 1)


def parse_score(value: Any) -> float:
    """Parse a remote score ("85", 85, None) to a float, 0 on failure."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


__all__ = [
    "MODEL_PRICING",
    "DEFAULT_PRICING_MODEL",
    "calculate_cost",
    "analyze_sentiment",
    "GeoScoreResult",
    "question_similarity",
    "calculate_geo_score",
    "calculate_semantic_relevance",
    "calculate_vector_similarity",
    "parse_score",
]
