"""
matching.py - Match Decision

Turns a raw comparison score from the reader into a verdict and a
normalised confidence.  The score is a distance: 0 is identical, larger is
less similar.

    is_match   = score <= threshold
    confidence = clamp(1 - min(score, threshold) / threshold, 0, 1)

Pure functions, no state, no I/O.
"""

from dataclasses import dataclass

from kiosk.config import DEFAULT_MATCH_THRESHOLD

MATCH_THRESHOLD = DEFAULT_MATCH_THRESHOLD


@dataclass(frozen=True)
class MatchDecision:
    is_match: bool
    confidence: float
    score: int

    @property
    def percent(self) -> int:
        return int(round(self.confidence * 100))


def confidence_for(raw_score: int, threshold: int = MATCH_THRESHOLD) -> float:
    if threshold <= 0:
        raise ValueError(f"threshold must be positive, got {threshold}")
    if raw_score < 0:
        raise ValueError(f"raw score must be non-negative, got {raw_score}")
    confidence = 1.0 - min(raw_score, threshold) / float(threshold)
    return max(0.0, min(1.0, confidence))


def decide(raw_score: int, threshold: int = MATCH_THRESHOLD) -> MatchDecision:
    confidence = confidence_for(raw_score, threshold)
    return MatchDecision(
        is_match=raw_score <= threshold,
        confidence=confidence,
        score=raw_score,
    )
