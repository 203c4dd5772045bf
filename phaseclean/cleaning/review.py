"""Heuristic final quality review.

HEURISTIC APPROACH:
- Start from a neutral base score
- Adjust for word preservation, with looser limits for content types
  that legitimately lose a lot of apparatus (citations, notes, index)
- Penalize residual noise the earlier phases should have removed
"""

import re
from dataclasses import dataclass, field

import structlog

from phaseclean.models.document import WorkingDocument
from phaseclean.models.enums import ContentType, Severity

logger = structlog.get_logger(__name__)

BASE_QUALITY = 0.7

# (critical below, good at or above) word preservation
APPARATUS_HEAVY_PRESERVATION = (0.35, 0.60)
DEFAULT_PRESERVATION = (0.50, 0.80)

_RESIDUAL_NOISE = [
    re.compile(r"^\s*\d{1,4}\s*$"),
    re.compile(r"^\s*Page\s+\d+(?:\s+of\s+\d+)?\s*$", re.IGNORECASE),
    re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\u200b\ufeff\ufffd]"),
]


@dataclass
class ReviewFinding:
    """One issue found by the review."""
    category: str
    severity: Severity
    description: str


@dataclass
class ReviewAssessment:
    """Result of the final quality review (AI or heuristic)."""
    quality_score: float
    confidence: float
    findings: list[ReviewFinding] = field(default_factory=list)
    summary: str = ""
    method: str = "heuristic"

    @property
    def critical_findings(self) -> list[ReviewFinding]:
        return [f for f in self.findings if f.severity == Severity.CRITICAL]


def preservation_limits(content_type: ContentType) -> tuple[float, float]:
    if content_type.is_apparatus_heavy:
        return APPARATUS_HEAVY_PRESERVATION
    return DEFAULT_PRESERVATION


def review_heuristic(
    document: WorkingDocument,
    original_word_count: int,
    content_type: ContentType,
) -> ReviewAssessment:
    """Score the cleaned document without an AI model.

    Args:
        document: Cleaned document.
        original_word_count: Words in the original document.
        content_type: Effective content type of the run.

    Returns:
        ReviewAssessment with method="heuristic".
    """
    findings: list[ReviewFinding] = []
    score = BASE_QUALITY
    final_words = document.word_count

    if final_words == 0:
        findings.append(ReviewFinding(
            category="content_loss",
            severity=Severity.CRITICAL,
            description="Cleaned document is empty",
        ))
        return ReviewAssessment(quality_score=0.0, confidence=0.9, findings=findings, summary="Empty output")

    preservation = final_words / original_word_count if original_word_count else 1.0
    critical_below, good_at = preservation_limits(content_type)
    if preservation < critical_below:
        score -= 0.3
        findings.append(ReviewFinding(
            category="content_loss",
            severity=Severity.CRITICAL,
            description=f"Only {preservation:.0%} of words preserved (expected at least {critical_below:.0%})",
        ))
    elif preservation < good_at:
        score -= 0.1
        findings.append(ReviewFinding(
            category="content_loss",
            severity=Severity.WARNING,
            description=f"{preservation:.0%} of words preserved (typical is {good_at:.0%} or more)",
        ))
    else:
        score += 0.1

    residual = sum(
        1 for line in document.lines
        if any(pattern.search(line.text) for pattern in _RESIDUAL_NOISE)
    )
    if residual > 5:
        score -= 0.05 if residual <= 20 else 0.1
        findings.append(ReviewFinding(
            category="residual_noise",
            severity=Severity.WARNING,
            description=f"{residual} lines still look like page numbers or control characters",
        ))

    score = max(0.0, min(1.0, score))
    summary = f"Heuristic review: {preservation:.0%} preservation, {len(findings)} issue(s)"
    logger.info(
        "heuristic_review_complete",
        quality_score=round(score, 3),
        preservation=round(preservation, 3),
        findings=len(findings),
    )
    return ReviewAssessment(quality_score=round(score, 4), confidence=0.6, findings=findings, summary=summary)


def sample_text(document: WorkingDocument, max_words: int = 600) -> str:
    """Opening and middle passages of a document, for AI comparison."""
    words = document.text.split()
    if len(words) <= max_words:
        return " ".join(words)
    half = max_words // 2
    middle = len(words) // 2
    return " ".join(words[:half]) + "\n...\n" + " ".join(words[middle:middle + half])
