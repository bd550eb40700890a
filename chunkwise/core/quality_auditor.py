"""
Translation quality audit.

Fits translated length against source length with ordinary least squares
over the successful chunks and flags chunks whose residual lies more than
two standard deviations from the fit: far too short suggests omitted text,
far too long suggests fabricated text.
"""
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List

from chunkwise.core.models import TranslationResult

MIN_DATA_POINTS = 5
Z_SCORE_THRESHOLD = 2.0


class IssueType(Enum):
    OMISSION = "omission"
    HALLUCINATION = "hallucination"


@dataclass
class SuspiciousChunk:
    chunk_index: int
    issue_type: IssueType
    source_length: int
    translated_length: int
    expected_length: float
    ratio: float
    z_score: float


@dataclass
class RegressionAnalysis:
    slope: float = 0.0
    intercept: float = 0.0
    std_dev: float = 0.0
    suspicious_chunks: List[SuspiciousChunk] = field(default_factory=list)


def _round_half_up(value: float, digits: int) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def analyze_translation_quality(results: List[TranslationResult]) -> RegressionAnalysis:
    """
    Regress translated length on source length and report outliers.

    Only successful results with non-empty source and translation are used.
    Fewer than five such points, or a degenerate fit, yields an empty analysis.
    """
    points = [
        (result.chunk_index, len(result.original_text), len(result.translated_text))
        for result in results
        if result.success and result.original_text and result.translated_text
    ]

    n = len(points)
    if n < MIN_DATA_POINTS:
        return RegressionAnalysis()

    sum_x = sum(x for _, x, _ in points)
    sum_y = sum(y for _, _, y in points)
    sum_xy = sum(x * y for _, x, y in points)
    sum_x2 = sum(x * x for _, x, _ in points)

    denominator = n * sum_x2 - sum_x ** 2
    if denominator == 0:
        # Every chunk has the same source length
        return RegressionAnalysis()

    slope = (n * sum_xy - sum_x * sum_y) / denominator
    intercept = (sum_y - slope * sum_x) / n

    residuals = [y - (slope * x + intercept) for _, x, y in points]
    mean_residual = sum(residuals) / n
    std_dev = math.sqrt(sum((r - mean_residual) ** 2 for r in residuals) / n)

    if std_dev == 0:
        return RegressionAnalysis(slope=slope, intercept=intercept)

    suspicious = []
    for (index, x, y), residual in zip(points, residuals):
        z_score = residual / std_dev
        if z_score < -Z_SCORE_THRESHOLD:
            issue = IssueType.OMISSION
        elif z_score > Z_SCORE_THRESHOLD:
            issue = IssueType.HALLUCINATION
        else:
            continue

        suspicious.append(SuspiciousChunk(
            chunk_index=index,
            issue_type=issue,
            source_length=x,
            translated_length=y,
            expected_length=_round_half_up(slope * x + intercept, 2),
            ratio=_round_half_up(y / x, 4),
            z_score=_round_half_up(z_score, 2),
        ))

    suspicious.sort(key=lambda chunk: chunk.chunk_index)
    return RegressionAnalysis(
        slope=_round_half_up(slope, 4),
        intercept=_round_half_up(intercept, 2),
        std_dev=_round_half_up(std_dev, 2),
        suspicious_chunks=suspicious,
    )


def format_analysis_result(analysis: RegressionAnalysis) -> str:
    lines = [
        "Translation quality analysis",
        "─" * 50,
        f"Regression: y = {analysis.slope:.4f}x + {analysis.intercept:.2f}",
        f"Standard deviation: {analysis.std_dev:.2f}",
        "",
    ]

    if not analysis.suspicious_chunks:
        lines.append("No suspicious chunks - every chunk is within the expected range.")
        return '\n'.join(lines)

    lines.append(f"Suspicious chunks: {len(analysis.suspicious_chunks)}")
    lines.append("")
    for chunk in analysis.suspicious_chunks:
        label = "omission" if chunk.issue_type == IssueType.OMISSION else "hallucination"
        lines.append(
            f"Chunk #{chunk.chunk_index + 1} ({label}) | "
            f"source: {chunk.source_length} chars, translation: {chunk.translated_length} chars "
            f"(expected: {chunk.expected_length}) | z-score: {chunk.z_score}"
        )
    return '\n'.join(lines)
