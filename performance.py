"""Performance classification and group balance metrics.

Shared by every grouping engine and by the analytics aggregator.
"""
from __future__ import annotations
import math
from typing import Iterable, List, Optional, Sequence

from models import (
    AbilityDistribution,
    EnrollmentRecord,
    GenderBalance,
    GenderBalanceSummary,
    GroupingConstraints,
    PerformanceBalanceSummary,
    PerformanceMetrics,
    PretestCategory,
    ScoreRange,
    StudentGroup,
    StudentPerformance,
    Tier,
)

BALANCED_RATIO = 0.3


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def overall_performance(pretest: Optional[float], posttest: Optional[float], retention: Optional[float] = None) -> float:
    """Mean of pretest, posttest and (when present) retention.

    Missing pretest/posttest scores count as 0.
    """
    pre = pretest or 0
    post = posttest or 0
    if retention is not None:
        return (pre + post + retention) / 3
    return (pre + post) / 2


def categorize_performance(score: float, constraints: GroupingConstraints) -> Tier:
    bands = constraints.performance_categories
    if score >= bands.high.min:
        return "high"
    if score >= bands.medium.min:
        return "medium"
    return "low"


def categorize_pretest(pretest: Optional[float]) -> PretestCategory:
    """Analytics-only category on the pretest score (High >= 80, Low < 50)."""
    pre = pretest or 0
    if pre >= 80:
        return "High"
    if pre < 50:
        return "Low"
    return "Mid"


def to_student_performance(record: EnrollmentRecord) -> StudentPerformance:
    return StudentPerformance(
        id=record.student_id,
        name=record.name,
        gender=record.gender,
        pretest_score=record.pretest_score,
        posttest_score=record.posttest_score,
        retention_score=record.retention_score,
        overall_performance=overall_performance(
            record.pretest_score, record.posttest_score, record.retention_score
        ),
    )


def gender_balance(students: Iterable[StudentPerformance]) -> GenderBalance:
    students = list(students)
    male = sum(1 for s in students if s.gender == "male")
    female = sum(1 for s in students if s.gender == "female")
    total = len(students)
    return GenderBalance(male=male, female=female, ratio=abs(male - female) / total if total else 0.0)


def ability_distribution(students: Iterable[StudentPerformance], constraints: GroupingConstraints) -> AbilityDistribution:
    dist = AbilityDistribution()
    for s in students:
        tier = categorize_performance(s.overall_performance, constraints)
        setattr(dist, tier, getattr(dist, tier) + 1)
    return dist


def performance_metrics(students: Sequence[StudentPerformance], constraints: GroupingConstraints) -> PerformanceMetrics:
    scores = [s.overall_performance for s in students]
    if not scores:
        return PerformanceMetrics(
            average_score=0,
            score_range=ScoreRange(min=0, max=0),
            ability_distribution=AbilityDistribution(),
        )
    return PerformanceMetrics(
        average_score=round_half_up(sum(scores) / len(scores)),
        score_range=ScoreRange(min=min(scores), max=max(scores)),
        ability_distribution=ability_distribution(students, constraints),
    )


def build_group(group_id: str, name: str, students: List[StudentPerformance], constraints: GroupingConstraints,
                rationale: Optional[str] = None) -> StudentGroup:
    return StudentGroup(
        id=group_id,
        name=name,
        students=students,
        student_ids=[s.id for s in students],
        gender_balance=gender_balance(students),
        performance_metrics=performance_metrics(students, constraints),
        rationale=rationale,
    )


def summarize(groups: Sequence[StudentGroup], students: Sequence[StudentPerformance]):
    """Aggregate gender and performance summaries for a grouping result."""
    overall = gender_balance(students)
    gender_summary = GenderBalanceSummary(
        overall_ratio=overall.ratio,
        balanced_groups=sum(1 for g in groups if g.gender_balance.ratio <= BALANCED_RATIO),
        total_groups=len(groups),
    )
    averages = [g.performance_metrics.average_score for g in groups]
    if averages:
        mean = round_half_up(sum(averages) / len(averages))
        variance = sum((a - mean) ** 2 for a in averages) / len(averages)
        std = round_half_up(math.sqrt(variance))
    else:
        mean, std = 0, 0
    return gender_summary, PerformanceBalanceSummary(average_group_score=mean, score_standard_deviation=std)
