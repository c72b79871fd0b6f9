"""Shared data model for the grouping and analytics engines.

Every grouping engine (manual, AI, fallback) produces the same
``GroupingResult``; provenance is a field, not a subtype.
"""
from __future__ import annotations
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

Gender = Literal["male", "female", "other"]
Tier = Literal["high", "medium", "low"]
PretestCategory = Literal["High", "Mid", "Low"]
Provenance = Literal["manual", "ai", "fallback"]


class ScoreBand(BaseModel):
    min: float
    max: float


class PerformanceCategories(BaseModel):
    high: ScoreBand
    medium: ScoreBand
    low: ScoreBand


class GroupingConstraints(BaseModel):
    min_group_size: int = 4
    max_group_size: int = 6
    target_gender_balance: float = 0.5  # 0.5 = perfect balance
    performance_categories: PerformanceCategories = Field(
        default_factory=lambda: PerformanceCategories(
            high=ScoreBand(min=80, max=100),
            medium=ScoreBand(min=60, max=79),
            low=ScoreBand(min=0, max=59),
        )
    )


def default_constraints() -> GroupingConstraints:
    """Fresh copy of the default constraints (4-6 students, 80/60 bands)."""
    return GroupingConstraints()


class EnrollmentRecord(BaseModel):
    """One enrolled student with scores, as returned by the roster provider."""
    student_id: str
    name: str
    gender: Gender = "other"
    email: Optional[str] = None
    pretest_score: Optional[float] = None
    posttest_score: Optional[float] = None
    retention_score: Optional[float] = None
    group_number: Optional[int] = None
    grouping_rationale: Optional[str] = None


class StudentPerformance(BaseModel):
    id: str
    name: str
    gender: Gender
    pretest_score: Optional[float] = None
    posttest_score: Optional[float] = None
    retention_score: Optional[float] = None
    overall_performance: float


class GenderBalance(BaseModel):
    male: int
    female: int
    ratio: float  # |male - female| / total, 0 = perfect balance


class ScoreRange(BaseModel):
    min: float
    max: float


class AbilityDistribution(BaseModel):
    high: int = 0
    medium: int = 0
    low: int = 0


class PerformanceMetrics(BaseModel):
    average_score: int
    score_range: ScoreRange
    ability_distribution: AbilityDistribution


class StudentGroup(BaseModel):
    id: str
    name: str
    students: List[StudentPerformance]
    student_ids: List[str]
    gender_balance: GenderBalance
    performance_metrics: PerformanceMetrics
    rationale: Optional[str] = None


class GenderBalanceSummary(BaseModel):
    overall_ratio: float
    balanced_groups: int
    total_groups: int


class PerformanceBalanceSummary(BaseModel):
    average_group_score: int
    score_standard_deviation: int


class GroupingResult(BaseModel):
    groups: List[StudentGroup]
    rationale: str
    algorithm_version: str
    provenance: Provenance
    timestamp: datetime = Field(default_factory=datetime.now)
    total_students: int
    gender_balance: GenderBalanceSummary
    performance_balance: PerformanceBalanceSummary
    gender_balance_analysis: Optional[str] = None
    performance_balance_analysis: Optional[str] = None
    fallback: bool = False
    original_error: Optional[str] = None


class ValidationReport(BaseModel):
    valid: bool
    issues: List[str] = Field(default_factory=list)


# ---------------------- Analytics ----------------------

class PersistedGroup(BaseModel):
    id: str
    name: str
    class_id: Optional[str] = None
    member_ids: List[str] = Field(default_factory=list)
    ai_generated: bool = False
    rationale: Optional[str] = None
    created_at: Optional[datetime] = None


class StudentDetail(BaseModel):
    id: str
    name: str
    gender: Gender
    pretest_score: Optional[float] = None
    posttest_score: Optional[float] = None
    retention_score: Optional[float] = None
    improvement_rate: float
    retention_rate: float
    immediate_improvement: Optional[float] = None  # pre -> post
    sustained_improvement: Optional[float] = None  # pre -> retention
    retention_stability: Optional[float] = None  # post -> retention
    performance_category: PretestCategory


class GroupPerformanceData(BaseModel):
    group_id: str
    class_id: str
    label: str
    member_count: int
    average_score: float
    avg_pretest_score: float
    avg_posttest_score: float
    avg_retention_score: float
    improvement_rate: float
    retention_rate: float
    gender_balance: GenderBalance
    gender_balance_score: float  # 1 - ratio, 1 = perfect balance
    ability_distribution: AbilityDistribution
    students: Optional[List[StudentDetail]] = None
    student_name: Optional[str] = None
    is_individual: bool = False
    grouping_rationale: Optional[str] = None
    ai_generated: bool = False


class CompletionStats(BaseModel):
    pretest: float
    posttest: float
    retention: float


class GroupingCoverage(BaseModel):
    grouped_students: int
    ungrouped_students: int
    unique_groups: int
    grouping_rate: float


class ClassStatistics(BaseModel):
    total_students: int
    students_with_pretest: int
    students_with_posttest: int
    students_with_retention: int
    completion_rates: CompletionStats
    average_scores: CompletionStats
    improvement_rate: float
    retention_rate: float
    grouping: GroupingCoverage


class AlgorithmInsight(BaseModel):
    effectiveness_score: float
    gender_balance_score: float
    ability_mix_score: float
    improvement_areas: List[str]
    recommendations: List[str]
