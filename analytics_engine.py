"""Group and class performance analytics.

Joins persisted groups with enrollment scores and rolls them up into
per-group snapshots, per-student deltas and class-wide statistics.
Students outside any persisted group still appear exactly once: grouped
by their legacy ``group_number`` when they carry one, otherwise as an
individual group of size 1.
"""
from __future__ import annotations
import logging
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from models import (
    AbilityDistribution,
    AlgorithmInsight,
    ClassStatistics,
    CompletionStats,
    EnrollmentRecord,
    GroupingCoverage,
    GroupingResult,
    GroupPerformanceData,
    PersistedGroup,
    StudentDetail,
)
from performance import categorize_pretest, gender_balance, to_student_performance

log = logging.getLogger("analytics")

MetricsStore = Callable[[str, str, GroupPerformanceData], None]

_CATEGORY_TO_TIER = {"High": "high", "Mid": "medium", "Low": "low"}


def _mean(values: Sequence[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def percent_change(start: Optional[float], end: Optional[float]) -> Optional[float]:
    """Percentage change start -> end; None when either score is missing or start is 0."""
    if start is None or end is None or start == 0:
        return None
    return (end - start) / start * 100


def improvement_rate(avg_pre: float, avg_post: float) -> float:
    return (avg_post - avg_pre) / avg_pre * 100 if avg_pre > 0 else 0.0


def retention_rate(avg_retention: float, avg_post: float) -> float:
    return avg_retention / avg_post * 100 if avg_post > 0 else 100.0


def student_detail(record: EnrollmentRecord) -> StudentDetail:
    pre = record.pretest_score or 0
    post = record.posttest_score or 0
    ret = record.retention_score if record.retention_score is not None else post
    return StudentDetail(
        id=record.student_id,
        name=record.name,
        gender=record.gender,
        pretest_score=record.pretest_score,
        posttest_score=record.posttest_score,
        retention_score=record.retention_score,
        improvement_rate=improvement_rate(pre, post),
        retention_rate=retention_rate(ret, post),
        immediate_improvement=percent_change(record.pretest_score, record.posttest_score),
        sustained_improvement=percent_change(record.pretest_score, record.retention_score),
        retention_stability=percent_change(record.posttest_score, record.retention_score),
        performance_category=categorize_pretest(record.pretest_score),
    )


def group_performance(class_id: str, group_id: str, label: str, records: Sequence[EnrollmentRecord],
                      **extra) -> GroupPerformanceData:
    avg_pre = _mean([r.pretest_score for r in records if r.pretest_score is not None]) or 0.0
    avg_post = _mean([r.posttest_score for r in records if r.posttest_score is not None]) or 0.0
    avg_ret = _mean([r.retention_score for r in records if r.retention_score is not None])
    if avg_ret is None:
        avg_ret = avg_post

    balance = gender_balance(to_student_performance(r) for r in records)
    dist = AbilityDistribution()
    for r in records:
        if r.pretest_score is None:
            continue
        tier = _CATEGORY_TO_TIER[categorize_pretest(r.pretest_score)]
        setattr(dist, tier, getattr(dist, tier) + 1)

    return GroupPerformanceData(
        group_id=group_id,
        class_id=class_id,
        label=label,
        member_count=len(records),
        average_score=avg_post,
        avg_pretest_score=avg_pre,
        avg_posttest_score=avg_post,
        avg_retention_score=avg_ret,
        improvement_rate=improvement_rate(avg_pre, avg_post),
        retention_rate=retention_rate(avg_ret, avg_post),
        gender_balance=balance,
        gender_balance_score=1 - balance.ratio if records else 1.0,
        ability_distribution=dist,
        students=[student_detail(r) for r in records],
        **extra,
    )


def aggregate(class_id: str, groups: Iterable[PersistedGroup], roster: Sequence[EnrollmentRecord],
              group_id: Optional[str] = None, metrics_store: Optional[MetricsStore] = None) -> List[GroupPerformanceData]:
    """Per-group analytics for a class, including synthetic groups for ungrouped students."""
    by_student = {r.student_id: r for r in roster}
    assigned = set()
    results: List[GroupPerformanceData] = []

    for group in groups:
        if group_id and group.id != group_id:
            continue
        records = []
        for sid in group.member_ids:
            if sid in assigned:
                log.warning("Student %s already counted in another group; skipping in %s", sid, group.id)
                continue
            record = by_student.get(sid)
            if record is None:
                log.info("Group %s member %s has no enrollment in class %s", group.id, sid, class_id)
                continue
            assigned.add(sid)
            records.append(record)

        data = group_performance(
            class_id, group.id, group.name, records,
            grouping_rationale=group.rationale or "Group-based performance analysis",
            ai_generated=group.ai_generated,
        )
        results.append(data)
        if metrics_store is not None:
            metrics_store(class_id, group.id, data)

    if group_id:
        return results

    legacy: Dict[int, List[EnrollmentRecord]] = {}
    individuals: List[EnrollmentRecord] = []
    for record in roster:
        if record.student_id in assigned:
            continue
        if record.group_number is not None:
            legacy.setdefault(record.group_number, []).append(record)
        else:
            individuals.append(record)

    for number in sorted(legacy):
        records = legacy[number]
        rationale = next((r.grouping_rationale for r in records if r.grouping_rationale), None)
        results.append(group_performance(
            class_id, f"auto-group-{number}", f"Group {number}", records,
            grouping_rationale=rationale or "Performance-based grouping",
        ))

    for record in individuals:
        results.append(group_performance(
            class_id, record.student_id, record.name, [record],
            student_name=record.name,
            is_individual=True,
            grouping_rationale="Individual student (not in any group)",
        ))

    return results


def class_statistics(roster: Sequence[EnrollmentRecord], groups: Iterable[PersistedGroup] = ()) -> ClassStatistics:
    total = len(roster)
    enrolled = {r.student_id for r in roster}

    with_pre = [r.pretest_score for r in roster if r.pretest_score is not None]
    with_post = [r.posttest_score for r in roster if r.posttest_score is not None]
    with_ret = [r.retention_score for r in roster if r.retention_score is not None]
    avg_pre = _mean(with_pre) or 0.0
    avg_post = _mean(with_post) or 0.0
    avg_ret = _mean(with_ret) or 0.0

    member_of: Dict[str, str] = {}
    for group in groups:
        for sid in group.member_ids:
            if sid in enrolled:
                member_of.setdefault(sid, group.id)
    group_keys = set(member_of.values())
    grouped = len(member_of)
    for r in roster:
        if r.student_id not in member_of and r.group_number is not None:
            grouped += 1
            group_keys.add(f"auto-group-{r.group_number}")

    def rate(count: int) -> float:
        return count / total * 100 if total else 0.0

    return ClassStatistics(
        total_students=total,
        students_with_pretest=len(with_pre),
        students_with_posttest=len(with_post),
        students_with_retention=len(with_ret),
        completion_rates=CompletionStats(pretest=rate(len(with_pre)), posttest=rate(len(with_post)),
                                         retention=rate(len(with_ret))),
        average_scores=CompletionStats(pretest=avg_pre, posttest=avg_post, retention=avg_ret),
        improvement_rate=improvement_rate(avg_pre, avg_post),
        retention_rate=retention_rate(avg_ret, avg_post),
        grouping=GroupingCoverage(
            grouped_students=grouped,
            ungrouped_students=total - grouped,
            unique_groups=len(group_keys),
            grouping_rate=rate(grouped),
        ),
    )


# -------------------- Algorithm insights --------------------

def ability_mix_score(rationale: str) -> float:
    text = (rationale or "").lower()
    return 0.8 if any(word in text for word in ("ability", "performance", "mixed")) else 0.5


def algorithm_insights(result: GroupingResult) -> AlgorithmInsight:
    """Score a grouping on gender balance and ability mix."""
    balances = [1 - g.gender_balance.ratio for g in result.groups if g.students]
    gender_score = sum(balances) / len(balances) if balances else 1.0
    ability_score = ability_mix_score(result.rationale)
    effectiveness = gender_score * 0.4 + ability_score * 0.6

    areas, recommendations = [], []
    if effectiveness < 0.7:
        areas.append("Overall algorithm effectiveness needs improvement")
        recommendations += ["Consider adjusting algorithm parameters", "Review grouping constraints and criteria"]
    if gender_score < 0.8:
        areas.append("Gender balance across groups could be optimized")
        recommendations += ["Implement stronger gender balance constraints", "Consider group size adjustments"]
    if ability_score < 0.7:
        areas.append("Mixed-ability distribution needs refinement")
        recommendations += ["Refine ability categorization logic", "Adjust performance distribution thresholds"]
    if not areas:
        areas.append("Algorithm performance is satisfactory")
    if not recommendations:
        recommendations = ["Continue monitoring algorithm performance", "Maintain current grouping parameters"]

    return AlgorithmInsight(
        effectiveness_score=effectiveness,
        gender_balance_score=gender_score,
        ability_mix_score=ability_score,
        improvement_areas=areas,
        recommendations=recommendations,
    )
