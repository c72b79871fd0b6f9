"""Post-hoc checks of a grouping result against its constraints.

Issues are reported as data; nothing here raises or corrects the result.
"""
from __future__ import annotations
from typing import List

from models import GroupingConstraints, GroupingResult, ValidationReport

POOR_GENDER_RATIO = 0.4


def validate_grouping(result: GroupingResult, constraints: GroupingConstraints) -> ValidationReport:
    issues: List[str] = []

    for group in result.groups:
        size = len(group.students)
        if size < constraints.min_group_size:
            issues.append(
                f"{group.name} has only {size} students "
                f"(minimum: {constraints.min_group_size}, short by {constraints.min_group_size - size})"
            )
        if size > constraints.max_group_size:
            issues.append(
                f"{group.name} has {size} students "
                f"(maximum: {constraints.max_group_size}, over by {size - constraints.max_group_size})"
            )

    # A minority of poorly balanced groups is tolerated.
    poorly_balanced = [g for g in result.groups if g.gender_balance.ratio > POOR_GENDER_RATIO]
    if poorly_balanced and 2 * len(poorly_balanced) >= len(result.groups):
        issues.append(
            f"{len(poorly_balanced)} of {len(result.groups)} groups have poor gender balance "
            f"(>{int(POOR_GENDER_RATIO * 100)}% difference): {', '.join(g.name for g in poorly_balanced)}"
        )

    totals = {"high": 0, "medium": 0, "low": 0}
    for group in result.groups:
        dist = group.performance_metrics.ability_distribution
        totals["high"] += dist.high
        totals["medium"] += dist.medium
        totals["low"] += dist.low
    labels = {"high": "high-performing", "medium": "medium-performing", "low": "low-performing"}
    for tier, total in totals.items():
        if total == 0:
            issues.append(f"No {labels[tier]} students distributed across groups")

    return ValidationReport(valid=not issues, issues=issues)
