"""H-M-L grouping for small classes (3-7 students).

Each class size maps to a fixed layout. Every slot in a layout is an
ordered chain of tiers: the slot takes the next student from the first
non-empty bucket in its chain.
"""
from __future__ import annotations
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from errors import TooFewStudentsError, TooManyStudentsError
from grouping_engine import build_result, require_pretests, require_students
from models import EnrollmentRecord, GroupingConstraints, GroupingResult, StudentPerformance, default_constraints
from performance import build_group, categorize_performance, to_student_performance

log = logging.getLogger("grouping")

MANUAL_ALGORITHM_VERSION = "1.0.0-manual"
MIN_STUDENTS = 3
MAX_STUDENTS = 7

TIER_ORDER = ("high", "medium", "low")


def chain(*preferred: str) -> Tuple[str, ...]:
    """Preferred tiers first, then any remaining tier (high, medium, low)."""
    return tuple(preferred) + tuple(t for t in TIER_ORDER if t not in preferred)


H = chain("high", "medium")
M = chain("medium", "high")
L = chain("low", "medium")

LAYOUTS: Dict[int, Tuple[List[List[Tuple[str, ...]]], str]] = {
    3: ([[H, M, L]],
        "Single group with balanced H-M-L distribution for optimal mentoring dynamics."),
    4: ([[H, M], [chain("medium", "high"), L]],
        "Two groups with H-M and M-L distribution for peer mentoring and balanced dynamics."),
    5: ([[H, M, L], [chain("medium", "low"), chain("low", "medium")]],
        "One 3-person group (H-M-L) and one 2-person group (M-L) for strong mentoring setups."),
    6: ([[H, M, L], [chain("high", "medium"), M, L]],
        "Two balanced groups each with H-M-L distribution for optimal peer learning."),
    7: ([[H, M, L], [chain("high", "medium"), M, chain("medium", "high"), L]],
        "One 3-person group (H-M-L) and one 4-person group (H-2M-L) for balanced mentoring dynamics."),
}


def bucket_students(students: Sequence[StudentPerformance], constraints: GroupingConstraints) -> Dict[str, List[StudentPerformance]]:
    buckets: Dict[str, List[StudentPerformance]] = {tier: [] for tier in TIER_ORDER}
    for s in sorted(students, key=lambda s: -s.overall_performance):
        buckets[categorize_performance(s.overall_performance, constraints)].append(s)
    return buckets


def take(buckets: Dict[str, List[StudentPerformance]], tiers: Sequence[str]) -> Optional[StudentPerformance]:
    for tier in tiers:
        if buckets[tier]:
            return buckets[tier].pop(0)
    return None


def fill_layout(buckets: Dict[str, List[StudentPerformance]],
                layout: List[List[Tuple[str, ...]]]) -> List[List[StudentPerformance]]:
    groups = []
    for slots in layout:
        members = [take(buckets, tiers) for tiers in slots]
        groups.append([m for m in members if m is not None])
    return groups


def manual_group(class_id: str, roster: Sequence[EnrollmentRecord],
                 constraints: Optional[GroupingConstraints] = None) -> GroupingResult:
    require_students(roster)
    count = len(roster)
    if count < MIN_STUDENTS:
        raise TooFewStudentsError(count, MIN_STUDENTS)
    if count > MAX_STUDENTS:
        raise TooManyStudentsError(count, MAX_STUDENTS)
    require_pretests(roster)
    constraints = constraints or default_constraints()

    students = [to_student_performance(r) for r in roster]
    buckets = bucket_students(students, constraints)
    layout, rationale = LAYOUTS[count]
    log.info("Manual grouping class=%s students=%d (H=%d M=%d L=%d)", class_id, count,
             len(buckets["high"]), len(buckets["medium"]), len(buckets["low"]))

    groups = [
        build_group(f"manual_group_{i + 1}", f"Group {i + 1}", members, constraints)
        for i, members in enumerate(fill_layout(buckets, layout))
    ]
    return build_result(groups, students, rationale, MANUAL_ALGORITHM_VERSION, "manual")
