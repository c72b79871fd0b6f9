"""Grouping engine: AI-assisted grouping with a deterministic fallback.

The AI path sends the roster to a text-generation collaborator and maps
its structured answer back onto the roster. When the collaborator is
unavailable or answers unusably, ``ai_group`` degrades to the fallback
heuristic (performance-sorted round-robin).
"""
from __future__ import annotations
import logging
import math
from typing import Any, Callable, Dict, List, Optional, Sequence

from errors import (
    AIGroupingError,
    GroupingError,
    GroupingFailedError,
    NoStudentsError,
    PretestIncompleteError,
    TooFewStudentsError,
)
from llm_client import extract_json, generate_structured
from models import (
    EnrollmentRecord,
    GroupingConstraints,
    GroupingResult,
    StudentGroup,
    StudentPerformance,
    default_constraints,
)
from performance import build_group, summarize, to_student_performance

log = logging.getLogger("grouping")

AI_ALGORITHM_VERSION = "1.0.0-ollama"
FALLBACK_ALGORITHM_VERSION = "1.0.0-fallback"
AI_MIN_STUDENTS = 8
FALLBACK_GROUP_SIZE = 4

GROUP_SYSTEM = (
    "You are an expert educational AI assistant specializing in creating optimal student groupings "
    "for collaborative learning. Output only valid JSON (no explanatory text, no markdown)."
)

GenerateFn = Callable[[str, Dict[str, Any]], Any]

# Collaborator failures that are answered with the fallback heuristic.
RECOVERABLE_MARKERS = (
    "resource_exhausted",
    "rate limit",
    "quota",
    "too many requests",
    "econnrefused",
    "connection refused",
    "fetch failed",
    "failed to generate",
    "invalid or empty response",
    "invalid json",
)


def is_recoverable(message: str) -> bool:
    lowered = (message or "").lower()
    return any(marker in lowered for marker in RECOVERABLE_MARKERS)


def require_students(roster: Sequence[EnrollmentRecord]) -> None:
    if not roster:
        raise NoStudentsError()


def require_pretests(roster: Sequence[EnrollmentRecord]) -> None:
    missing = [r for r in roster if r.pretest_score is None]
    if missing:
        raise PretestIncompleteError([
            {"id": r.student_id, "name": r.name, "email": r.email} for r in missing
        ])


def build_result(groups: List[StudentGroup], students: Sequence[StudentPerformance], rationale: str,
                 algorithm_version: str, provenance: str, **extra) -> GroupingResult:
    gender_summary, performance_summary = summarize(groups, students)
    return GroupingResult(
        groups=groups,
        rationale=rationale,
        algorithm_version=algorithm_version,
        provenance=provenance,
        total_students=len(students),
        gender_balance=gender_summary,
        performance_balance=performance_summary,
        **extra,
    )


def constraints_for_group_count(student_count: int, group_count: Optional[int],
                                base: Optional[GroupingConstraints] = None) -> GroupingConstraints:
    """Translate a requested group count into size bounds."""
    base = base or default_constraints()
    if not group_count or group_count <= 0:
        return base
    return base.model_copy(update={
        "min_group_size": max(2, student_count // group_count),
        "max_group_size": math.ceil(student_count / group_count) + 1,
    })


def team_name(index: int) -> str:
    """Team A, Team B, ..., Team Z, Team AA, ..."""
    label = ""
    n = index + 1
    while n:
        n, rem = divmod(n - 1, 26)
        label = chr(65 + rem) + label
    return f"Team {label}"


# -------------------- Fallback heuristic --------------------

def fallback_group(class_id: str, roster: Sequence[EnrollmentRecord], target_group_count: Optional[int] = None,
                   constraints: Optional[GroupingConstraints] = None) -> GroupingResult:
    """Sort by overall performance (then gender) and deal students round-robin."""
    require_students(roster)
    require_pretests(roster)
    constraints = constraints or default_constraints()

    students = [to_student_performance(r) for r in roster]
    ordered = sorted(students, key=lambda s: (-s.overall_performance, s.gender))

    if target_group_count and target_group_count > 0:
        num_groups = target_group_count
    else:
        num_groups = math.ceil(len(students) / FALLBACK_GROUP_SIZE)
    num_groups = min(num_groups, len(students))
    log.info("Fallback grouping class=%s students=%d requested=%s groups=%d",
             class_id, len(students), target_group_count, num_groups)

    groups = [
        build_group(f"fallback_group_{i + 1}", team_name(i), ordered[i::num_groups], constraints)
        for i in range(num_groups)
    ]
    return build_result(
        groups,
        students,
        "Fallback grouping: Balanced distribution of gender and performance levels across groups "
        "using heuristic algorithm.",
        FALLBACK_ALGORITHM_VERSION,
        "fallback",
    )


# -------------------- AI grouping --------------------

def create_grouping_prompt(students: Sequence[StudentPerformance], constraints: GroupingConstraints) -> str:
    def fmt(score):
        return "N/A" if score is None else f"{score:g}"

    lines = [
        f"ID: {s.id}, Name: {s.name}, Gender: {s.gender.upper()}, "
        f"Pretest: {fmt(s.pretest_score)}, Posttest: {fmt(s.posttest_score)}, "
        f"Retention: {fmt(s.retention_score)}, Overall: {s.overall_performance:g}"
        for s in students
    ]
    bands = constraints.performance_categories
    target = round(constraints.target_gender_balance * 100)
    return (
        "STUDENT DATA:\n" + "\n".join(lines) + "\n\n"
        "GROUPING REQUIREMENTS:\n"
        f"- Group size: {constraints.min_group_size}-{constraints.max_group_size} students per group\n"
        f"- Gender balance: Aim for equal representation ({target}% male, {100 - target}% female) in each group\n"
        "- Performance balance: Distribute high, medium, and low performing students evenly across groups\n"
        f"- Performance categories: High ({bands.high.min:g}-{bands.high.max:g}), "
        f"Medium ({bands.medium.min:g}-{bands.medium.max:g}), Low ({bands.low.min:g}-{bands.low.max:g}) "
        "based on overall scores\n\n"
        "OUTPUT FORMAT:\n"
        "Return a JSON object with:\n"
        "{\n"
        '  "groups": [\n'
        '    {"groupId": "group_1", "groupName": "Team Alpha", "studentIds": ["student_id_1", "student_id_2"],\n'
        '     "rationale": "This group combines... [explain gender and performance balance]"}\n'
        "  ],\n"
        '  "overallRationale": "Overall grouping strategy explanation...",\n'
        '  "genderBalanceAnalysis": "Gender distribution analysis across all groups...",\n'
        '  "performanceBalanceAnalysis": "Performance distribution analysis..."\n'
        "}\n\n"
        "IMPORTANT:\n"
        "- Use all students provided, each exactly once, and only the IDs listed above\n"
        "- Balance gender representation as closely as possible\n"
        "- Distribute performance levels evenly\n"
        "- Provide specific, educational rationale for decisions"
    )


def parse_ai_response(raw: Any) -> Dict[str, Any]:
    """Turn the collaborator's answer into a grouping document.

    Accepts the llm_client envelope, an already parsed document or raw
    text (markdown fences and JS-style comments are stripped).
    """
    if isinstance(raw, dict) and "success" in raw:
        if not raw.get("success"):
            raise AIGroupingError(f"Failed to generate AI grouping: {raw.get('error') or 'unknown error'}")
        raw = raw.get("data")
    if isinstance(raw, (str, bytes)):
        text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        raw = extract_json(text)
        if raw is None:
            log.warning("Unparseable AI grouping response: %.200s", text)
    if not isinstance(raw, dict) or not isinstance(raw.get("groups"), list):
        raise AIGroupingError("Invalid or empty response from AI")
    return raw


def _default_generate(prompt: str, options: Dict[str, Any]) -> Dict[str, Any]:
    return generate_structured(
        prompt,
        system=GROUP_SYSTEM,
        temperature=options.get("temperature", 0.2),
        max_retries=0,
        max_output_tokens=options.get("max_output_tokens", 4000),
    )


def generate_ai_grouping(class_id: str, roster: Sequence[EnrollmentRecord],
                         constraints: Optional[GroupingConstraints] = None,
                         generate: Optional[GenerateFn] = None) -> GroupingResult:
    """Single AI attempt; raises AIGroupingError on any collaborator failure."""
    if not roster:
        raise NoStudentsError("No students enrolled")
    constraints = constraints or default_constraints()
    generate = generate or _default_generate

    students = [to_student_performance(r) for r in roster]
    by_id = {s.id: s for s in students}
    prompt = create_grouping_prompt(students, constraints)

    try:
        raw = generate(prompt, {"temperature": 0.2, "max_output_tokens": 4000})
    except Exception as exc:
        log.error("AI grouping collaborator failed for class %s: %s", class_id, exc)
        raise AIGroupingError(f"Failed to generate AI grouping: {exc}") from exc
    doc = parse_ai_response(raw)

    # pydantic's ValidationError is a ValueError
    try:
        return _map_ai_document(class_id, doc, students, by_id, constraints)
    except (TypeError, ValueError) as exc:
        log.error("Malformed AI grouping for class %s: %s", class_id, exc)
        raise AIGroupingError(f"Failed to generate AI grouping: {exc}") from exc


def _map_ai_document(class_id: str, doc: Dict[str, Any], students: Sequence[StudentPerformance],
                     by_id: Dict[str, StudentPerformance], constraints: GroupingConstraints) -> GroupingResult:
    """Map AI groups onto the roster; unknown and repeated ids are dropped."""
    seen = set()
    groups: List[StudentGroup] = []
    for index, item in enumerate(doc["groups"]):
        if not isinstance(item, dict):
            continue
        student_ids = item.get("studentIds") or []
        if not isinstance(student_ids, list):
            raise TypeError(f"studentIds of group {index + 1} is not a list")
        members = []
        for sid in student_ids:
            student = by_id.get(str(sid))
            if student is None:
                log.warning("AI returned unknown student id %s for class %s", sid, class_id)
                continue
            if student.id in seen:
                log.warning("AI placed student %s in more than one group; keeping the first", sid)
                continue
            seen.add(student.id)
            members.append(student)
        groups.append(build_group(
            str(item.get("groupId") or f"group_{index + 1}"),
            str(item.get("groupName") or team_name(index)),
            members,
            constraints,
            rationale=item.get("rationale"),
        ))

    return build_result(
        groups,
        students,
        doc.get("overallRationale") or "AI generated grouping based on performance and gender balance.",
        AI_ALGORITHM_VERSION,
        "ai",
        gender_balance_analysis=doc.get("genderBalanceAnalysis"),
        performance_balance_analysis=doc.get("performanceBalanceAnalysis"),
    )


def ai_group(class_id: str, roster: Sequence[EnrollmentRecord], constraints: Optional[GroupingConstraints] = None,
             group_count: Optional[int] = None, generate: Optional[GenerateFn] = None) -> GroupingResult:
    """AI grouping for classes of 8+ students, degrading to the fallback heuristic."""
    require_students(roster)
    count = len(roster)
    if count < 3:
        raise TooFewStudentsError(count, 3)
    if count < AI_MIN_STUDENTS:
        raise TooFewStudentsError(count, AI_MIN_STUDENTS, suggestion="Use manual grouping for classes with 3-7 students")
    require_pretests(roster)

    if group_count and group_count > 0:
        constraints = constraints_for_group_count(count, group_count, constraints)
    constraints = constraints or default_constraints()

    try:
        return generate_ai_grouping(class_id, roster, constraints, generate)
    except AIGroupingError as exc:
        if not is_recoverable(exc.message):
            raise
        ai_error = exc.message

    log.warning("AI grouping failed for class %s (%s); using fallback", class_id, ai_error)
    try:
        result = fallback_group(class_id, roster, group_count, constraints)
    except GroupingError as exc:
        log.error("Fallback grouping also failed for class %s: %s", class_id, exc.message)
        raise GroupingFailedError(ai_error, exc.message) from exc
    return result.model_copy(update={"fallback": True, "original_error": ai_error})
