"""Exceptions raised by the grouping engines.

Each error carries a human-readable message and a ``details`` dict with
enough structure for a UI to render (current counts, bounds, offending
students).
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional


class GroupingError(Exception):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "details": self.details}


class NoStudentsError(GroupingError):
    def __init__(self, message: str = "No students enrolled in this class"):
        super().__init__(message, {"currentCount": 0})


class TooFewStudentsError(GroupingError):
    def __init__(self, current: int, minimum: int, suggestion: Optional[str] = None):
        details: Dict[str, Any] = {"currentCount": current, "minimumRequired": minimum}
        if suggestion:
            details["suggestion"] = suggestion
        if minimum <= 3:
            message = f"At least {minimum} students required for H-M-L grouping ({current} enrolled)"
        else:
            message = f"At least {minimum} students required for AI grouping ({current} enrolled)"
        super().__init__(message, details)
        self.current = current
        self.minimum = minimum


class TooManyStudentsError(GroupingError):
    def __init__(self, current: int, maximum: int, suggestion: str = "Use AI grouping for classes with 8+ students"):
        super().__init__(
            f"Manual grouping supports at most {maximum} students ({current} enrolled); use AI grouping",
            {"currentCount": current, "maximumAllowed": maximum, "suggestion": suggestion},
        )
        self.current = current
        self.maximum = maximum


class PretestIncompleteError(GroupingError):
    def __init__(self, students: List[Dict[str, Any]]):
        names = ", ".join(str(s.get("name")) for s in students)
        super().__init__(
            f"Cannot generate groups until all students complete the pretest. "
            f"{len(students)} students have not taken the pretest: {names}",
            {"count": len(students), "students": students},
        )
        self.students = students


class AIGroupingError(GroupingError):
    """The text-generation collaborator failed or answered unusably."""


class GroupingFailedError(GroupingError):
    def __init__(self, ai_error: str, fallback_error: str):
        super().__init__(
            "Both AI and fallback grouping failed. Please try again later or use manual grouping.",
            {"aiError": ai_error, "fallbackError": fallback_error},
        )
