from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import logging
import os
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field
from dotenv import load_dotenv

from analytics_engine import aggregate, algorithm_insights, class_statistics
from errors import GroupingError, GroupingFailedError
from grouping_engine import ai_group, build_result, constraints_for_group_count, fallback_group
from grouping_validator import validate_grouping
from manual_grouping import manual_group
from models import GroupingConstraints, GroupingResult, default_constraints
from performance import build_group, to_student_performance

# Database helpers
from db import (
    list_roster as db_list_roster,
    list_groups as db_list_groups,
    apply_grouping as db_apply_grouping,
    save_pending_grouping as db_save_pending_grouping,
    get_grouping as db_get_grouping,
    mark_grouping_applied as db_mark_grouping_applied,
    store_group_performance_metrics as db_store_group_performance_metrics,
)

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
log = logging.getLogger("api")

OVERRIDE_ALGORITHM_VERSION = "1.0.0-override"

app = FastAPI(title="BioLearn - Student Grouping", version="1.0.0")

# Comma-separated list; localhost is always accepted for development
_origins = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_origin_regex=r"https?://localhost(:\d+)?",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Pydantic classes for validation
class GroupCountRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    group_count: Optional[int] = Field(default=None, alias="groupCount", ge=1)


class GroupOverride(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    student_ids: List[str] = Field(alias="studentIds")
    rationale: Optional[str] = None


class ApplyGroupsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    grouping_id: Optional[str] = Field(default=None, alias="groupingId")
    groups: Optional[List[GroupOverride]] = None
    rationale: Optional[str] = None


@app.exception_handler(GroupingError)
async def grouping_error_handler(request: Request, exc: GroupingError):
    status = 500 if isinstance(exc, GroupingFailedError) else 400
    log.warning("%s %s -> %d: %s", request.method, request.url.path, status, exc.message)
    return JSONResponse(status_code=status, content=exc.to_dict())


def _pending_response(class_id: str, result: GroupingResult, constraints: GroupingConstraints) -> Dict[str, Any]:
    """Validate a generated grouping and store it for review."""
    validation = validate_grouping(result, constraints)
    if not validation.valid:
        log.info("Grouping for class %s has %d validation issues", class_id, len(validation.issues))
    record = db_save_pending_grouping(class_id, result, validation)
    return {
        "groupingId": record["id"],
        "status": record["status"],
        "grouping": result.model_dump(mode="json"),
        "validation": validation.model_dump(),
    }


def _load_grouping(class_id: str, grouping_id: str, status: Optional[str] = None) -> Dict[str, Any]:
    record = db_get_grouping(class_id, grouping_id, status)
    if not record:
        raise HTTPException(status_code=404, detail="Grouping not found")
    return record


@app.get('/')
def read_root():
    return {'Status': 'The grouping engine is running!', 'version': '1.0.0'}


@app.head('/')
def head_root():
    """Lightweight HEAD endpoint for health/status checks returning 200 without body."""
    return Response(status_code=200)


# -------------------- Class endpoints --------------------

@app.get('/classes/{class_id}/roster')
def get_roster(class_id: str):
    """Enrolled students with their scores."""
    roster = db_list_roster(class_id)
    return {'students': [r.model_dump() for r in roster], 'count': len(roster)}


@app.post('/classes/{class_id}/manual-grouping')
def create_manual_grouping(class_id: str):
    """H-M-L grouping for classes of 3-7 students."""
    roster = db_list_roster(class_id)
    result = manual_group(class_id, roster)
    return _pending_response(class_id, result, default_constraints())


@app.post('/classes/{class_id}/ai-grouping')
def create_ai_grouping(class_id: str, body: Optional[GroupCountRequest] = None):
    """AI grouping for classes of 8+ students; degrades to the fallback heuristic."""
    group_count = body.group_count if body else None
    roster = db_list_roster(class_id)
    log.info("AI grouping requested for class %s (students=%d, groupCount=%s)", class_id, len(roster), group_count)
    result = ai_group(class_id, roster, group_count=group_count)
    return _pending_response(class_id, result, constraints_for_group_count(len(roster), group_count))


@app.post('/classes/{class_id}/fallback-grouping')
def create_fallback_grouping(class_id: str, body: Optional[GroupCountRequest] = None):
    group_count = body.group_count if body else None
    roster = db_list_roster(class_id)
    result = fallback_group(class_id, roster, group_count)
    return _pending_response(class_id, result, constraints_for_group_count(len(roster), group_count))


@app.put('/classes/{class_id}/groups')
def apply_groups(class_id: str, body: ApplyGroupsRequest):
    """Apply a pending grouping (groupingId) or a teacher-edited set of groups.

    Existing groups of the class are replaced.
    """
    if body.grouping_id:
        record = _load_grouping(class_id, body.grouping_id, status="PENDING")
        result = GroupingResult(**record["grouping_data"])
        created = db_apply_grouping(
            class_id, result,
            ai_generated=result.provenance != "manual",
            rationale=body.rationale or result.rationale,
        )
        db_mark_grouping_applied(body.grouping_id)
        return {'groups': created, 'groupingId': body.grouping_id, 'status': 'APPLIED'}

    if not body.groups:
        raise HTTPException(status_code=400, detail="Either groupingId or groups must be provided")

    roster = db_list_roster(class_id)
    by_id = {r.student_id: r for r in roster}
    seen = set()
    constraints = default_constraints()
    groups = []
    for index, override in enumerate(body.groups):
        unknown = [sid for sid in override.student_ids if sid not in by_id]
        if unknown:
            raise HTTPException(status_code=400, detail=f"Students not enrolled in class: {', '.join(unknown)}")
        repeated = [sid for sid in override.student_ids if sid in seen]
        if repeated:
            raise HTTPException(status_code=400, detail=f"Students assigned to more than one group: {', '.join(repeated)}")
        seen.update(override.student_ids)
        members = [to_student_performance(by_id[sid]) for sid in override.student_ids]
        groups.append(build_group(f"group_{index + 1}", override.name, members, constraints, override.rationale))

    rationale = body.rationale or "Groups arranged by the teacher."
    result = build_result(
        groups, [to_student_performance(r) for r in roster], rationale, OVERRIDE_ALGORITHM_VERSION, "manual"
    )
    created = db_apply_grouping(class_id, result, ai_generated=False, rationale=rationale)
    return {'groups': created, 'validation': validate_grouping(result, constraints).model_dump()}


@app.get('/classes/{class_id}/groupings/{grouping_id}')
def get_grouping(class_id: str, grouping_id: str):
    return _load_grouping(class_id, grouping_id)


# -------------------- Analytics endpoints --------------------

@app.get('/classes/{class_id}/group-performance')
def get_group_performance(class_id: str, group_id: Optional[str] = None):
    """Per-group performance; ungrouped students appear as individual groups."""
    roster = db_list_roster(class_id)
    groups = db_list_groups(class_id)
    data = aggregate(class_id, groups, roster, group_id=group_id, metrics_store=db_store_group_performance_metrics)
    if group_id and not data:
        raise HTTPException(status_code=404, detail="Group not found")
    return {'groups': [d.model_dump() for d in data]}


@app.get('/classes/{class_id}/statistics')
def get_class_statistics(class_id: str):
    roster = db_list_roster(class_id)
    groups = db_list_groups(class_id)
    return class_statistics(roster, groups).model_dump()


@app.get('/classes/{class_id}/algorithm-insights/{grouping_id}')
def get_algorithm_insights(class_id: str, grouping_id: str):
    record = _load_grouping(class_id, grouping_id)
    result = GroupingResult(**record["grouping_data"])
    insight = algorithm_insights(result)
    return {'groupingId': grouping_id, 'algorithmVersion': result.algorithm_version, **insight.model_dump()}
