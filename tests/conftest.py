"""
Shared test fixtures for the grouping and analytics engines.
Rosters are built in memory; the text-generation collaborator is a stub
and the db layer is replaced by an in-memory store.
Zero network calls, no MongoDB.
"""
import pytest

from models import EnrollmentRecord, PersistedGroup


def make_record(student_id, pretest, gender="male", posttest="same", retention=None, **extra):
    """Enrollment whose posttest defaults to the pretest, so overall == pretest."""
    return EnrollmentRecord(
        student_id=student_id,
        name=f"Student {student_id}",
        gender=gender,
        email=f"{student_id}@school.test",
        pretest_score=pretest,
        posttest_score=pretest if posttest == "same" else posttest,
        retention_score=retention,
        **extra,
    )


def make_roster(scores, genders=None):
    genders = genders or ["female" if i % 2 == 0 else "male" for i in range(len(scores))]
    return [make_record(f"s{i + 1}", score, gender) for i, (score, gender) in enumerate(zip(scores, genders))]


# High, medium and low students in rotation
MIXED_SCORES = [92, 71, 40, 85, 66, 52, 88, 75, 35, 81, 63, 45]


@pytest.fixture
def mixed_roster():
    """Roster factory cycling through the three tiers with alternating genders."""
    def _build(n):
        return make_roster([MIXED_SCORES[i % len(MIXED_SCORES)] for i in range(n)])
    return _build


@pytest.fixture
def six_students():
    """Pretests [95, 85, 72, 68, 45, 30] with genders F, M, F, M, F, M.

    Posttests repeat the pretests so each overall score equals the pretest;
    with pretests alone a missing posttest counts as 0 and halves the score
    (see test_pretest_only_roster_is_all_low).
    """
    return make_roster([95, 85, 72, 68, 45, 30], ["female", "male"] * 3)


class StubGenerator:
    """Stand-in for the text-generation collaborator.

    Returns ``response`` (or raises it when it is an exception) and keeps
    the prompts it was called with.
    """

    def __init__(self, response=None):
        self.response = response
        self.prompts = []
        self.options = []

    def __call__(self, prompt, options):
        self.prompts.append(prompt)
        self.options.append(options)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


@pytest.fixture
def stub_generate():
    return StubGenerator


class FakeStore:
    """In-memory replacement for the db module functions used by the API."""

    def __init__(self):
        self.rosters = {}
        self.groups = {}
        self.groupings = {}
        self.metrics = []

    def list_roster(self, class_id):
        return list(self.rosters.get(class_id, []))

    def list_groups(self, class_id):
        return list(self.groups.get(class_id, []))

    def save_pending_grouping(self, class_id, result, validation):
        record = {
            "id": f"grouping-{len(self.groupings) + 1}",
            "class_id": class_id,
            "grouping_data": result.model_dump(mode="json"),
            "rationale": result.rationale,
            "algorithm_version": result.algorithm_version,
            "validation": validation.model_dump(),
            "status": "PENDING",
        }
        self.groupings[record["id"]] = record
        return dict(record)

    def get_grouping(self, class_id, grouping_id, status=None):
        record = self.groupings.get(grouping_id)
        if not record or record["class_id"] != class_id:
            return None
        if status and record["status"] != status:
            return None
        return dict(record)

    def mark_grouping_applied(self, grouping_id):
        self.groupings[grouping_id]["status"] = "APPLIED"

    def apply_grouping(self, class_id, result, ai_generated, rationale):
        self.groups[class_id] = [
            PersistedGroup(
                id=f"{class_id}-g{i + 1}",
                name=g.name,
                class_id=class_id,
                member_ids=list(g.student_ids),
                ai_generated=ai_generated,
                rationale=g.rationale or rationale,
            )
            for i, g in enumerate(result.groups)
        ]
        return [{"id": g.id, "name": g.name, "studentCount": len(g.member_ids)} for g in self.groups[class_id]]

    def store_group_performance_metrics(self, class_id, group_id, data):
        self.metrics.append((class_id, group_id))


@pytest.fixture
def store(monkeypatch):
    """Patch the db helpers imported by the API with a FakeStore."""
    import main

    fake = FakeStore()
    monkeypatch.setattr(main, "db_list_roster", fake.list_roster)
    monkeypatch.setattr(main, "db_list_groups", fake.list_groups)
    monkeypatch.setattr(main, "db_save_pending_grouping", fake.save_pending_grouping)
    monkeypatch.setattr(main, "db_get_grouping", fake.get_grouping)
    monkeypatch.setattr(main, "db_mark_grouping_applied", fake.mark_grouping_applied)
    monkeypatch.setattr(main, "db_apply_grouping", fake.apply_grouping)
    monkeypatch.setattr(main, "db_store_group_performance_metrics", fake.store_group_performance_metrics)
    return fake


@pytest.fixture
def client(store):
    from fastapi.testclient import TestClient
    import main

    return TestClient(main.app)
