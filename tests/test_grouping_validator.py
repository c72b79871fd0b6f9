"""
Test: post-hoc validation of grouping results.
"""
from conftest import make_record
from grouping_engine import build_result
from grouping_validator import validate_grouping
from manual_grouping import manual_group
from models import default_constraints
from performance import build_group, to_student_performance


def grouping(*groups):
    constraints = default_constraints()
    built = []
    everyone = []
    for index, specs in enumerate(groups):
        members = [
            to_student_performance(make_record(f"g{index}s{i}", score, gender))
            for i, (score, gender) in enumerate(specs)
        ]
        everyone.extend(members)
        built.append(build_group(f"g{index + 1}", f"Group {index + 1}", members, constraints))
    return build_result(built, everyone, "test grouping", "test", "manual")


class TestValidateGrouping:
    def test_clean_grouping(self):
        result = grouping(
            [(90, "male"), (70, "female"), (40, "male"), (65, "female")],
            [(85, "female"), (72, "male"), (50, "female"), (30, "male")],
        )
        report = validate_grouping(result, default_constraints())
        assert report.valid
        assert report.issues == []

    def test_undersized_group_reports_exactly_one_issue(self):
        result = grouping(
            [(90, "male"), (70, "female"), (40, "male"), (65, "female")],
            [(85, "female"), (30, "male")],
        )
        report = validate_grouping(result, default_constraints())
        assert not report.valid
        assert len(report.issues) == 1
        assert "Group 2" in report.issues[0]
        assert "short by 2" in report.issues[0]

    def test_oversized_group(self):
        constraints = default_constraints()
        constraints.max_group_size = 3
        result = grouping([(90, "male"), (70, "female"), (40, "male"), (65, "female")])
        report = validate_grouping(result, constraints)
        assert report.issues == ["Group 1 has 4 students (maximum: 3, over by 1)"]

    def test_minority_of_unbalanced_groups_tolerated(self):
        result = grouping(
            [(90, "male"), (70, "male"), (40, "male"), (65, "male")],
            [(85, "female"), (72, "male"), (50, "female"), (30, "male")],
            [(88, "female"), (61, "male"), (45, "female"), (35, "male")],
        )
        assert validate_grouping(result, default_constraints()).valid

    def test_majority_of_unbalanced_groups(self):
        result = grouping(
            [(90, "male"), (70, "male"), (40, "male"), (65, "male")],
            [(85, "female"), (72, "female"), (50, "female"), (30, "male")],
        )
        report = validate_grouping(result, default_constraints())
        assert len(report.issues) == 1
        assert report.issues[0].startswith("2 of 2 groups have poor gender balance")

    def test_missing_tier(self):
        result = grouping([(90, "male"), (85, "female"), (70, "male"), (65, "female")])
        report = validate_grouping(result, default_constraints())
        assert report.issues == ["No low-performing students distributed across groups"]

    def test_input_not_mutated(self, six_students):
        result = manual_group("c1", six_students)
        before = result.model_dump()
        validate_grouping(result, default_constraints())
        assert result.model_dump() == before

    def test_six_student_layout_is_gender_skewed(self, six_students):
        # F, M, F, M, F, M sorted by score puts every girl in the first group
        report = validate_grouping(manual_group("c1", six_students), default_constraints())
        assert any("poor gender balance" in issue for issue in report.issues)
        assert sum("has only 3 students" in issue for issue in report.issues) == 2
