"""
Test: H-M-L manual grouping for classes of 3-7 students.
"""
import pytest

from conftest import make_record, make_roster
from errors import NoStudentsError, PretestIncompleteError, TooFewStudentsError, TooManyStudentsError
from manual_grouping import MANUAL_ALGORITHM_VERSION, manual_group


def tiers(group):
    dist = group.performance_metrics.ability_distribution
    return dist.high, dist.medium, dist.low


class TestLayouts:
    @pytest.mark.parametrize("count,sizes", [(3, [3]), (4, [2, 2]), (5, [3, 2]), (6, [3, 3]), (7, [3, 4])])
    def test_group_sizes(self, mixed_roster, count, sizes):
        result = manual_group("c1", mixed_roster(count))
        assert [len(g.students) for g in result.groups] == sizes

    @pytest.mark.parametrize("count", [3, 4, 5, 6, 7])
    def test_every_student_exactly_once(self, mixed_roster, count):
        roster = mixed_roster(count)
        result = manual_group("c1", roster)
        assigned = [sid for g in result.groups for sid in g.student_ids]
        assert sorted(assigned) == sorted(r.student_id for r in roster)

    @pytest.mark.parametrize("count", [3, 4, 5, 6, 7])
    def test_single_tier_class_still_partitions(self, count):
        roster = make_roster([95 - i for i in range(count)])
        result = manual_group("c1", roster)
        assert sum(len(g.students) for g in result.groups) == count

    def test_names_and_version(self, mixed_roster):
        result = manual_group("c1", mixed_roster(7))
        assert [g.name for g in result.groups] == ["Group 1", "Group 2"]
        assert [g.id for g in result.groups] == ["manual_group_1", "manual_group_2"]
        assert result.algorithm_version == MANUAL_ALGORITHM_VERSION
        assert result.provenance == "manual"
        assert result.total_students == 7
        assert not result.fallback

    def test_four_students_pairs(self, mixed_roster):
        # 92 H, 71 M, 40 L, 85 H: second pair borrows the remaining high student
        result = manual_group("c1", mixed_roster(4))
        assert result.groups[0].student_ids == ["s1", "s2"]
        assert result.groups[1].student_ids == ["s4", "s3"]

    def test_seven_students_second_group(self, mixed_roster):
        result = manual_group("c1", mixed_roster(7))
        assert tiers(result.groups[0]) == (1, 1, 1)
        assert tiers(result.groups[1]) == (2, 1, 1)


class TestSixStudentScenario:
    def test_two_groups_of_three(self, six_students):
        result = manual_group("c1", six_students)
        assert len(result.groups) == 2
        for group in result.groups:
            assert len(group.students) == 3
            assert tiers(group) == (1, 1, 1)

    def test_strongest_students_lead_each_group(self, six_students):
        result = manual_group("c1", six_students)
        scores = [[s.pretest_score for s in g.students] for g in result.groups]
        assert scores == [[95, 72, 45], [85, 68, 30]]

    def test_pretest_only_roster_is_all_low(self):
        # missing posttests count as 0, so 95 becomes an overall 47.5
        roster = [make_record(f"s{i}", score, posttest=None) for i, score in enumerate([95, 85, 72, 68, 45, 30])]
        result = manual_group("c1", roster)
        assert [len(g.students) for g in result.groups] == [3, 3]
        assert [tiers(g) for g in result.groups] == [(0, 0, 3), (0, 0, 3)]
        assert result.groups[0].students[0].overall_performance == 47.5

    def test_rationale(self, six_students):
        result = manual_group("c1", six_students)
        assert "H-M-L" in result.rationale


class TestPreconditions:
    def test_empty_roster(self):
        with pytest.raises(NoStudentsError):
            manual_group("c1", [])

    def test_too_few(self, mixed_roster):
        with pytest.raises(TooFewStudentsError) as exc:
            manual_group("c1", mixed_roster(2))
        assert exc.value.details == {"currentCount": 2, "minimumRequired": 3}
        assert "At least 3 students" in exc.value.message

    def test_too_many(self, mixed_roster):
        with pytest.raises(TooManyStudentsError) as exc:
            manual_group("c1", mixed_roster(8))
        assert exc.value.details["maximumAllowed"] == 7
        assert "AI grouping" in exc.value.details["suggestion"]

    def test_missing_pretest(self, mixed_roster):
        roster = mixed_roster(4) + [make_record("late", None, posttest=None)]
        with pytest.raises(PretestIncompleteError) as exc:
            manual_group("c1", roster)
        assert exc.value.details["count"] == 1
        assert exc.value.students == [{"id": "late", "name": "Student late", "email": "late@school.test"}]
