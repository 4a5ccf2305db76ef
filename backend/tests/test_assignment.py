import random

import pytest

from schoolhub.assignment import TeacherSlot, balance_assignments


def _teachers(n):
	return [TeacherSlot(teacher_id=i, name=f"Teacher {i}", teacher_type="regular_teacher") for i in range(1, n + 1)]


def _students(n):
	return [{"student_id": i} for i in range(1, n + 1)]


def test_loads_differ_by_at_most_one():
	groups = balance_assignments(_students(10), _teachers(3), rng=random.Random(1))
	assert [len(g.students) for g in groups] == [4, 3, 3]
	assert [g.teacher.teacher_id for g in groups] == [1, 2, 3]


def test_every_student_assigned_once():
	groups = balance_assignments(_students(25), _teachers(4), rng=random.Random(7))
	ids = sorted(s["student_id"] for g in groups for s in g.students)
	assert ids == list(range(1, 26))


def test_existing_load_is_counted():
	groups = balance_assignments(_students(5), _teachers(2), existing_counts={1: 5}, rng=random.Random(3))
	assert len(groups[0].students) == 0
	assert len(groups[1].students) == 5
	assert [g.total for g in groups] == [5, 5]


def test_teacher_without_students_still_listed():
	groups = balance_assignments(_students(1), _teachers(3), rng=random.Random(0))
	assert len(groups) == 3
	assert sum(len(g.students) for g in groups) == 1


def test_same_seed_same_result():
	a = balance_assignments(_students(12), _teachers(3), rng=random.Random(42))
	b = balance_assignments(_students(12), _teachers(3), rng=random.Random(42))
	assert [g.students for g in a] == [g.students for g in b]


def test_no_teachers():
	with pytest.raises(ValueError):
		balance_assignments(_students(3), [])
