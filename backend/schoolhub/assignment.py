from __future__ import annotations

import random
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel


TEACHER_TYPES = ("master_coordinator", "master_remedial", "regular_teacher")


class TeacherSlot(BaseModel):
	teacher_id: int
	name: str
	teacher_type: str


class AssignmentGroup(BaseModel):
	teacher: TeacherSlot
	students: List[Dict[str, Any]]
	existing_count: int = 0

	@property
	def total(self) -> int:
		return self.existing_count + len(self.students)


def shuffle_students(students: Sequence[Dict[str, Any]], rng: Optional[random.Random] = None) -> List[Dict[str, Any]]:
	copy = list(students)
	(rng or random).shuffle(copy)
	return copy


def balance_assignments(
	students: Sequence[Dict[str, Any]],
	teachers: Sequence[TeacherSlot],
	existing_counts: Optional[Mapping[int, int]] = None,
	rng: Optional[random.Random] = None,
) -> List[AssignmentGroup]:
	"""Distribute students across teachers so loads end up as even as possible.

	Students are shuffled, then each one goes to the teacher with the lowest
	current total (students already assigned in the database plus the ones
	handed out so far). Ties go to the teacher listed first. Groups are
	returned in teacher order, including teachers who received nobody.
	"""
	if not teachers:
		raise ValueError("At least one teacher is required")
	counts = existing_counts or {}
	groups = [
		AssignmentGroup(teacher=t, students=[], existing_count=int(counts.get(t.teacher_id, 0)))
		for t in teachers
	]
	for student in shuffle_students(students, rng):
		target = min(range(len(groups)), key=lambda idx: (groups[idx].total, idx))
		groups[target].students.append(student)
	return groups
