from typing import Any, Dict, List, Optional
import logging
import random

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..assignment import AssignmentGroup, TeacherSlot, balance_assignments
from ..db import get_db
from ..models import Role, Student, StudentTeacherAssignment, Subject, User
from ..validation import normalize_role, sanitize_subjects
from .auth import require_roles
from .students import find_subject

router = APIRouter(prefix="/api/master_teacher/coordinator/student-assignments", tags=["assignments"])

logger = logging.getLogger(__name__)

managers = require_roles(Role.SUPER_ADMIN, Role.MASTER_TEACHER, Role.COORDINATOR)

TEACHER_TYPE_BY_ROLE = {
	Role.MASTER_TEACHER: "master_coordinator",
	Role.COORDINATOR: "master_coordinator",
	Role.REMEDIAL_TEACHER: "master_remedial",
	Role.TEACHER: "regular_teacher",
}


class AssignmentRequest(BaseModel):
	grade: int
	subject: str
	# Defaults to every teacher handling the grade and subject
	teacher_ids: Optional[List[int]] = None
	reassign_all: bool = False
	seed: Optional[int] = None


class AssignmentPlan:
	def __init__(self, subject: Subject, groups: List[AssignmentGroup], kept: List[StudentTeacherAssignment], dropped: List[StudentTeacherAssignment]) -> None:
		self.subject = subject
		self.groups = groups
		# Active assignments left untouched / to be deactivated
		self.kept = kept
		self.dropped = dropped


def _teacher_slot(user: User) -> TeacherSlot:
	return TeacherSlot(
		teacher_id=user.user_id,
		name=user.full_name,
		teacher_type=TEACHER_TYPE_BY_ROLE[normalize_role(user.role)],
	)


def _handles(user: User, grade: int, subject: Subject) -> bool:
	if (user.grade or "").strip() != str(grade):
		return False
	subjects = [s.lower() for s in sanitize_subjects(user.subjects)]
	return not subjects or subject.subject_name.lower() in subjects


def _select_teachers(db: Session, req: AssignmentRequest, subject: Subject) -> List[User]:
	if req.teacher_ids:
		teachers = []
		for teacher_id in req.teacher_ids:
			user = db.get(User, teacher_id)
			if user is None or normalize_role(user.role) not in TEACHER_TYPE_BY_ROLE:
				raise HTTPException(status_code=400, detail=f"User {teacher_id} is not a teacher")
			teachers.append(user)
		return teachers
	candidates = db.query(User).order_by(User.user_id).all()
	return [
		u for u in candidates
		if normalize_role(u.role) in TEACHER_TYPE_BY_ROLE and _handles(u, req.grade, subject)
	]


def _student_payload(student: Student) -> Dict[str, Any]:
	return {"student_id": student.student_id, "lrn": student.lrn, "name": student.full_name}


def plan_assignments(db: Session, req: AssignmentRequest) -> AssignmentPlan:
	"""Work out the assignment for a grade and subject without writing it.

	Students whose active assignment points at one of the selected teachers
	keep it (unless ``reassign_all``) and count toward that teacher's load.
	Every other student of the grade is balanced across the teachers.
	"""
	subject = find_subject(db, req.subject)
	if subject is None:
		raise HTTPException(status_code=400, detail=f"Unknown subject: {req.subject}")
	teachers = _select_teachers(db, req, subject)
	if not teachers:
		raise HTTPException(status_code=400, detail="No teachers available for this grade and subject")
	teacher_ids = {t.user_id for t in teachers}

	active = (
		db.query(StudentTeacherAssignment)
		.filter(
			StudentTeacherAssignment.grade == req.grade,
			StudentTeacherAssignment.subject_id == subject.subject_id,
			StudentTeacherAssignment.is_active.is_(True),
		)
		.all()
	)
	if req.reassign_all:
		kept: List[StudentTeacherAssignment] = []
	else:
		kept = [a for a in active if a.teacher_id in teacher_ids]
	dropped = [a for a in active if a not in kept]

	existing_counts: Dict[int, int] = {}
	for a in kept:
		existing_counts[a.teacher_id] = existing_counts.get(a.teacher_id, 0) + 1
	assigned = {a.student_id for a in kept}
	students = [
		_student_payload(s)
		for s in db.query(Student).filter(Student.grade == req.grade).order_by(Student.student_id).all()
		if s.student_id not in assigned
	]
	rng = random.Random(req.seed) if req.seed is not None else None
	groups = balance_assignments(students, [_teacher_slot(t) for t in teachers], existing_counts, rng)
	return AssignmentPlan(subject, groups, kept, dropped)


def _plan_response(req: AssignmentRequest, plan: AssignmentPlan) -> Dict[str, Any]:
	return {
		"grade": req.grade,
		"subject": plan.subject.subject_name,
		"groups": [
			{
				**group.teacher.model_dump(),
				"existing_count": group.existing_count,
				"students": group.students,
				"total": group.total,
			}
			for group in plan.groups
		],
		"assigned": sum(len(group.students) for group in plan.groups),
		"kept": len(plan.kept),
		"deactivated": len(plan.dropped),
	}


@router.post("/preview")
def preview_assignments(req: AssignmentRequest, db: Session = Depends(get_db), _: User = Depends(managers)):
	return _plan_response(req, plan_assignments(db, req))


@router.post("")
def create_assignments(req: AssignmentRequest, db: Session = Depends(get_db), user: User = Depends(managers)):
	plan = plan_assignments(db, req)
	for a in plan.dropped:
		a.is_active = False
	for group in plan.groups:
		for student in group.students:
			db.add(StudentTeacherAssignment(
				student_id=student["student_id"],
				teacher_id=group.teacher.teacher_id,
				grade=req.grade,
				subject_id=plan.subject.subject_id,
				teacher_type=group.teacher.teacher_type,
				assignment_reason="auto-assign",
			))
	db.commit()
	result = _plan_response(req, plan)
	logger.info(
		"Grade %s %s assignment by %s: %d assigned, %d deactivated",
		req.grade, plan.subject.subject_name, user.username, result["assigned"], result["deactivated"],
	)
	return result


@router.get("")
def list_assignments(
	grade: Optional[int] = Query(default=None),
	subject: Optional[str] = Query(default=None),
	db: Session = Depends(get_db),
	_: User = Depends(require_roles(*Role.ALL)),
):
	q = db.query(StudentTeacherAssignment).filter(StudentTeacherAssignment.is_active.is_(True))
	if grade is not None:
		q = q.filter(StudentTeacherAssignment.grade == grade)
	if subject:
		subj = find_subject(db, subject)
		if subj is None:
			raise HTTPException(status_code=400, detail=f"Unknown subject: {subject}")
		q = q.filter(StudentTeacherAssignment.subject_id == subj.subject_id)

	by_teacher: Dict[int, Dict[str, Any]] = {}
	for a in q.order_by(StudentTeacherAssignment.teacher_id, StudentTeacherAssignment.student_id).all():
		entry = by_teacher.get(a.teacher_id)
		if entry is None:
			teacher = db.get(User, a.teacher_id)
			entry = {
				"teacher_id": a.teacher_id,
				"name": teacher.full_name if teacher else None,
				"teacher_type": a.teacher_type,
				"students": [],
			}
			by_teacher[a.teacher_id] = entry
		student = db.get(Student, a.student_id)
		entry["students"].append({
			"assignment_id": a.assignment_id,
			"student_id": a.student_id,
			"lrn": student.lrn if student else None,
			"name": student.full_name if student else None,
			"grade": a.grade,
			"subject_id": a.subject_id,
			"assigned_date": a.assigned_date.isoformat(),
		})
	groups = list(by_teacher.values())
	return {"groups": groups, "total": sum(len(g["students"]) for g in groups)}
