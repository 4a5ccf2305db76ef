"""
Assessments Router
==================

Quiz builder for teachers and the quiz-taking flow for students.

Teachers create assessments made of sections and questions (multiple
choice, true/false, short answer). An unpublished assessment is a draft and
may be incomplete; publishing requires every question to be answerable.
Each assessment gets a six character quiz code and a QR code of the join URL.

Students do not log in: they join with the quiz code and their LRN, start
(or resume) an attempt, save answers one at a time and finally submit.
Correct answers are never sent to the student side.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import (
	Assessment,
	AssessmentAnswer,
	AssessmentAttempt,
	AssessmentChoice,
	AssessmentQuestion,
	Role,
	Student,
	User,
)
from ..quiz import (
	QUESTION_TYPES,
	build_access_url,
	generate_qr_token,
	generate_unique_quiz_code,
	normalize_question_type,
	normalize_quiz_code,
	qr_data_url,
	qr_png,
)
from ..validation import normalize_role
from .auth import require_roles
from .students import find_level, find_subject

router = APIRouter(prefix="/api/assessments", tags=["assessments"])

logger = logging.getLogger(__name__)

staff = require_roles(*Role.ALL)


# ============================================================================
# REQUEST / RESPONSE MODELS
# ============================================================================

class ChoiceIn(BaseModel):
	choice_text: str
	is_correct: bool = False


class QuestionIn(BaseModel):
	question_text: str = ""
	question_type: str = "multiple_choice"
	points: float = 1
	choices: List[ChoiceIn] = []
	correct_answer_text: Optional[str] = None


class SectionIn(BaseModel):
	key: Optional[str] = None
	title: Optional[str] = None
	description: Optional[str] = None
	questions: List[QuestionIn] = []


class AssessmentIn(BaseModel):
	title: str
	description: Optional[str] = None
	subject: Optional[str] = None
	grade: Optional[int] = None
	phonemic_level: Optional[str] = None
	start_time: Optional[datetime] = None
	end_time: Optional[datetime] = None
	is_published: bool = False
	# Questions outside any section, followed by sectioned questions
	questions: List[QuestionIn] = []
	sections: List[SectionIn] = []


class AssessmentUpdate(BaseModel):
	title: Optional[str] = None
	description: Optional[str] = None
	subject: Optional[str] = None
	grade: Optional[int] = None
	phonemic_level: Optional[str] = None
	start_time: Optional[datetime] = None
	end_time: Optional[datetime] = None
	is_published: Optional[bool] = None
	questions: Optional[List[QuestionIn]] = None
	sections: Optional[List[SectionIn]] = None


class JoinRequest(BaseModel):
	quiz_code: str
	lrn: str


class AnswerRequest(BaseModel):
	lrn: str
	question_id: int
	selected_choice_id: Optional[int] = None
	answer_text: Optional[str] = None


class SubmitRequest(BaseModel):
	lrn: str


class _FlatQuestion:
	def __init__(self, question: QuestionIn, section: Optional[SectionIn], index: int) -> None:
		self.question = question
		self.section = section
		self.index = index


# ============================================================================
# VALIDATION AND BUILDING
# ============================================================================

def _flatten(questions: List[QuestionIn], sections: List[SectionIn]) -> List[_FlatQuestion]:
	flat = [_FlatQuestion(q, None, 0) for q in questions]
	for section in sections:
		flat.extend(_FlatQuestion(q, section, 0) for q in section.questions)
	for i, item in enumerate(flat, 1):
		item.index = i
	return flat


def _prepare_choices(question: QuestionIn, qtype: str) -> List[ChoiceIn]:
	choices = [c for c in question.choices if c.choice_text.strip()]
	if qtype == "true_false" and not choices:
		answer = (question.correct_answer_text or "").strip().lower()
		choices = [
			ChoiceIn(choice_text="True", is_correct=answer == "true"),
			ChoiceIn(choice_text="False", is_correct=answer == "false"),
		]
	if qtype == "short_answer":
		return []
	return choices


def _validate_questions(flat: List[_FlatQuestion], publish: bool) -> None:
	"""Raise 400 for malformed questions.

	Question types must always be known; drafts may otherwise be
	incomplete. Publishing requires at least one question, question text,
	positive points, two or more choices and one correct choice for choice
	questions.
	"""
	if publish and not flat:
		raise HTTPException(status_code=400, detail="A published assessment needs at least one question")
	for item in flat:
		q = item.question
		qtype = normalize_question_type(q.question_type)
		if qtype not in QUESTION_TYPES:
			raise HTTPException(status_code=400, detail=f"Question {item.index}: unknown question type {q.question_type!r}")
		if q.points < 0:
			raise HTTPException(status_code=400, detail=f"Question {item.index}: points cannot be negative")
		if not publish:
			continue
		if not q.question_text.strip():
			raise HTTPException(status_code=400, detail=f"Question {item.index}: question text is required")
		if q.points <= 0:
			raise HTTPException(status_code=400, detail=f"Question {item.index}: points must be positive")
		if qtype == "short_answer":
			continue
		choices = _prepare_choices(q, qtype)
		if len(choices) < 2:
			raise HTTPException(status_code=400, detail=f"Question {item.index}: at least two choices are required")
		if not any(c.is_correct for c in choices):
			raise HTTPException(status_code=400, detail=f"Question {item.index}: mark the correct choice")


def _build_questions(assessment: Assessment, flat: List[_FlatQuestion]) -> None:
	assessment.questions.clear()
	for item in flat:
		q = item.question
		qtype = normalize_question_type(q.question_type)
		question = AssessmentQuestion(
			question_text=q.question_text.strip(),
			question_type=qtype,
			points=q.points,
			question_order=item.index,
			correct_answer_text=(q.correct_answer_text or "").strip() or None,
			section_key=item.section.key if item.section else None,
			section_title=item.section.title if item.section else None,
			section_description=item.section.description if item.section else None,
		)
		for c in _prepare_choices(q, qtype):
			question.choices.append(AssessmentChoice(choice_text=c.choice_text.strip(), is_correct=c.is_correct))
		assessment.questions.append(question)


def _apply_classification(db: Session, assessment: Assessment, subject_name: Optional[str], level_name: Optional[str]) -> None:
	if subject_name is None:
		assessment.subject_id = None
		assessment.phonemic_id = None
		if level_name:
			raise HTTPException(status_code=400, detail="A phonemic level needs a subject")
		return
	subject = find_subject(db, subject_name)
	if subject is None:
		raise HTTPException(status_code=400, detail=f"Unknown subject: {subject_name}")
	assessment.subject_id = subject.subject_id
	assessment.phonemic_id = None
	if level_name:
		level = find_level(db, subject, level_name)
		if level is None:
			raise HTTPException(status_code=400, detail=f"Unknown {subject.subject_name} level: {level_name}")
		assessment.phonemic_id = level.phonemic_id


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
	# Stored times are naive UTC; offsets from the client are folded in
	if value is None or value.tzinfo is None:
		return value
	return value.astimezone(timezone.utc).replace(tzinfo=None)


def _check_window(start: Optional[datetime], end: Optional[datetime]) -> None:
	if start and end and end <= start:
		raise HTTPException(status_code=400, detail="End time must be after start time")


# ============================================================================
# SERIALIZATION
# ============================================================================

def _max_score(assessment: Assessment) -> float:
	return float(sum(q.points for q in assessment.questions))


def _question_dict(q: AssessmentQuestion, *, reveal: bool) -> Dict[str, Any]:
	data: Dict[str, Any] = {
		"question_id": q.question_id,
		"question_text": q.question_text,
		"question_type": q.question_type,
		"points": q.points,
		"question_order": q.question_order,
		"section_key": q.section_key,
		"section_title": q.section_title,
		"section_description": q.section_description,
		"choices": [
			{"choice_id": c.choice_id, "choice_text": c.choice_text, **({"is_correct": c.is_correct} if reveal else {})}
			for c in q.choices
		],
	}
	if reveal:
		data["correct_answer_text"] = q.correct_answer_text
	return data


def _summary(db: Session, a: Assessment) -> Dict[str, Any]:
	submitted = (
		db.query(func.count(AssessmentAttempt.attempt_id))
		.filter(AssessmentAttempt.assessment_id == a.assessment_id, AssessmentAttempt.status == "submitted")
		.scalar()
	)
	return {
		"assessment_id": a.assessment_id,
		"title": a.title,
		"description": a.description,
		"subject": a.subject.subject_name if a.subject else None,
		"grade": a.grade,
		"phonemic_level": a.phonemic_level.level_name if a.phonemic_level else None,
		"start_time": a.start_time.isoformat() if a.start_time else None,
		"end_time": a.end_time.isoformat() if a.end_time else None,
		"is_published": a.is_published,
		"status": "published" if a.is_published else "draft",
		"quiz_code": a.quiz_code,
		"created_by": a.created_by,
		"creator_role": a.creator_role,
		"question_count": len(a.questions),
		"total_points": _max_score(a),
		"submitted_count": submitted or 0,
		"created_at": a.created_at.isoformat(),
		"updated_at": a.updated_at.isoformat(),
	}


def _detail(db: Session, a: Assessment) -> Dict[str, Any]:
	data = _summary(db, a)
	data["questions"] = [_question_dict(q, reveal=True) for q in a.questions]
	return data


def _get_assessment(db: Session, assessment_id: int) -> Assessment:
	a = db.get(Assessment, assessment_id)
	if a is None:
		raise HTTPException(status_code=404, detail="Assessment not found")
	return a


def _require_owner(a: Assessment, user: User) -> None:
	if a.created_by != user.user_id and normalize_role(user.role) != Role.SUPER_ADMIN:
		raise HTTPException(status_code=403, detail="Only the creator can change this assessment")


# ============================================================================
# TEACHER ENDPOINTS
# ============================================================================

@router.post("", status_code=201)
def create_assessment(req: AssessmentIn, db: Session = Depends(get_db), user: User = Depends(staff)):
	title = req.title.strip()
	if not title:
		raise HTTPException(status_code=400, detail="Title is required")
	start_time, end_time = _naive_utc(req.start_time), _naive_utc(req.end_time)
	_check_window(start_time, end_time)
	flat = _flatten(req.questions, req.sections)
	_validate_questions(flat, req.is_published)

	code = generate_unique_quiz_code(
		lambda c: db.query(Assessment.assessment_id).filter(Assessment.quiz_code == c).first() is not None
	)
	a = Assessment(
		title=title,
		description=(req.description or "").strip() or None,
		grade=req.grade,
		created_by=user.user_id,
		creator_role=normalize_role(user.role),
		start_time=start_time,
		end_time=end_time,
		is_published=req.is_published,
		quiz_code=code,
		qr_token=generate_qr_token(),
	)
	_apply_classification(db, a, req.subject, req.phonemic_level)
	_build_questions(a, flat)
	db.add(a)
	db.commit()
	db.refresh(a)
	logger.info("Assessment %s (%s) created by %s", a.assessment_id, a.quiz_code, user.username)
	return _detail(db, a)


@router.get("")
def list_assessments(
	subject: Optional[str] = Query(default=None),
	phonemic_level: Optional[str] = Query(default=None),
	mine: bool = Query(default=False),
	published: Optional[bool] = Query(default=None),
	db: Session = Depends(get_db),
	user: User = Depends(staff),
):
	q = db.query(Assessment)
	if subject:
		subj = find_subject(db, subject)
		if subj is None:
			raise HTTPException(status_code=400, detail=f"Unknown subject: {subject}")
		q = q.filter(Assessment.subject_id == subj.subject_id)
		if phonemic_level:
			level = find_level(db, subj, phonemic_level)
			if level is None:
				raise HTTPException(status_code=400, detail=f"Unknown {subj.subject_name} level: {phonemic_level}")
			q = q.filter(Assessment.phonemic_id == level.phonemic_id)
	if mine:
		q = q.filter(Assessment.created_by == user.user_id)
	if published is not None:
		q = q.filter(Assessment.is_published.is_(published))
	rows = q.order_by(Assessment.created_at.desc(), Assessment.assessment_id.desc()).all()
	return {"assessments": [_summary(db, a) for a in rows], "total": len(rows)}


@router.get("/{assessment_id}")
def get_assessment(assessment_id: int, db: Session = Depends(get_db), _: User = Depends(staff)):
	return _detail(db, _get_assessment(db, assessment_id))


@router.put("/{assessment_id}")
def update_assessment(assessment_id: int, req: AssessmentUpdate, db: Session = Depends(get_db), user: User = Depends(staff)):
	a = _get_assessment(db, assessment_id)
	_require_owner(a, user)
	changes = req.model_dump(exclude_unset=True)

	if "title" in changes:
		title = (req.title or "").strip()
		if not title:
			raise HTTPException(status_code=400, detail="Title is required")
		a.title = title
	if "description" in changes:
		a.description = (req.description or "").strip() or None
	if "grade" in changes:
		a.grade = req.grade
	if "subject" in changes or "phonemic_level" in changes:
		subject_name = req.subject if "subject" in changes else (a.subject.subject_name if a.subject else None)
		level_name = req.phonemic_level if "phonemic_level" in changes else None
		_apply_classification(db, a, subject_name, level_name)
	if "start_time" in changes:
		a.start_time = _naive_utc(req.start_time)
	if "end_time" in changes:
		a.end_time = _naive_utc(req.end_time)
	_check_window(a.start_time, a.end_time)
	publish = req.is_published if req.is_published is not None else a.is_published

	if req.questions is not None or req.sections is not None:
		has_submissions = any(att.status == "submitted" for att in a.attempts)
		if has_submissions:
			raise HTTPException(status_code=409, detail="Questions cannot change after students have submitted")
		flat = _flatten(req.questions or [], req.sections or [])
		_validate_questions(flat, publish)
		# Answers in unfinished attempts refer to the questions being replaced
		attempt_ids = [att.attempt_id for att in a.attempts]
		if attempt_ids:
			db.query(AssessmentAnswer).filter(AssessmentAnswer.attempt_id.in_(attempt_ids)).delete(synchronize_session=False)
		_build_questions(a, flat)
	elif publish and not a.is_published:
		# Publishing a saved draft: validate what is stored
		stored = [
			_FlatQuestion(
				QuestionIn(
					question_text=q.question_text,
					question_type=q.question_type,
					points=q.points,
					choices=[ChoiceIn(choice_text=c.choice_text, is_correct=c.is_correct) for c in q.choices],
					correct_answer_text=q.correct_answer_text,
				),
				None,
				q.question_order,
			)
			for q in a.questions
		]
		_validate_questions(stored, True)
	a.is_published = publish
	db.commit()
	db.refresh(a)
	return _detail(db, a)


@router.delete("/{assessment_id}")
def delete_assessment(assessment_id: int, db: Session = Depends(get_db), user: User = Depends(staff)):
	a = _get_assessment(db, assessment_id)
	_require_owner(a, user)
	db.delete(a)
	db.commit()
	logger.info("Assessment %s deleted by %s", assessment_id, user.username)
	return {"ok": True, "assessment_id": assessment_id}


@router.get("/{assessment_id}/qr")
def assessment_qr(assessment_id: int, db: Session = Depends(get_db), _: User = Depends(staff)):
	a = _get_assessment(db, assessment_id)
	return Response(content=qr_png(build_access_url(a.quiz_code)), media_type="image/png")


@router.get("/{assessment_id}/access")
def assessment_access(assessment_id: int, db: Session = Depends(get_db), _: User = Depends(staff)):
	a = _get_assessment(db, assessment_id)
	url = build_access_url(a.quiz_code)
	return {
		"assessment_id": a.assessment_id,
		"quiz_code": a.quiz_code,
		"qr_token": a.qr_token,
		"url": url,
		"qr_data_url": qr_data_url(url),
		"is_published": a.is_published,
	}


@router.get("/{assessment_id}/responses")
def assessment_responses(assessment_id: int, db: Session = Depends(get_db), _: User = Depends(staff)):
	a = _get_assessment(db, assessment_id)
	attempts = (
		db.query(AssessmentAttempt)
		.filter(AssessmentAttempt.assessment_id == a.assessment_id)
		.order_by(AssessmentAttempt.started_at)
		.all()
	)
	max_score = _max_score(a)
	responses = []
	for att in attempts:
		student = att.student
		responses.append({
			"attempt_id": att.attempt_id,
			"student_id": att.student_id,
			"lrn": att.lrn,
			"name": student.full_name if student else None,
			"status": att.status,
			"total_score": att.total_score,
			"max_score": max_score,
			"percentage": round(att.total_score / max_score * 100, 1) if max_score else 0.0,
			"answered": len(att.answers),
			"started_at": att.started_at.isoformat(),
			"submitted_at": att.submitted_at.isoformat() if att.submitted_at else None,
		})
	submitted = [r for r in responses if r["status"] == "submitted"]
	return {
		"assessment_id": a.assessment_id,
		"title": a.title,
		"max_score": max_score,
		"responses": responses,
		"submitted_count": len(submitted),
		"average_score": round(sum(r["total_score"] for r in submitted) / len(submitted), 2) if submitted else None,
	}


# ============================================================================
# STUDENT ENDPOINTS (no login; identified by quiz code and LRN)
# ============================================================================

def _open_assessment(db: Session, quiz_code: str) -> Assessment:
	code = normalize_quiz_code(quiz_code)
	a = db.query(Assessment).filter(Assessment.quiz_code == code).first() if code else None
	if a is None:
		raise HTTPException(status_code=404, detail="Invalid quiz code")
	if not a.is_published:
		raise HTTPException(status_code=403, detail="This quiz is not published yet")
	now = datetime.utcnow()
	if a.start_time and now < a.start_time:
		raise HTTPException(status_code=403, detail="This quiz is not open yet")
	if a.end_time and now > a.end_time:
		raise HTTPException(status_code=403, detail="This quiz is already closed")
	return a


def _student_by_lrn(db: Session, lrn: str) -> Student:
	student = db.query(Student).filter(Student.lrn == (lrn or "").strip()).first()
	if student is None:
		raise HTTPException(status_code=404, detail="No student found with that LRN")
	return student


def _student_attempt(db: Session, attempt_id: int, lrn: str) -> AssessmentAttempt:
	attempt = db.get(AssessmentAttempt, attempt_id)
	if attempt is None:
		raise HTTPException(status_code=404, detail="Attempt not found")
	if attempt.lrn != (lrn or "").strip():
		raise HTTPException(status_code=403, detail="This attempt belongs to another student")
	return attempt


def _public_assessment(a: Assessment) -> Dict[str, Any]:
	return {
		"assessment_id": a.assessment_id,
		"title": a.title,
		"description": a.description,
		"subject": a.subject.subject_name if a.subject else None,
		"grade": a.grade,
		"end_time": a.end_time.isoformat() if a.end_time else None,
		"question_count": len(a.questions),
		"total_points": _max_score(a),
	}


@router.post("/join")
def join_assessment(req: JoinRequest, db: Session = Depends(get_db)):
	a = _open_assessment(db, req.quiz_code)
	student = _student_by_lrn(db, req.lrn)
	existing = (
		db.query(AssessmentAttempt)
		.filter(AssessmentAttempt.assessment_id == a.assessment_id, AssessmentAttempt.student_id == student.student_id)
		.first()
	)
	return {
		"assessment": _public_assessment(a),
		"student": {"student_id": student.student_id, "lrn": student.lrn, "name": student.full_name},
		"attempt_status": existing.status if existing else None,
	}


@router.post("/attempts")
def start_attempt(req: JoinRequest, db: Session = Depends(get_db)):
	"""Start an attempt, or resume the student's unfinished one.

	A submitted attempt cannot be reopened (403). An attempt recorded under
	the same LRN for a different student record means the LRN was reused
	and is rejected with 409.
	"""
	a = _open_assessment(db, req.quiz_code)
	student = _student_by_lrn(db, req.lrn)
	same_lrn = (
		db.query(AssessmentAttempt)
		.filter(AssessmentAttempt.assessment_id == a.assessment_id, AssessmentAttempt.lrn == student.lrn)
		.all()
	)
	if any(att.student_id != student.student_id for att in same_lrn):
		raise HTTPException(status_code=409, detail="This LRN has already been used for this quiz")
	attempt = next((att for att in same_lrn if att.student_id == student.student_id), None)
	resumed = attempt is not None
	if attempt is not None and attempt.status == "submitted":
		raise HTTPException(status_code=403, detail="You have already completed this quiz")
	if attempt is None:
		attempt = AssessmentAttempt(assessment_id=a.assessment_id, student_id=student.student_id, lrn=student.lrn)
		db.add(attempt)
		db.commit()
		db.refresh(attempt)
	return {
		"attempt_id": attempt.attempt_id,
		"status": attempt.status,
		"resumed": resumed,
		"assessment": _public_assessment(a),
		"questions": [_question_dict(q, reveal=False) for q in a.questions],
		"answers": [
			{"question_id": ans.question_id, "selected_choice_id": ans.selected_choice_id, "answer_text": ans.answer_text}
			for ans in attempt.answers
		],
	}


@router.post("/attempts/{attempt_id}/answer")
def save_answer(attempt_id: int, req: AnswerRequest, db: Session = Depends(get_db)):
	attempt = _student_attempt(db, attempt_id, req.lrn)
	if attempt.status == "submitted":
		raise HTTPException(status_code=409, detail="This attempt has already been submitted")
	question = db.get(AssessmentQuestion, req.question_id)
	if question is None or question.assessment_id != attempt.assessment_id:
		raise HTTPException(status_code=404, detail="Question not found in this quiz")

	answer_text = (req.answer_text or "").strip() or None
	if question.question_type == "short_answer":
		choice_id = None
		expected = (question.correct_answer_text or "").strip().lower()
		is_correct = bool(expected) and (answer_text or "").lower() == expected
	else:
		if req.selected_choice_id is None:
			raise HTTPException(status_code=400, detail="Select a choice for this question")
		choice = db.get(AssessmentChoice, req.selected_choice_id)
		if choice is None or choice.question_id != question.question_id:
			raise HTTPException(status_code=400, detail="Choice does not belong to this question")
		choice_id = choice.choice_id
		is_correct = bool(choice.is_correct)
	score = float(question.points) if is_correct else 0.0

	answer = (
		db.query(AssessmentAnswer)
		.filter(AssessmentAnswer.attempt_id == attempt.attempt_id, AssessmentAnswer.question_id == question.question_id)
		.first()
	)
	if answer is None:
		answer = AssessmentAnswer(attempt_id=attempt.attempt_id, question_id=question.question_id)
		db.add(answer)
	answer.selected_choice_id = choice_id
	answer.answer_text = answer_text
	answer.is_correct = is_correct
	answer.score = score
	db.commit()
	return {"attempt_id": attempt.attempt_id, "question_id": question.question_id, "saved": True}


@router.post("/attempts/{attempt_id}/submit")
def submit_attempt(attempt_id: int, req: SubmitRequest, db: Session = Depends(get_db)):
	attempt = _student_attempt(db, attempt_id, req.lrn)
	if attempt.status == "submitted":
		raise HTTPException(status_code=409, detail="This attempt has already been submitted")
	total = (
		db.query(func.coalesce(func.sum(AssessmentAnswer.score), 0))
		.join(AssessmentQuestion, AssessmentQuestion.question_id == AssessmentAnswer.question_id)
		.filter(
			AssessmentAnswer.attempt_id == attempt.attempt_id,
			AssessmentQuestion.assessment_id == attempt.assessment_id,
		)
		.scalar()
	)
	attempt.total_score = float(total or 0)
	attempt.status = "submitted"
	attempt.submitted_at = datetime.utcnow()
	db.commit()
	return {
		"attempt_id": attempt.attempt_id,
		"status": attempt.status,
		"total_score": attempt.total_score,
		"max_score": _max_score(attempt.assessment),
		"submitted_at": attempt.submitted_at.isoformat(),
	}
