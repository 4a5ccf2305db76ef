from __future__ import annotations
from datetime import datetime
from sqlalchemy import Boolean, Column, String, DateTime, Float, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from .db import Base


class Role:
	SUPER_ADMIN = "super_admin"
	MASTER_TEACHER = "master_teacher"
	COORDINATOR = "coordinator"
	REMEDIAL_TEACHER = "remedial_teacher"
	TEACHER = "teacher"

	ALL = (SUPER_ADMIN, MASTER_TEACHER, COORDINATOR, REMEDIAL_TEACHER, TEACHER)
	STAFF = (MASTER_TEACHER, COORDINATOR, REMEDIAL_TEACHER, TEACHER)

	LABELS = {
		SUPER_ADMIN: "Super Admin",
		MASTER_TEACHER: "Master Teacher",
		COORDINATOR: "Coordinator",
		REMEDIAL_TEACHER: "Remedial Teacher",
		TEACHER: "Teacher",
	}


class User(Base):
	__tablename__ = "users"
	user_id = Column(Integer, primary_key=True, autoincrement=True)
	username = Column(String(128), unique=True, index=True, nullable=False)
	email = Column(String(256), unique=True, index=True, nullable=False)
	password_hash = Column(String(256), nullable=False)
	first_name = Column(String(80), nullable=False)
	middle_name = Column(String(80), nullable=True)
	last_name = Column(String(80), nullable=False)
	suffix = Column(String(20), nullable=True)
	role = Column(String(32), index=True, nullable=False)
	phone_number = Column(String(20), nullable=True)
	# Grade handled (teachers) and section/subjects as entered by the admin
	grade = Column(String(10), nullable=True)
	section = Column(String(40), nullable=True)
	subjects = Column(String(200), nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	@property
	def full_name(self) -> str:
		parts = [self.first_name, self.middle_name, self.last_name, self.suffix]
		return " ".join(p.strip() for p in parts if p and p.strip())


class AuthSession(Base):
	__tablename__ = "auth_sessions"
	# jti of the issued token
	session_id = Column(String(64), primary_key=True)
	user_id = Column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), index=True, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	last_activity_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ArchivedUser(Base):
	__tablename__ = "archive_users"
	archive_id = Column(Integer, primary_key=True, autoincrement=True)
	user_id = Column(Integer, nullable=True)
	role = Column(String(32), nullable=True)
	name = Column(String(255), nullable=True)
	username = Column(String(128), nullable=True)
	email = Column(String(256), nullable=True)
	phone_number = Column(String(20), nullable=True)
	grade = Column(String(10), nullable=True)
	section = Column(String(40), nullable=True)
	subjects = Column(String(200), nullable=True)
	reason = Column(String(255), nullable=True)
	archived_by = Column(Integer, nullable=True)
	timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)


class Subject(Base):
	__tablename__ = "subjects"
	subject_id = Column(Integer, primary_key=True, autoincrement=True)
	subject_name = Column(String(60), unique=True, nullable=False)

	levels = relationship("PhonemicLevel", back_populates="subject", order_by="PhonemicLevel.level_order")


class PhonemicLevel(Base):
	__tablename__ = "phonemic_levels"
	__table_args__ = (UniqueConstraint("subject_id", "level_name", name="uq_phonemic_subject_level"),)
	phonemic_id = Column(Integer, primary_key=True, autoincrement=True)
	subject_id = Column(Integer, ForeignKey("subjects.subject_id"), nullable=False)
	level_name = Column(String(60), nullable=False)
	level_order = Column(Integer, nullable=False, default=0)

	subject = relationship("Subject", back_populates="levels")


class Student(Base):
	__tablename__ = "students"
	student_id = Column(Integer, primary_key=True, autoincrement=True)
	# Learner Reference Number
	lrn = Column(String(20), unique=True, index=True, nullable=False)
	first_name = Column(String(80), nullable=False)
	middle_name = Column(String(80), nullable=True)
	last_name = Column(String(80), nullable=False)
	grade = Column(Integer, index=True, nullable=False)
	section = Column(String(40), nullable=True)
	gender = Column(String(10), nullable=True)
	guardian_name = Column(String(160), nullable=True)
	guardian_contact = Column(String(20), nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	levels = relationship("StudentSubjectLevel", back_populates="student", cascade="all, delete-orphan")

	@property
	def full_name(self) -> str:
		parts = [self.first_name, self.middle_name, self.last_name]
		return " ".join(p.strip() for p in parts if p and p.strip())


class StudentSubjectLevel(Base):
	__tablename__ = "student_subject_levels"
	__table_args__ = (UniqueConstraint("student_id", "subject_id", name="uq_student_subject_level"),)
	id = Column(Integer, primary_key=True, autoincrement=True)
	student_id = Column(Integer, ForeignKey("students.student_id", ondelete="CASCADE"), nullable=False)
	subject_id = Column(Integer, ForeignKey("subjects.subject_id"), nullable=False)
	phonemic_id = Column(Integer, ForeignKey("phonemic_levels.phonemic_id"), nullable=False)
	assessed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	student = relationship("Student", back_populates="levels")
	subject = relationship("Subject")
	phonemic_level = relationship("PhonemicLevel")


class StudentTeacherAssignment(Base):
	__tablename__ = "student_teacher_assignments"
	assignment_id = Column(Integer, primary_key=True, autoincrement=True)
	student_id = Column(Integer, ForeignKey("students.student_id", ondelete="CASCADE"), index=True, nullable=False)
	teacher_id = Column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), index=True, nullable=False)
	grade = Column(Integer, nullable=False)
	subject_id = Column(Integer, ForeignKey("subjects.subject_id"), nullable=False)
	# master_coordinator | master_remedial | regular_teacher
	teacher_type = Column(String(32), nullable=False)
	assignment_reason = Column(String(100), nullable=True)
	assigned_date = Column(DateTime, default=datetime.utcnow, nullable=False)
	is_active = Column(Boolean, default=True, nullable=False)


class ArchivedStudent(Base):
	__tablename__ = "archive_students"
	archive_id = Column(Integer, primary_key=True, autoincrement=True)
	student_id = Column(Integer, nullable=True)
	lrn = Column(String(20), nullable=True)
	first_name = Column(String(80), nullable=True)
	middle_name = Column(String(80), nullable=True)
	last_name = Column(String(80), nullable=True)
	grade = Column(Integer, nullable=True)
	section = Column(String(40), nullable=True)
	gender = Column(String(10), nullable=True)
	guardian_name = Column(String(160), nullable=True)
	guardian_contact = Column(String(20), nullable=True)
	reason = Column(String(255), nullable=True)
	archived_by = Column(Integer, nullable=True)
	timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)


class Assessment(Base):
	__tablename__ = "assessments"
	assessment_id = Column(Integer, primary_key=True, autoincrement=True)
	title = Column(String(255), nullable=False)
	description = Column(Text, nullable=True)
	subject_id = Column(Integer, ForeignKey("subjects.subject_id"), nullable=True)
	grade = Column(Integer, nullable=True)
	phonemic_id = Column(Integer, ForeignKey("phonemic_levels.phonemic_id"), nullable=True)
	# Plain id so archiving the creator keeps the assessment
	created_by = Column(Integer, index=True, nullable=False)
	creator_role = Column(String(32), nullable=False)
	start_time = Column(DateTime, nullable=True)
	end_time = Column(DateTime, nullable=True)
	is_published = Column(Boolean, default=False, nullable=False)
	quiz_code = Column(String(6), unique=True, index=True, nullable=False)
	qr_token = Column(String(64), nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	subject = relationship("Subject")
	phonemic_level = relationship("PhonemicLevel")
	questions = relationship(
		"AssessmentQuestion",
		back_populates="assessment",
		cascade="all, delete-orphan",
		order_by="AssessmentQuestion.question_order",
	)
	attempts = relationship("AssessmentAttempt", back_populates="assessment", cascade="all, delete-orphan")


class AssessmentQuestion(Base):
	__tablename__ = "assessment_questions"
	question_id = Column(Integer, primary_key=True, autoincrement=True)
	assessment_id = Column(Integer, ForeignKey("assessments.assessment_id", ondelete="CASCADE"), index=True, nullable=False)
	question_text = Column(Text, nullable=False)
	# multiple_choice | true_false | short_answer
	question_type = Column(String(32), nullable=False)
	points = Column(Float, default=1, nullable=False)
	question_order = Column(Integer, default=0, nullable=False)
	correct_answer_text = Column(Text, nullable=True)
	section_key = Column(String(100), nullable=True)
	section_title = Column(String(255), nullable=True)
	section_description = Column(Text, nullable=True)

	assessment = relationship("Assessment", back_populates="questions")
	choices = relationship(
		"AssessmentChoice",
		back_populates="question",
		cascade="all, delete-orphan",
		order_by="AssessmentChoice.choice_id",
	)


class AssessmentChoice(Base):
	__tablename__ = "assessment_question_choices"
	choice_id = Column(Integer, primary_key=True, autoincrement=True)
	question_id = Column(Integer, ForeignKey("assessment_questions.question_id", ondelete="CASCADE"), index=True, nullable=False)
	choice_text = Column(Text, nullable=False)
	is_correct = Column(Boolean, default=False, nullable=False)

	question = relationship("AssessmentQuestion", back_populates="choices")


class AssessmentAttempt(Base):
	__tablename__ = "assessment_attempts"
	attempt_id = Column(Integer, primary_key=True, autoincrement=True)
	assessment_id = Column(Integer, ForeignKey("assessments.assessment_id", ondelete="CASCADE"), index=True, nullable=False)
	student_id = Column(Integer, ForeignKey("students.student_id", ondelete="CASCADE"), index=True, nullable=False)
	lrn = Column(String(20), nullable=False)
	started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	submitted_at = Column(DateTime, nullable=True)
	total_score = Column(Float, default=0, nullable=False)
	# in_progress | submitted
	status = Column(String(20), default="in_progress", nullable=False)

	assessment = relationship("Assessment", back_populates="attempts")
	student = relationship("Student")
	answers = relationship("AssessmentAnswer", back_populates="attempt", cascade="all, delete-orphan")


class AssessmentAnswer(Base):
	__tablename__ = "assessment_student_answers"
	__table_args__ = (UniqueConstraint("attempt_id", "question_id", name="uq_attempt_question"),)
	answer_id = Column(Integer, primary_key=True, autoincrement=True)
	attempt_id = Column(Integer, ForeignKey("assessment_attempts.attempt_id", ondelete="CASCADE"), index=True, nullable=False)
	question_id = Column(Integer, ForeignKey("assessment_questions.question_id", ondelete="CASCADE"), nullable=False)
	selected_choice_id = Column(Integer, nullable=True)
	answer_text = Column(Text, nullable=True)
	is_correct = Column(Boolean, nullable=True)
	score = Column(Float, default=0, nullable=False)

	attempt = relationship("AssessmentAttempt", back_populates="answers")


class FlashcardPerformance(Base):
	__tablename__ = "flashcard_performance"
	id = Column(Integer, primary_key=True, autoincrement=True)
	student_id = Column(Integer, ForeignKey("students.student_id", ondelete="CASCADE"), index=True, nullable=False)
	subject = Column(String(60), nullable=False)
	phonemic_level = Column(String(60), nullable=True)
	card_index = Column(Integer, default=0, nullable=False)
	sentence = Column(Text, nullable=False)
	transcription = Column(Text, nullable=True)
	pron_score = Column(Float, nullable=False)
	fluency_score = Column(Float, nullable=False)
	phoneme_accuracy = Column(Float, nullable=False)
	correctness = Column(Float, nullable=False)
	completeness = Column(Float, nullable=False)
	wpm = Column(Integer, nullable=False)
	reading_speed_score = Column(Integer, nullable=False)
	reading_speed_label = Column(String(40), nullable=False)
	average_score = Column(Float, nullable=False)
	recorded_by = Column(Integer, nullable=True)
	recorded_at = Column(DateTime, default=datetime.utcnow, nullable=False)
