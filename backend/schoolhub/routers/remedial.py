"""
Remedial Reading and Math Router
================================

Endpoints used during remedial sessions:

1. Flashcard scoring: the student reads a sentence aloud, the browser sends
   the recognizer transcript (or the raw audio for server-side Google
   Speech-to-Text) plus microphone amplitude samples, and the attempt is
   scored by ``schoolhub.scoring``. Attempts for a known student are stored
   in ``flashcard_performance``.
2. Performance history per student and subject.
3. Coaching insights written by Gemini from the latest attempts, with a
   deterministic fallback when the LLM is not configured or fails.
4. Math flashcards extracted from a photographed worksheet with Tesseract.
"""

from typing import Dict, List, Optional
import logging

import pytesseract
from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from google.api_core.exceptions import GoogleAPIError
from PIL import UnidentifiedImageError
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..gemini_client import GeminiClient, GeminiError
from ..insights import Insights, build_prompt, heuristic_insights, insights_from_model, summarize_metrics
from ..math_ocr import MathProblem, extract_and_solve, ocr_image
from ..models import FlashcardPerformance, Role, Student, User
from ..scoring import PronunciationResult, get_profile, measure_silence, score_pronunciation
from ..settings import settings
from ..speech import TranscriptionError, decode_audio, transcribe
from .auth import require_roles

router = APIRouter(prefix="/api/remedial", tags=["remedial"])

logger = logging.getLogger(__name__)

staff = require_roles(*Role.ALL)

MAX_IMAGE_BYTES = 10 * 1024 * 1024


# ============================================================================
# REQUEST / RESPONSE MODELS
# ============================================================================

class AmplitudeSample(BaseModel):
	"""One microphone analyser frame."""
	t_ms: float
	rms: float = Field(ge=0)


class FlashcardScoreRequest(BaseModel):
	sentence: str = Field(min_length=1)
	transcript: Optional[str] = None
	audio_base64: Optional[str] = None
	sample_rate_hz: Optional[int] = None
	language: str = "english"
	confidence: Optional[float] = Field(default=None, ge=0, le=1)
	speech_ms: Optional[float] = Field(default=None, gt=0)
	samples: List[AmplitudeSample] = []
	# Present when the attempt should be recorded for a student
	student_id: Optional[int] = None
	subject: Optional[str] = None
	phonemic_level: Optional[str] = None
	card_index: int = 0


class FlashcardScoreResponse(BaseModel):
	transcript: str
	result: PronunciationResult
	performance_id: Optional[int] = None


class InsightsRequest(BaseModel):
	student_id: int
	subject: Optional[str] = None
	# Number of latest attempts to summarise
	limit: int = Field(default=10, ge=1, le=100)


class InsightsResponse(BaseModel):
	student_id: int
	subject: str
	metrics: Dict[str, float]
	insights: Insights


class MathExtractRequest(BaseModel):
	text: str


class MathOcrResponse(BaseModel):
	text: str
	problems: List[MathProblem]


# ============================================================================
# HELPERS
# ============================================================================

async def _resolve_transcript(req: FlashcardScoreRequest, language: str) -> tuple[str, Optional[float]]:
	if req.transcript is not None:
		return req.transcript, req.confidence
	if not req.audio_base64:
		raise HTTPException(status_code=400, detail="Provide a transcript or an audio recording")
	if not settings.speech_enabled:
		raise HTTPException(status_code=503, detail="Server-side transcription is not enabled")
	try:
		audio = decode_audio(req.audio_base64)
	except TranscriptionError as e:
		raise HTTPException(status_code=400, detail=str(e))
	try:
		transcript, confidence = await run_in_threadpool(transcribe, audio, language, req.sample_rate_hz)
	except GoogleAPIError as e:
		logger.exception("Speech-to-Text request failed")
		raise HTTPException(status_code=502, detail=f"Speech recognition failed: {e}")
	return transcript, confidence if req.confidence is None else req.confidence


def _performance_dict(row: FlashcardPerformance) -> Dict[str, object]:
	return {
		"id": row.id,
		"subject": row.subject,
		"phonemic_level": row.phonemic_level,
		"card_index": row.card_index,
		"sentence": row.sentence,
		"transcription": row.transcription,
		"pron_score": row.pron_score,
		"fluency_score": row.fluency_score,
		"phoneme_accuracy": row.phoneme_accuracy,
		"correctness": row.correctness,
		"completeness": row.completeness,
		"wpm": row.wpm,
		"reading_speed_score": row.reading_speed_score,
		"reading_speed_label": row.reading_speed_label,
		"average_score": row.average_score,
		"recorded_at": row.recorded_at.isoformat(),
	}


def _get_student(db: Session, student_id: int) -> Student:
	student = db.get(Student, student_id)
	if student is None:
		raise HTTPException(status_code=404, detail="Student not found")
	return student


def _subject_label(subject: Optional[str], default: str) -> str:
	return (subject or default).strip().capitalize()


# ============================================================================
# API ENDPOINTS
# ============================================================================

@router.post("/flashcards/score", response_model=FlashcardScoreResponse)
async def score_flashcard(req: FlashcardScoreRequest, db: Session = Depends(get_db), user: User = Depends(staff)):
	"""Score one flashcard reading attempt.

	When amplitude samples are sent, the speech span and pause time come
	from them; an explicit ``speech_ms`` overrides the measured span.
	"""
	try:
		profile = get_profile(req.language)
	except ValueError as e:
		raise HTTPException(status_code=400, detail=str(e))
	student = _get_student(db, req.student_id) if req.student_id is not None else None

	transcript, confidence = await _resolve_transcript(req, profile.name)

	speech_ms = req.speech_ms
	silence_ms = 0.0
	if req.samples:
		measured = measure_silence((s.t_ms, s.rms) for s in req.samples)
		silence_ms = measured.silence_ms
		if speech_ms is None:
			speech_ms = measured.speech_ms
	result = score_pronunciation(
		req.sentence,
		transcript,
		confidence=confidence,
		speech_ms=speech_ms,
		silence_ms=silence_ms,
		profile=profile,
	)

	performance_id = None
	if student is not None:
		row = FlashcardPerformance(
			student_id=student.student_id,
			subject=_subject_label(req.subject, profile.name),
			phonemic_level=req.phonemic_level,
			card_index=req.card_index,
			sentence=req.sentence,
			transcription=transcript,
			pron_score=result.pron_score,
			fluency_score=result.fluency_score,
			phoneme_accuracy=result.phoneme_accuracy,
			correctness=result.correctness,
			completeness=result.completeness,
			wpm=result.wpm,
			reading_speed_score=result.reading_speed_score,
			reading_speed_label=result.reading_speed_label,
			average_score=result.average_score,
			recorded_by=user.user_id,
		)
		db.add(row)
		db.commit()
		performance_id = row.id
	return FlashcardScoreResponse(transcript=transcript, result=result, performance_id=performance_id)


@router.get("/students/{student_id}/performance")
def student_performance(
	student_id: int,
	subject: Optional[str] = Query(default=None),
	db: Session = Depends(get_db),
	_: User = Depends(staff),
):
	student = _get_student(db, student_id)
	q = db.query(FlashcardPerformance).filter(FlashcardPerformance.student_id == student_id)
	if subject:
		q = q.filter(FlashcardPerformance.subject == _subject_label(subject, "english"))
	rows = q.order_by(FlashcardPerformance.recorded_at.desc(), FlashcardPerformance.id.desc()).all()
	records = [_performance_dict(r) for r in rows]
	return {
		"student_id": student.student_id,
		"name": student.full_name,
		"records": records,
		"summary": summarize_metrics(records),
	}


@router.post("/insights", response_model=InsightsResponse)
async def remedial_insights(req: InsightsRequest, db: Session = Depends(get_db), _: User = Depends(staff)):
	student = _get_student(db, req.student_id)
	subject = _subject_label(req.subject, "english")
	rows = (
		db.query(FlashcardPerformance)
		.filter(FlashcardPerformance.student_id == student.student_id, FlashcardPerformance.subject == subject)
		.order_by(FlashcardPerformance.recorded_at.desc(), FlashcardPerformance.id.desc())
		.limit(req.limit)
		.all()
	)
	if not rows:
		raise HTTPException(status_code=404, detail="No flashcard attempts recorded for this subject")
	metrics = summarize_metrics([_performance_dict(r) for r in rows])

	insights: Optional[Insights] = None
	if settings.gemini_api_key:
		prompt = build_prompt(student.full_name, subject, rows[0].phonemic_level, metrics)
		try:
			insights = insights_from_model(await GeminiClient().generate_json(prompt))
		except (GeminiError, ValueError) as e:
			logger.warning("Falling back to heuristic insights for student %s: %s", student.student_id, e)
	if insights is None:
		insights = heuristic_insights(subject, metrics)
	return InsightsResponse(student_id=student.student_id, subject=subject, metrics=metrics, insights=insights)


@router.post("/math/ocr", response_model=MathOcrResponse)
async def math_ocr(image: UploadFile = File(...), _: User = Depends(staff)):
	content = await image.read()
	if not content:
		raise HTTPException(status_code=400, detail="Uploaded image is empty")
	if len(content) > MAX_IMAGE_BYTES:
		raise HTTPException(status_code=413, detail="Uploaded image is too large")
	try:
		text = await run_in_threadpool(ocr_image, content)
	except UnidentifiedImageError:
		raise HTTPException(status_code=400, detail="Uploaded file is not a readable image")
	except pytesseract.TesseractNotFoundError:
		logger.exception("Tesseract binary not found")
		raise HTTPException(status_code=503, detail="OCR engine is not installed on the server")
	return MathOcrResponse(text=text, problems=extract_and_solve(text))


@router.post("/math/extract", response_model=MathOcrResponse)
def math_extract(req: MathExtractRequest, _: User = Depends(staff)):
	return MathOcrResponse(text=req.text, problems=extract_and_solve(req.text))
