import base64
import json

import pytest
from PIL import UnidentifiedImageError

from schoolhub.gemini_client import GeminiClient, GeminiError
from schoolhub.models import FlashcardPerformance
from schoolhub.routers import remedial
from schoolhub.settings import settings

SENTENCE = "The cat sat on the mat."


def _score(client, headers, **body):
	payload = {"sentence": SENTENCE, **body}
	return client.post("/api/remedial/flashcards/score", json=payload, headers=headers)


def test_score_transcript(client, teacher_headers):
	r = _score(client, teacher_headers, transcript="the cat sat on the mat", confidence=1.0, speech_ms=2000)
	assert r.status_code == 200, r.text
	body = r.json()
	assert body["performance_id"] is None
	result = body["result"]
	assert result["expected_words"] == ["the", "cat", "sat", "on", "the", "mat"]
	assert result["correctness"] == 100
	assert result["completeness"] == 100
	assert result["pron_score"] == 100
	assert result["wpm"] == 180
	assert result["reading_speed_label"] == "Very Fast"
	assert result["average_label"] == "Excellent"


def test_score_from_amplitude_samples(client, teacher_headers):
	samples = [
		{"t_ms": 0, "rms": 0.0001},
		{"t_ms": 100, "rms": 0.1},
		{"t_ms": 200, "rms": 0.1},
		{"t_ms": 300, "rms": 0.0},
		{"t_ms": 700, "rms": 0.0},
		{"t_ms": 800, "rms": 0.1},
		{"t_ms": 1000, "rms": 0.1},
	]
	r = _score(client, teacher_headers, transcript="the cat sat on the mat", samples=samples)
	result = r.json()["result"]
	# 900 ms of speech with one 500 ms pause
	assert result["fluency_score"] == 44
	assert result["wpm"] == 400


def test_score_records_performance(client, db, teacher, teacher_headers, make_student):
	student = make_student("100000000001")
	r = _score(
		client, teacher_headers,
		transcript="the cat sat on mat", student_id=student.student_id, phonemic_level="Sentence", card_index=2,
	)
	assert r.status_code == 200
	row = db.get(FlashcardPerformance, r.json()["performance_id"])
	assert row.subject == "English"
	assert row.card_index == 2
	assert row.recorded_by == teacher.user_id
	assert row.completeness < 100

	r = client.get(f"/api/remedial/students/{student.student_id}/performance", params={"subject": "english"}, headers=teacher_headers)
	body = r.json()
	assert len(body["records"]) == 1
	assert body["records"][0]["transcription"] == "the cat sat on mat"
	assert body["summary"]["attempts"] == 1


def test_score_errors(client, teacher_headers):
	assert _score(client, teacher_headers, transcript="hi", language="klingon").status_code == 400
	assert _score(client, teacher_headers).status_code == 400
	assert _score(client, teacher_headers, transcript="hi", student_id=999).status_code == 404
	r = _score(client, teacher_headers, audio_base64=base64.b64encode(b"RIFF").decode())
	assert r.status_code == 503
	assert client.post("/api/remedial/flashcards/score", json={"sentence": SENTENCE, "transcript": "x"}).status_code == 401


def test_score_audio_with_speech_enabled(client, teacher_headers, monkeypatch):
	monkeypatch.setattr(settings, "speech_enabled", True)
	calls = []

	def fake_transcribe(content, language, sample_rate_hz):
		calls.append((content, language, sample_rate_hz))
		return "the cat sat on the mat", 0.9

	monkeypatch.setattr(remedial, "transcribe", fake_transcribe)
	audio = "data:audio/webm;base64," + base64.b64encode(b"webm-bytes").decode()
	r = _score(client, teacher_headers, audio_base64=audio, language="Filipino", sample_rate_hz=48000)
	assert r.status_code == 200
	assert r.json()["transcript"] == "the cat sat on the mat"
	assert calls == [(b"webm-bytes", "filipino", 48000)]

	r = _score(client, teacher_headers, audio_base64="not base64!!")
	assert r.status_code == 400


@pytest.fixture
def attempts(client, teacher_headers, make_student):
	student = make_student("100000000001", first_name="Ana")
	for transcript in ("the cat sat on the mat", "the cat on mat", "cat mat"):
		_score(client, teacher_headers, transcript=transcript, student_id=student.student_id, speech_ms=4000)
	return student


def test_heuristic_insights(client, teacher_headers, attempts):
	r = client.post("/api/remedial/insights", json={"student_id": attempts.student_id}, headers=teacher_headers)
	assert r.status_code == 200
	body = r.json()
	assert body["subject"] == "English"
	assert body["metrics"]["attempts"] == 3
	assert body["insights"]["source"] == "heuristic"
	assert "English" in body["insights"]["summary"]
	assert body["insights"]["recommendations"]


def test_insights_need_attempts(client, teacher_headers, attempts):
	r = client.post("/api/remedial/insights", json={"student_id": attempts.student_id, "subject": "Filipino"}, headers=teacher_headers)
	assert r.status_code == 404
	r = client.post("/api/remedial/insights", json={"student_id": 999}, headers=teacher_headers)
	assert r.status_code == 404


def test_gemini_insights(client, teacher_headers, attempts, monkeypatch):
	monkeypatch.setattr(settings, "gemini_api_key", "test-key")
	prompts = []

	async def fake_generate(self, prompt):
		prompts.append(prompt)
		reply = {"summary": "Ana is improving.", "strengths": ["Effort"], "focus_areas": "Blends", "recommendations": ["Drill blends"]}
		return "```json\n" + json.dumps(reply) + "\n```"

	monkeypatch.setattr(GeminiClient, "generate", fake_generate)
	r = client.post("/api/remedial/insights", json={"student_id": attempts.student_id, "limit": 2}, headers=teacher_headers)
	assert r.status_code == 200
	body = r.json()
	assert body["metrics"]["attempts"] == 2
	insights = body["insights"]
	assert insights["source"] == "gemini"
	assert insights["summary"] == "Ana is improving."
	assert insights["focus_areas"] == ["Blends"]
	assert "Ana" in prompts[0]


def test_gemini_failure_falls_back(client, teacher_headers, attempts, monkeypatch):
	monkeypatch.setattr(settings, "gemini_api_key", "test-key")

	async def failing_generate(self, prompt):
		raise GeminiError("quota exceeded")

	monkeypatch.setattr(GeminiClient, "generate", failing_generate)
	r = client.post("/api/remedial/insights", json={"student_id": attempts.student_id}, headers=teacher_headers)
	assert r.status_code == 200
	assert r.json()["insights"]["source"] == "heuristic"


def test_math_extract(client, teacher_headers):
	r = client.post("/api/remedial/math/extract", json={"text": "1) 4 + 5 =\n2) 6 x 7 ="}, headers=teacher_headers)
	assert r.status_code == 200
	assert r.json()["problems"] == [{"question": "4 + 5", "answer": "9"}, {"question": "6 × 7", "answer": "42"}]


def test_math_ocr(client, teacher_headers, monkeypatch):
	monkeypatch.setattr(remedial, "ocr_image", lambda content: "12 - 5 =")
	r = client.post("/api/remedial/math/ocr", files={"image": ("sheet.png", b"png-bytes", "image/png")}, headers=teacher_headers)
	assert r.status_code == 200
	assert r.json() == {"text": "12 - 5 =", "problems": [{"question": "12 - 5", "answer": "7"}]}


def test_math_ocr_rejects_unreadable_image(client, teacher_headers, monkeypatch):
	def unreadable(content):
		raise UnidentifiedImageError("cannot identify image file")

	monkeypatch.setattr(remedial, "ocr_image", unreadable)
	r = client.post("/api/remedial/math/ocr", files={"image": ("sheet.png", b"junk", "image/png")}, headers=teacher_headers)
	assert r.status_code == 400
	r = client.post("/api/remedial/math/ocr", files={"image": ("sheet.png", b"", "image/png")}, headers=teacher_headers)
	assert r.status_code == 400
