import pytest

from schoolhub.gemini_client import GeminiError, extract_json_block
from schoolhub.insights import heuristic_insights, insights_from_model, summarize_metrics
from schoolhub.speech import TranscriptionError, decode_audio


def _metrics(**overrides):
	metrics = {
		"pron_score": 90.0,
		"fluency_score": 90.0,
		"phoneme_accuracy": 90.0,
		"correctness": 90.0,
		"completeness": 100.0,
		"reading_speed_score": 95.0,
		"average_score": 92.0,
		"wpm": 80.0,
		"attempts": 4,
	}
	metrics.update(overrides)
	return metrics


def test_summarize_metrics():
	rows = [
		{"pron_score": 80, "fluency_score": 100, "wpm": 60},
		{"pron_score": 91, "fluency_score": 50, "wpm": None},
	]
	out = summarize_metrics(rows)
	assert out["pron_score"] == 85.5
	assert out["fluency_score"] == 75.0
	assert out["wpm"] == 30.0
	assert out["correctness"] == 0.0
	assert out["attempts"] == 2
	assert summarize_metrics([])["attempts"] == 0


def test_heuristic_strong_reader():
	insights = heuristic_insights("English", _metrics())
	assert insights.source == "heuristic"
	assert insights.focus_areas == []
	assert len(insights.strengths) == 3
	assert insights.recommendations == ["Move on to longer English passages to keep the student challenged."]
	assert insights.summary.startswith("Excellent overall in English")
	assert "4 attempt(s)" in insights.summary


def test_heuristic_struggling_reader():
	insights = heuristic_insights(
		"Filipino",
		_metrics(correctness=50, phoneme_accuracy=60, fluency_score=40, completeness=70, reading_speed_score=70, average_score=55),
	)
	assert len(insights.focus_areas) == 5
	assert len(insights.recommendations) == 5
	assert insights.strengths == ["Keeps attempting each card, which builds confidence."]
	assert insights.summary.startswith("Poor")


def test_insights_from_model():
	insights = insights_from_model({"summary": " Good progress. ", "strengths": ["Effort", " "], "recommendations": "Read daily"})
	assert insights.summary == "Good progress."
	assert insights.strengths == ["Effort"]
	assert insights.focus_areas == []
	assert insights.recommendations == ["Read daily"]
	with pytest.raises(ValueError):
		insights_from_model({"strengths": ["Effort"]})


def test_extract_json_block():
	assert extract_json_block('{"a": 1}') == {"a": 1}
	assert extract_json_block('Sure! Here you go:\n```json\n{"a": {"b": 2}}\n```') == {"a": {"b": 2}}
	with pytest.raises(GeminiError):
		extract_json_block("no json here")
	with pytest.raises(GeminiError):
		extract_json_block("[1, 2]")


def test_decode_audio():
	assert decode_audio("aGVsbG8=") == b"hello"
	assert decode_audio("data:audio/webm;codecs=opus;base64,aGVsbG8=") == b"hello"
	with pytest.raises(TranscriptionError):
		decode_audio("%%%")
	with pytest.raises(TranscriptionError):
		decode_audio("")
