from __future__ import annotations

import json
from typing import Dict, List, Sequence

from pydantic import BaseModel

from .scoring import average_label


METRIC_NAMES = (
	"pron_score",
	"fluency_score",
	"phoneme_accuracy",
	"correctness",
	"completeness",
	"reading_speed_score",
	"average_score",
)


class Insights(BaseModel):
	summary: str
	strengths: List[str]
	focus_areas: List[str]
	recommendations: List[str]
	# gemini | heuristic
	source: str


def summarize_metrics(rows: Sequence[Dict[str, float]]) -> Dict[str, float]:
	out: Dict[str, float] = {}
	for name in METRIC_NAMES + ("wpm",):
		out[name] = round(sum(float(r.get(name) or 0) for r in rows) / len(rows), 1) if rows else 0.0
	out["attempts"] = len(rows)
	return out


def build_prompt(student_name: str, subject: str, level: str | None, metrics: Dict[str, float]) -> str:
	return (
		"You are a reading specialist helping a remedial teacher in a Philippine elementary school.\n"
		f"Student: {student_name}\nSubject: {subject}\nPhonemic level: {level or 'unknown'}\n"
		f"Average flashcard metrics over the latest attempts (0-100 unless noted):\n{json.dumps(metrics, indent=2)}\n\n"
		"Write short, encouraging, practical coaching insights for the teacher.\n"
		"Respond ONLY with a JSON object with keys: "
		'"summary" (string, 1-2 sentences), "strengths" (array of strings), '
		'"focus_areas" (array of strings), "recommendations" (array of 2-4 strings).'
	)


def heuristic_insights(subject: str, metrics: Dict[str, float]) -> Insights:
	"""Deterministic insights from thresholds on the averaged metrics."""
	strengths: List[str] = []
	focus: List[str] = []
	recs: List[str] = []

	if metrics["correctness"] >= 85:
		strengths.append("Reads most words in the sentence correctly.")
	elif metrics["correctness"] < 70:
		focus.append("Word recognition: several words are misread or skipped.")
		recs.append("Practice the missed words in isolation before reading the full sentence.")

	if metrics["phoneme_accuracy"] >= 85:
		strengths.append("Sound production is clear and accurate.")
	elif metrics["phoneme_accuracy"] < 70:
		focus.append("Phonics: vowel and consonant blends are often off.")
		recs.append("Use short drills on blends and digraphs, modelling each sound first.")

	if metrics["fluency_score"] >= 85:
		strengths.append("Reads smoothly with few long pauses.")
	elif metrics["fluency_score"] < 70:
		focus.append("Fluency: frequent long pauses between words.")
		recs.append("Try echo reading and repeated reading of the same card to build flow.")

	if metrics["completeness"] < 80:
		focus.append("Completeness: parts of sentences are left out.")
		recs.append("Have the student track words with a finger to avoid skipping.")

	if metrics["reading_speed_score"] <= 75:
		focus.append("Reading pace is slow for the sentence length.")
		recs.append("Time short passages and celebrate small improvements in speed.")

	if not recs:
		recs.append(f"Move on to longer {subject} passages to keep the student challenged.")
	if not strengths:
		strengths.append("Keeps attempting each card, which builds confidence.")

	label = average_label(int(round(metrics["average_score"])))
	summary = (
		f"{label} overall in {subject} with an average score of {metrics['average_score']:.0f} "
		f"across {int(metrics['attempts'])} attempt(s)."
	)
	return Insights(summary=summary, strengths=strengths, focus_areas=focus, recommendations=recs, source="heuristic")


def insights_from_model(data: Dict[str, object]) -> Insights:
	def as_list(value: object) -> List[str]:
		if isinstance(value, list):
			return [str(v).strip() for v in value if str(v).strip()]
		if isinstance(value, str) and value.strip():
			return [value.strip()]
		return []

	summary = str(data.get("summary") or "").strip()
	if not summary:
		raise ValueError("Model insights are missing a summary")
	return Insights(
		summary=summary,
		strengths=as_list(data.get("strengths")),
		focus_areas=as_list(data.get("focus_areas")),
		recommendations=as_list(data.get("recommendations")),
		source="gemini",
	)
