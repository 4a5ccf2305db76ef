"""
Pronunciation Scoring
=====================

Heuristic scoring of a remedial reading attempt. A student reads a flashcard
sentence aloud; the browser (or the server, from uploaded audio) produces a
transcript and optionally a stream of microphone amplitude samples. This
module compares the transcript with the expected sentence and produces the
numbers shown on the flashcard result panel.

Scores produced (all 0-100 unless noted):
- correctness: word accuracy from Levenshtein similarity in a local window
- phoneme_accuracy: agreement of coarse phoneme approximations
- completeness: share of expected words that were not omitted
- fluency_score: 100 minus the share of the reading spent in pauses
- wpm / reading_speed_score: words per minute graded into speed buckets
- pron_score: 0.5 * word accuracy + 0.35 * phoneme accuracy + 0.15 * confidence
- average_score: mean of pron_score, correctness and reading_speed_score

English and Filipino share the algorithm and differ only in their
LanguageProfile (alphabet, vowels, digraphs).
"""

from __future__ import annotations

import math
import re
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel


# ============================================================================
# LANGUAGE PROFILES
# ============================================================================

class LanguageProfile:
	def __init__(
		self,
		name: str,
		text_pattern: str,
		word_pattern: str,
		vowels: Sequence[str],
		digraphs: Dict[str, str],
	) -> None:
		self.name = name
		# Characters removed before comparing sentences
		self.text_strip = re.compile(text_pattern)
		# Characters removed from a single word before phoneme splitting
		self.word_strip = re.compile(word_pattern)
		self.vowels = frozenset(vowels)
		# Order matters: replacements are applied in insertion order
		self.digraphs = dict(digraphs)


ENGLISH = LanguageProfile(
	name="english",
	text_pattern=r"[^a-zA-Z\s']",
	word_pattern=r"[^a-z']",
	vowels="aeiou",
	digraphs={
		"th": "TH", "sh": "SH", "ch": "CH", "ph": "F", "gh": "G", "wh": "WH",
		"ck": "K", "ng": "NG", "nk": "NK", "ee": "EE", "oo": "OO", "ai": "AY",
		"ay": "AY", "ea": "EE", "oa": "OA", "ow": "OW", "ou": "OU", "oi": "OI",
		"oy": "OY", "aw": "AW", "au": "AW", "ar": "AR", "er": "ER", "ir": "ER",
		"ur": "ER", "or": "OR",
	},
)

FILIPINO = LanguageProfile(
	name="filipino",
	text_pattern=r"[^a-zA-ZáéíóúñÑäëïöüÁÉÍÓÚ\s']",
	word_pattern=r"[^a-záéíóúñ']",
	vowels="aeiouáéíóú",
	digraphs={
		"ng": "NG", "ny": "NY", "ts": "TS", "dy": "DY", "sy": "SY", "ly": "LY",
		"th": "T", "sh": "S", "ch": "CH", "ph": "F", "gh": "G",
	},
)

PROFILES: Dict[str, LanguageProfile] = {
	"english": ENGLISH,
	"filipino": FILIPINO,
}


def get_profile(language: Optional[str]) -> LanguageProfile:
	key = (language or "english").strip().lower()
	if key not in PROFILES:
		raise ValueError(f"Unsupported language: {language!r}")
	return PROFILES[key]


# ============================================================================
# CONSTANTS
# ============================================================================

# Microphone frames louder than this count as voice
VOICE_DB_THRESHOLD = -50.0
# Pauses shorter than this are ordinary gaps between words
MIN_PAUSE_MS = 200.0
DEFAULT_CONFIDENCE = 0.8

READING_SPEED_BUCKETS: List[Tuple[int, int, str]] = [
	(90, 100, "Very Fast"),
	(75, 95, "Moderately Fast"),
	(60, 90, "Fast"),
	(45, 85, "Moderate"),
	(30, 80, "Slightly Slow"),
	(20, 75, "Slow"),
	(0, 70, "Very Slow"),
]

REMARKS: Dict[str, str] = {
	"Excellent": "Excellent! Outstanding delivery and pacing.",
	"Very Good": "Very Good. Just a little polish needed.",
	"Good": "Good. Keep practicing for smoother speech.",
	"Fair": "Fair. Focus on clarity and confidence.",
	"Poor": "Poor. Let's build clarity and pace together.",
}


# ============================================================================
# RESULT MODELS
# ============================================================================

class WordFeedback(BaseModel):
	word: str
	matched: str
	accuracy_score: int
	# Omitted | Mispronounced | None
	error_type: str


class SilenceMeasurement(BaseModel):
	speech_start_ms: Optional[float] = None
	speech_end_ms: Optional[float] = None
	silence_ms: float = 0.0

	@property
	def speech_ms(self) -> Optional[float]:
		if self.speech_start_ms is None or self.speech_end_ms is None:
			return None
		return max(1.0, self.speech_end_ms - self.speech_start_ms)


class PronunciationResult(BaseModel):
	expected_words: List[str]
	spoken_words: List[str]
	word_feedback: List[WordFeedback]
	correctness: int
	completeness: int
	phoneme_accuracy: float
	fluency_score: int
	wpm: int
	reading_speed_score: int
	reading_speed_label: str
	word_count: int
	pron_score: int
	average_score: int
	average_label: str
	remarks: str


# ============================================================================
# PRIMITIVES
# ============================================================================

def _round(value: float) -> int:
	# Half-up rounding so 72.5 scores as 73 rather than 72
	return int(math.floor(value + 0.5))


def _clamp(value: int, low: int = 0, high: int = 100) -> int:
	return max(low, min(high, value))


def levenshtein(a: str, b: str) -> int:
	m, n = len(a), len(b)
	prev = list(range(n + 1))
	for i in range(1, m + 1):
		cur = [i] + [0] * n
		for j in range(1, n + 1):
			cur[j] = min(
				prev[j] + 1,
				cur[j - 1] + 1,
				prev[j - 1] + (0 if a[i - 1] == b[j - 1] else 1),
			)
		prev = cur
	return prev[n]


def normalize_text(text: str, profile: LanguageProfile = ENGLISH) -> str:
	return profile.text_strip.sub("", text or "").lower().strip()


def approx_phonemes(word: str, profile: LanguageProfile = ENGLISH) -> List[str]:
	"""Split a word into rough phoneme tokens.

	Digraphs are replaced by their uppercase code first, then runs of vowels
	become one token each and consonants between them are grouped.
	"""
	if not word:
		return []
	tmp = profile.word_strip.sub("", word.lower())
	for digraph, code in profile.digraphs.items():
		tmp = tmp.replace(digraph, f" {code} ")

	out: List[str] = []
	buffer = ""
	i = 0
	while i < len(tmp):
		c = tmp[i]
		if c == " ":
			if buffer:
				out.append(buffer)
			buffer = ""
		elif c in profile.vowels:
			if buffer:
				out.append(buffer)
				buffer = ""
			run = c
			while i + 1 < len(tmp) and tmp[i + 1] in profile.vowels:
				i += 1
				run += tmp[i]
			out.append(run.upper())
		else:
			buffer += c.upper()
		i += 1
	if buffer:
		out.append(buffer)
	return [token for token in out if token]


def compare_phoneme_arrays(expected: Sequence[str], actual: Sequence[str]) -> float:
	"""Percent of expected phonemes found at the same position or one off."""
	if not expected:
		return 0.0

	def at(index: int) -> Optional[str]:
		return actual[index] if 0 <= index < len(actual) else None

	matches = 0
	for i, phoneme in enumerate(expected):
		if at(i) == phoneme or at(i - 1) == phoneme or at(i + 1) == phoneme:
			matches += 1
	return matches / len(expected) * 100


def measure_silence(samples: Iterable[Tuple[float, float]]) -> SilenceMeasurement:
	"""Measure speech span and pause time from (timestamp_ms, rms) samples.

	A frame is voiced when its level is above VOICE_DB_THRESHOLD. The speech
	span runs from the first to the last voiced frame; a silent stretch
	between two voiced frames adds its full length to the pause total when it
	lasts longer than MIN_PAUSE_MS.
	"""
	result = SilenceMeasurement()
	silence_start: Optional[float] = None
	for timestamp, rms in sorted(samples, key=lambda s: s[0]):
		level_db = 20 * math.log10(max(float(rms), 0.0) + 1e-12)
		if level_db > VOICE_DB_THRESHOLD:
			if result.speech_start_ms is None:
				result.speech_start_ms = timestamp
			elif silence_start is not None:
				pause = timestamp - silence_start
				if pause > MIN_PAUSE_MS:
					result.silence_ms += pause
			result.speech_end_ms = timestamp
			silence_start = None
		elif result.speech_start_ms is not None and silence_start is None:
			silence_start = timestamp
	return result


def fluency_score(silence_ms: float, speech_ms: Optional[float]) -> int:
	if not speech_ms:
		return 100
	pause_ratio = min(1.0, max(0.0, silence_ms) / max(1.0, speech_ms))
	return _clamp(_round((1 - pause_ratio) * 100))


def grade_reading_speed(wpm: float, word_count: int) -> Dict[str, object]:
	# Short sentences give noisy wpm; damp them toward the slower buckets
	stability = min(1.0, max(1, word_count) / 10)
	adjusted = wpm * (0.65 + 0.35 * stability)
	min_wpm, score, label = next(
		(bucket for bucket in READING_SPEED_BUCKETS if adjusted >= bucket[0]),
		READING_SPEED_BUCKETS[-1],
	)
	return {"adjusted_wpm": _round(adjusted), "score": score, "label": label}


def average_label(score: int) -> str:
	if score >= 90:
		return "Excellent"
	if score >= 80:
		return "Very Good"
	if score >= 70:
		return "Good"
	if score >= 60:
		return "Fair"
	return "Poor"


# ============================================================================
# COMPOSITE SCORE
# ============================================================================

def score_pronunciation(
	expected_text: str,
	spoken_text: str,
	*,
	confidence: Optional[float] = None,
	speech_ms: Optional[float] = None,
	silence_ms: float = 0.0,
	profile: LanguageProfile = ENGLISH,
) -> PronunciationResult:
	"""Score one reading attempt.

	Args:
		expected_text: The flashcard sentence.
		spoken_text: Recognizer transcript, possibly empty.
		confidence: Recognizer confidence in [0, 1]; 0.8 when unknown.
		speech_ms: Length of the spoken span; when unknown wpm is reported as 0.
		silence_ms: Pause time inside the spoken span.
		profile: Language rules used for normalisation and phonemes.
	"""
	expected_words = normalize_text(expected_text, profile).split()
	spoken_words = normalize_text(spoken_text, profile).split()

	exact = 0
	soft = 0
	feedback: List[WordFeedback] = []
	for i, word in enumerate(expected_words):
		best = ""
		best_distance = math.inf
		for j in range(max(0, i - 2), min(len(spoken_words), i + 3)):
			distance = levenshtein(word, spoken_words[j])
			if distance < best_distance:
				best_distance = distance
				best = spoken_words[j]
		distance = levenshtein(word, best)
		similarity = max(0, len(word) - distance) / max(1, len(word)) * 100
		if similarity >= 95:
			exact += 1
		elif similarity >= 60:
			soft += 1
		accuracy = _round(similarity)
		if accuracy == 0:
			error_type = "Omitted"
		elif accuracy < 85:
			error_type = "Mispronounced"
		else:
			error_type = "None"
		feedback.append(WordFeedback(word=word, matched=best, accuracy_score=accuracy, error_type=error_type))

	word_accuracy = (exact + 0.6 * soft) / max(1, len(expected_words)) * 100
	omitted = sum(1 for item in feedback if item.accuracy_score == 0)
	completeness = (
		max(0, _round(100 - omitted / len(expected_words) * 100)) if expected_words else 100
	)

	expected_phonemes = [p for w in expected_words for p in approx_phonemes(w, profile)]
	spoken_phonemes = [p for w in spoken_words for p in approx_phonemes(w, profile)]
	phoneme_accuracy = compare_phoneme_arrays(expected_phonemes, spoken_phonemes)

	fluency = fluency_score(silence_ms, speech_ms)
	word_count = len(expected_words)
	wpm = max(0, _round(word_count / (speech_ms / 1000) * 60)) if speech_ms else 0

	conf = DEFAULT_CONFIDENCE if confidence is None else max(0.0, min(1.0, confidence))
	pron_score = _clamp(_round(0.5 * word_accuracy + 0.35 * phoneme_accuracy + 0.15 * conf * 100))
	correctness = _clamp(_round(word_accuracy))
	speed = grade_reading_speed(wpm, word_count)
	average = _clamp(_round((pron_score + correctness + int(speed["score"])) / 3))
	label = average_label(average)

	return PronunciationResult(
		expected_words=expected_words,
		spoken_words=spoken_words,
		word_feedback=feedback,
		correctness=correctness,
		completeness=completeness,
		phoneme_accuracy=round(phoneme_accuracy, 2),
		fluency_score=fluency,
		wpm=wpm,
		reading_speed_score=int(speed["score"]),
		reading_speed_label=str(speed["label"]),
		word_count=word_count,
		pron_score=pron_score,
		average_score=average,
		average_label=label,
		remarks=REMARKS[label],
	)
