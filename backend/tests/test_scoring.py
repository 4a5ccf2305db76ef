import pytest

from schoolhub.scoring import (
	FILIPINO,
	approx_phonemes,
	average_label,
	compare_phoneme_arrays,
	fluency_score,
	get_profile,
	grade_reading_speed,
	levenshtein,
	measure_silence,
	normalize_text,
	score_pronunciation,
)

LOUD = 0.1  # about -20 dB
QUIET = 0.0001  # about -80 dB


def test_levenshtein():
	assert levenshtein("kitten", "sitting") == 3
	assert levenshtein("", "abc") == 3
	assert levenshtein("same", "same") == 0


def test_normalize_text_strips_punctuation():
	assert normalize_text("Hello, World!") == "hello world"
	assert normalize_text("Don't stop.") == "don't stop"


def test_approx_phonemes_groups_digraphs_and_vowels():
	assert approx_phonemes("cat") == ["C", "A", "T"]
	assert approx_phonemes("ship") == ["SH", "I", "P"]
	assert approx_phonemes("") == []


def test_compare_phoneme_arrays_allows_one_position_shift():
	assert compare_phoneme_arrays(["A", "B", "C"], ["B", "A", "C"]) == 100
	assert compare_phoneme_arrays(["A", "B"], []) == 0
	assert compare_phoneme_arrays([], ["A"]) == 0


def test_perfect_reading():
	result = score_pronunciation(
		"The cat sat on the mat.",
		"the cat sat on the mat",
		confidence=1.0,
		speech_ms=3000,
	)
	assert result.correctness == 100
	assert result.completeness == 100
	assert result.phoneme_accuracy == 100
	assert result.pron_score == 100
	assert result.fluency_score == 100
	assert result.wpm == 120
	assert result.reading_speed_label == "Very Fast"
	assert result.average_score == 100
	assert result.average_label == "Excellent"
	assert all(w.error_type == "None" for w in result.word_feedback)


def test_silent_attempt_marks_every_word_omitted():
	result = score_pronunciation("the cat sat", "")
	assert [w.error_type for w in result.word_feedback] == ["Omitted"] * 3
	assert result.completeness == 0
	assert result.correctness == 0
	assert result.wpm == 0
	assert result.reading_speed_score == 70
	# only the default recognizer confidence contributes
	assert result.pron_score == 12
	assert result.average_score == 27
	assert result.average_label == "Poor"


def test_close_word_is_mispronounced():
	result = score_pronunciation("banana", "banan", speech_ms=1000)
	feedback = result.word_feedback[0]
	assert feedback.matched == "banan"
	assert feedback.accuracy_score == 83
	assert feedback.error_type == "Mispronounced"


def test_words_matched_within_window():
	# an inserted word shifts positions; the window still finds every word
	result = score_pronunciation("I like red apples", "I really like red apples", speech_ms=2000)
	assert result.correctness == 100
	assert result.completeness == 100


def test_filipino_profile():
	assert get_profile("Filipino") is FILIPINO
	result = score_pronunciation("Ang bata ay masaya.", "ang bata ay masaya", profile=FILIPINO, speech_ms=2000)
	assert result.correctness == 100
	assert approx_phonemes("ngiti", FILIPINO) == ["NG", "I", "T", "I"]


def test_unknown_language_rejected():
	with pytest.raises(ValueError):
		get_profile("klingon")


def test_measure_silence_counts_long_pauses_only():
	samples = [
		(0, QUIET),
		(100, LOUD),
		(200, QUIET),
		(700, LOUD),  # 500 ms pause
		(800, QUIET),
		(900, LOUD),  # 100 ms gap, ignored
		(1000, QUIET),
	]
	m = measure_silence(samples)
	assert m.speech_start_ms == 100
	assert m.speech_end_ms == 900
	assert m.speech_ms == 800
	assert m.silence_ms == 500


def test_measure_silence_without_voice():
	m = measure_silence([(0, QUIET), (100, QUIET)])
	assert m.speech_ms is None
	assert m.silence_ms == 0


def test_fluency_score():
	assert fluency_score(0, None) == 100
	assert fluency_score(500, 800) == 38
	assert fluency_score(2000, 1000) == 0


def test_grade_reading_speed_buckets():
	assert grade_reading_speed(200, 10) == {"adjusted_wpm": 200, "score": 100, "label": "Very Fast"}
	assert grade_reading_speed(50, 10)["label"] == "Moderate"
	assert grade_reading_speed(0, 5)["label"] == "Very Slow"


def test_short_sentences_are_damped():
	# one word at 100 wpm is graded like 68.5 wpm
	assert grade_reading_speed(100, 1)["label"] == "Fast"


def test_average_label_thresholds():
	assert average_label(90) == "Excellent"
	assert average_label(89) == "Very Good"
	assert average_label(70) == "Good"
	assert average_label(60) == "Fair"
	assert average_label(59) == "Poor"
