import base64

import pytest

from schoolhub import quiz
from schoolhub.quiz import (
	QUIZ_CODE_ALPHABET,
	build_access_url,
	generate_qr_token,
	generate_quiz_code,
	generate_unique_quiz_code,
	normalize_question_type,
	normalize_quiz_code,
	qr_data_url,
	qr_png,
)


def test_quiz_code_alphabet():
	for _ in range(50):
		code = generate_quiz_code()
		assert len(code) == 6
		assert set(code) <= set(QUIZ_CODE_ALPHABET)
	assert not set("IO01") & set(QUIZ_CODE_ALPHABET)


def test_unique_code_skips_taken(monkeypatch):
	codes = iter(["AAAAAA", "AAAAAA", "BBBBBB"])
	monkeypatch.setattr(quiz, "generate_quiz_code", lambda: next(codes))
	assert generate_unique_quiz_code(lambda c: c == "AAAAAA") == "BBBBBB"


def test_unique_code_gives_up():
	with pytest.raises(RuntimeError):
		generate_unique_quiz_code(lambda c: True, max_attempts=3)


def test_qr_token():
	token = generate_qr_token()
	assert len(token) == 32
	int(token, 16)
	assert generate_qr_token() != token


def test_normalize():
	assert normalize_question_type("Multiple-Choice") == "multiple_choice"
	assert normalize_question_type("true false") == "true_false"
	assert normalize_question_type(None) == "multiple_choice"
	assert normalize_quiz_code(" ab3cde ") == "AB3CDE"
	assert normalize_quiz_code(None) == ""


def test_access_url_and_qr():
	url = build_access_url("ABC234")
	assert url == "http://testserver/join?code=ABC234"
	assert qr_png(url).startswith(b"\x89PNG")
	data_url = qr_data_url(url)
	assert data_url.startswith("data:image/png;base64,")
	assert base64.b64decode(data_url.split(",", 1)[1]).startswith(b"\x89PNG")
