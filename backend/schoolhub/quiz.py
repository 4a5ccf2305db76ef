from __future__ import annotations

import base64
import re
import secrets
from io import BytesIO
from typing import Callable
from urllib.parse import quote

import qrcode
from qrcode.constants import ERROR_CORRECT_M

from .settings import settings


# No I, O, 1 or 0 so codes survive being read aloud or copied from a board
QUIZ_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
QUIZ_CODE_LENGTH = 6

QUESTION_TYPES = ("multiple_choice", "true_false", "short_answer")


def generate_qr_token() -> str:
	return secrets.token_hex(16)


def generate_quiz_code() -> str:
	return "".join(secrets.choice(QUIZ_CODE_ALPHABET) for _ in range(QUIZ_CODE_LENGTH))


def generate_unique_quiz_code(exists: Callable[[str], bool], max_attempts: int = 50) -> str:
	for _ in range(max_attempts):
		code = generate_quiz_code()
		if not exists(code):
			return code
	raise RuntimeError("Unable to allocate a unique quiz code")


def normalize_quiz_code(value: str | None) -> str:
	return (value or "").strip().upper()


def normalize_question_type(value: str | None) -> str:
	if not value:
		return "multiple_choice"
	return re.sub(r"[\s\-/]+", "_", value.strip()).lower()


def build_access_url(quiz_code: str) -> str:
	return f"{settings.app_base_url.rstrip('/')}/join?code={quote(quiz_code)}"


def qr_png(data: str) -> bytes:
	qr = qrcode.QRCode(
		version=None,  # auto
		error_correction=ERROR_CORRECT_M,
		box_size=8,
		border=2,
	)
	qr.add_data(data)
	qr.make(fit=True)
	img = qr.make_image(fill_color="black", back_color="white")
	buf = BytesIO()
	img.save(buf, format="PNG")
	return buf.getvalue()


def qr_data_url(data: str) -> str:
	return "data:image/png;base64," + base64.b64encode(qr_png(data)).decode("ascii")
