from __future__ import annotations

import re
from io import BytesIO
from typing import List

import pytesseract
from PIL import Image
from pydantic import BaseModel


# Integer operands up to three digits around a single arithmetic operator
_EXPRESSION = re.compile(r"\b(\d{1,3})\s*([+\-*/])\s*(\d{1,3})\b")
_DISPLAY_SYMBOLS = {"+": "+", "-": "-", "*": "×", "/": "÷"}
# A letter x only counts as "times" between two numbers
_TIMES_LETTER = re.compile(r"(?<=\d)\s*[xX]\s*(?=\d)")


class MathProblem(BaseModel):
	question: str
	answer: str


def _format_answer(value: float) -> str:
	if float(value).is_integer():
		return str(int(value))
	text = f"{value:.2f}"
	return text[:-3] if text.endswith(".00") else text


def normalize_operators(text: str) -> str:
	text = _TIMES_LETTER.sub(" * ", text)
	return text.replace("×", "*").replace("÷", "/")


def extract_and_solve(text: str) -> List[MathProblem]:
	"""Find simple arithmetic expressions in OCR text and solve them.

	OCR commonly reads the multiplication sign as x/X and division as ÷;
	these are normalised first. Division by zero is skipped and
	non-integer quotients are rounded to two decimals.
	"""
	normalized = normalize_operators(text or "")
	problems: List[MathProblem] = []
	for match in _EXPRESSION.finditer(normalized):
		left, operator, right = int(match.group(1)), match.group(2), int(match.group(3))
		if operator == "+":
			result: float = left + right
		elif operator == "-":
			result = left - right
		elif operator == "*":
			result = left * right
		else:
			if right == 0:
				continue
			result = left / right
		problems.append(
			MathProblem(
				question=f"{left} {_DISPLAY_SYMBOLS[operator]} {right}",
				answer=_format_answer(result),
			)
		)
	return problems


def ocr_image(content: bytes) -> str:
	img = Image.open(BytesIO(content))
	return pytesseract.image_to_string(img)
