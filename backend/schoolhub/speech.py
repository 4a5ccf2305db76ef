from __future__ import annotations

import base64
import binascii
import logging
from typing import Optional, Tuple

from google.cloud import speech_v1p1beta1 as speech

logger = logging.getLogger(__name__)

LANGUAGE_CODES = {
	"english": "en-US",
	"filipino": "fil-PH",
}


class TranscriptionError(RuntimeError):
	pass


def decode_audio(audio_base64: str) -> bytes:
	# Browsers send data URLs ("data:audio/webm;base64,....")
	if audio_base64.startswith("data:") and "," in audio_base64:
		audio_base64 = audio_base64.split(",", 1)[1]
	try:
		content = base64.b64decode(audio_base64, validate=True)
	except (binascii.Error, ValueError) as e:
		raise TranscriptionError("Audio is not valid base64") from e
	if not content:
		raise TranscriptionError("Empty audio payload received")
	return content


def transcribe(audio_content: bytes, language: str, sample_rate_hz: Optional[int] = None) -> Tuple[str, Optional[float]]:
	"""Return (transcript, confidence) for a short flashcard recording.

	Blocking; call it from a worker thread. Raises google.api_core
	exceptions on API failures.
	"""
	client = speech.SpeechClient()
	config = speech.RecognitionConfig(
		language_code=LANGUAGE_CODES.get(language, "en-US"),
		model="default",
		enable_word_time_offsets=True,
		enable_automatic_punctuation=False,
		profanity_filter=True,
		sample_rate_hertz=sample_rate_hz or 0,
	)
	response = client.recognize(config=config, audio=speech.RecognitionAudio(content=audio_content))
	if not response.results:
		logger.info("No speech recognized in %d byte recording", len(audio_content))
		return "", None
	parts = []
	confidences = []
	for result in response.results:
		if not result.alternatives:
			continue
		best = result.alternatives[0]
		parts.append(best.transcript.strip())
		confidences.append(best.confidence)
	confidence = sum(confidences) / len(confidences) if confidences else None
	return " ".join(p for p in parts if p), confidence
