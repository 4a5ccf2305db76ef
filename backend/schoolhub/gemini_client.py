from __future__ import annotations
import json
import logging
import re
from typing import Any, Dict, Optional

import httpx

from .settings import settings

logger = logging.getLogger(__name__)


class GeminiError(RuntimeError):
	pass


class GeminiClient:
	"""Text generation through Gemini, falling back to OpenRouter when configured."""

	def __init__(self, api_key: Optional[str] = None, *, model: Optional[str] = None, timeout: float = 30) -> None:
		self.api_key = api_key or settings.gemini_api_key
		if not self.api_key:
			raise GeminiError("GEMINI_API_KEY is not configured")
		self.model = model or settings.gemini_model
		if settings.gemini_provider == "vertex":
			region = settings.vertex_region
			project = settings.vertex_project or "placeholder-project"
			self.base_url = (
				f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{region}/publishers/google/models/{self.model}:generateContent"
			)
			self._auth_in_query = False
		else:
			self.base_url = f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
			self._auth_in_query = True
		self._timeout = timeout

	async def generate(self, prompt: str) -> str:
		try:
			return await self._gemini(prompt)
		except (httpx.HTTPError, GeminiError) as primary:
			if not settings.openrouter_api_key:
				raise GeminiError(f"Gemini call failed: {primary}") from primary
			logger.warning("Gemini call failed (%s); trying OpenRouter", primary)
			try:
				return await self._openrouter(prompt)
			except (httpx.HTTPError, GeminiError) as fallback:
				raise GeminiError(
					f"Gemini primary call failed ({primary}); fallback via OpenRouter also failed"
				) from fallback

	async def generate_json(self, prompt: str) -> Dict[str, Any]:
		return extract_json_block(await self.generate(prompt))

	async def _gemini(self, prompt: str) -> str:
		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		payload = {"contents": [{"parts": [{"text": prompt}]}]}
		async with httpx.AsyncClient(timeout=self._timeout) as client:
			r = await client.post(self.base_url, params=params, headers=headers, json=payload)
			r.raise_for_status()
		try:
			return r.json()["candidates"][0]["content"]["parts"][0]["text"]
		except (KeyError, IndexError, ValueError) as e:
			raise GeminiError(f"Unexpected Gemini response: {r.text[:200]}") from e

	async def _openrouter(self, prompt: str) -> str:
		headers = {
			"Authorization": f"Bearer {settings.openrouter_api_key}",
			"Content-Type": "application/json",
			"HTTP-Referer": settings.openrouter_referer,
			"X-Title": settings.openrouter_title,
		}
		payload = {
			"model": settings.openrouter_model,
			"messages": [{"role": "user", "content": prompt}],
		}
		async with httpx.AsyncClient(timeout=self._timeout) as client:
			r = await client.post(settings.openrouter_base_url, headers=headers, json=payload)
			r.raise_for_status()
		try:
			return r.json()["choices"][0]["message"]["content"]
		except (KeyError, IndexError, ValueError) as e:
			raise GeminiError(f"Unexpected OpenRouter response: {r.text[:200]}") from e


def extract_json_block(text: str) -> Dict[str, Any]:
	"""Parse the JSON object in an LLM reply, tolerating prose or code fences around it."""
	try:
		data = json.loads(text)
	except (TypeError, ValueError):
		match = re.search(r"\{[\s\S]*\}", text or "")
		if not match:
			raise GeminiError("No JSON object found in model output")
		try:
			data = json.loads(match.group(0))
		except ValueError as e:
			raise GeminiError("Model output is not valid JSON") from e
	if not isinstance(data, dict):
		raise GeminiError("Model output is not a JSON object")
	return data
