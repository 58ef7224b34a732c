"""
Gemini Service
Thin wrapper around the Gemini generateContent API for chat transcripts.

The API key travels in the `key` query parameter. Point
GEMINI_API_BASE_URL at a trusted proxy to keep the key off untrusted hosts.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from compliance_app.config import settings
from compliance_app.exceptions import GenerativeEndpointError

logger = logging.getLogger(__name__)

Contents = List[Dict[str, Any]]


class GeminiService:
    def __init__(
        self,
        api_key: Optional[str],
        *,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url or settings.gemini_api_base_url
        self.model = model or settings.gemini_model
        self.timeout = timeout if timeout is not None else settings.gemini_timeout_seconds

    @staticmethod
    def text_generation_config() -> Dict[str, Any]:
        return {
            "temperature": settings.gemini_temperature,
            "topK": settings.gemini_top_k,
            "topP": settings.gemini_top_p,
            "responseMimeType": "text/plain",
        }

    @staticmethod
    def structured_generation_config(schema: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "temperature": settings.gemini_temperature,
            "responseMimeType": "application/json",
            "responseSchema": schema,
        }

    async def generate_text(self, contents: Contents) -> Optional[str]:
        """Free-text reply for a transcript; None when no candidate text came back."""
        payload = await self._invoke_gemini(
            body={"contents": contents, "generationConfig": self.text_generation_config()},
        )
        return self.extract_text(payload)

    async def generate_structured(self, contents: Contents, schema: Dict[str, Any]) -> Optional[str]:
        """Schema-constrained reply; returns the raw JSON text of the first candidate."""
        payload = await self._invoke_gemini(
            body={"contents": contents, "generationConfig": self.structured_generation_config(schema)},
        )
        return self.extract_text(payload)

    async def _invoke_gemini(self, *, body: Dict[str, Any]) -> Dict[str, Any]:
        if not self.api_key:
            raise GenerativeEndpointError("AI service not available (API key missing).")

        url = f"{self.base_url}/{self.model}:generateContent"
        logger.debug("Sending %d transcript entries to Gemini model %s", len(body.get("contents", [])), self.model)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, params={"key": self.api_key}, json=body)
        except httpx.TimeoutException as exc:
            logger.error("Gemini request timed out after %ss", self.timeout)
            raise GenerativeEndpointError(f"Gemini request timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            logger.exception("Gemini request failed to reach %s", self.base_url)
            raise GenerativeEndpointError(f"Failed to reach Gemini: {exc}") from exc

        if response.status_code >= 400:
            message = self._error_message(response)
            logger.error("Gemini API error (%s): %s", response.status_code, message)
            raise GenerativeEndpointError(
                f"Gemini API error: {message}. Check model '{self.model}' and base_url '{self.base_url}'.",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise GenerativeEndpointError("Gemini returned a non-JSON response", status_code=response.status_code) from exc

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        error = data.get("error") if isinstance(data, dict) else None
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        return response.reason_phrase or response.text

    @staticmethod
    def extract_text(payload: Dict[str, Any]) -> Optional[str]:
        candidates = payload.get("candidates") or []
        for candidate in candidates:
            content = candidate.get("content") or {}
            parts = content.get("parts") or []
            if parts:
                text = parts[0].get("text")
                if text:
                    return text
        return None

    @staticmethod
    def strip_code_fences(text: str) -> str:
        """
        JSON sometimes arrives wrapped in markdown code fences.
        """
        candidate = text.strip()
        if candidate.startswith("```"):
            lines = candidate.splitlines()
            if lines and lines[0].startswith("```"):
                lines = lines[1:]
            if lines and lines[-1].startswith("```"):
                lines = lines[:-1]
            candidate = "\n".join(lines).strip()
        return candidate
