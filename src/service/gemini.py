"""Gemini REST client used for video analysis and speech synthesis."""
from __future__ import annotations

import asyncio
import base64
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import requests

from src.pipeline.parser import TEMPLATE_LABELS, TemplateLabels
from src.pipeline.types import TransportPayload

from . import config

API_ROOT = "https://generativelanguage.googleapis.com/v1beta"
TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
EMPTY_RESPONSE_MESSAGE = "No text response received from the model."


class AnalysisError(RuntimeError):
    """Raised when the analysis service cannot produce a document."""

    def __init__(self, message: str, transient: bool = False, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.transient = transient
        self.status_code = status_code


def build_prompt(labels: TemplateLabels = TEMPLATE_LABELS) -> str:
    """Analysis instructions; the headers must stay in sync with the parser labels."""
    return f"""
You are an advanced video analysis AI. Your task is to generate a comprehensive and structured summary of the provided video, deeply analyzing both the visual and audio components.

CRITICAL: You must explicitly identify distinct speakers (e.g., "Speaker 1", "Interviewer", "Narrator").
For each segment, clearly separate the speaker identity, their sentiment, and the specific dialogue/content they delivered.

Please output the analysis in the following Markdown format:

{labels.executive}
A concise paragraph summarizing the video's core topic, purpose, and overall tone.

{labels.timeline}
Break down the video into key segments. For each segment, provide:

{labels.segment} [MM:SS] - [Topic/Event Title]
*   **{labels.speaker}**: [Identify the speaker/s]
*   **{labels.sentiment}**: [Positive / Neutral / Negative] - [Brief context]
*   **{labels.dialogue}**: [Key quotes, arguments, or detailed summary of what was said]
*   **{labels.visual_context}**: Describe the visual scene, text on screen, actions, or environment that accompanies the audio.

{labels.current_takeaways}
*   **[Point title]**: [Critical observation or takeaway]
*   **[Point title]**: [Critical observation or takeaway]
*   **[Point title]**: [Critical observation or takeaway]
""".strip()


@dataclass
class GeminiConfig:
    api_key: str = ""
    model: str = "gemini-2.0-flash"
    tts_model: str = "gemini-2.5-flash-preview-tts"
    timeout_sec: float = 300.0
    max_retries: int = 0
    retry_delay_sec: float = 0.5
    temperature: float = 0.4
    max_output_tokens: int = 4096
    api_root: str = API_ROOT

    @classmethod
    def from_env(cls) -> "GeminiConfig":
        return cls(
            api_key=config.GEMINI_API_KEY,
            model=config.GEMINI_MODEL,
            tts_model=config.GEMINI_TTS_MODEL,
            timeout_sec=config.GEMINI_TIMEOUT_SEC,
            max_retries=max(0, config.ANALYZE_MAX_RETRIES),
            retry_delay_sec=max(0, config.ANALYZE_RETRY_DELAY_MS) / 1000,
        )


def extract_text(response: Dict[str, Any]) -> str:
    texts: List[str] = []
    for candidate in response.get("candidates") or []:
        for part in (candidate.get("content") or {}).get("parts") or []:
            text = part.get("text")
            if text:
                texts.append(text)
        if texts:
            break
    return "".join(texts)


def extract_audio(response: Dict[str, Any]) -> bytes:
    for candidate in response.get("candidates") or []:
        for part in (candidate.get("content") or {}).get("parts") or []:
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data"):
                return base64.b64decode(inline["data"])
    return b""


def _error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text.strip() or response.reason or f"HTTP {response.status_code}"
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return response.reason or f"HTTP {response.status_code}"


class GeminiClient:
    """Thin synchronous wrapper over ``models/*:generateContent``.

    Blocking calls are pushed off the event loop by the async helpers.
    Transient failures (timeouts, connection resets, 429 and 5xx) are retried
    ``max_retries`` times; everything else surfaces as ``AnalysisError`` with
    the service's own message.
    """

    def __init__(
        self,
        gemini_config: Optional[GeminiConfig] = None,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._config = gemini_config or GeminiConfig.from_env()
        self._session = session or requests.Session()
        self._logger = logger or logging.getLogger("reelscope.service.gemini")

    @property
    def config(self) -> GeminiConfig:
        return self._config

    def generate(self, model: str, body: Dict[str, Any]) -> Dict[str, Any]:
        if not self._config.api_key:
            raise AnalysisError("GEMINI_API_KEY is not configured")
        url = f"{self._config.api_root}/models/{model}:generateContent"
        attempts = self._config.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return self._post(url, body)
            except AnalysisError as error:
                self._logger.warning("Gemini attempt %s/%s failed: %s", attempt, attempts, error)
                if not error.transient or attempt == attempts:
                    raise
                if self._config.retry_delay_sec:
                    time.sleep(self._config.retry_delay_sec)
        raise AnalysisError("Gemini retries exhausted")

    def _post(self, url: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self._session.post(
                url,
                json=body,
                headers={"x-goog-api-key": self._config.api_key},
                timeout=(min(30.0, self._config.timeout_sec), self._config.timeout_sec),
            )
        except requests.Timeout as error:
            raise AnalysisError(f"Request to Gemini timed out: {error}", transient=True) from error
        except requests.RequestException as error:
            raise AnalysisError(f"Network error contacting Gemini: {error}", transient=True) from error
        if response.status_code >= 400:
            raise AnalysisError(
                _error_message(response),
                transient=response.status_code in TRANSIENT_STATUS_CODES,
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as error:
            raise AnalysisError("Gemini returned a malformed response") from error

    def generate_text(self, parts: List[Dict[str, Any]], temperature: Optional[float] = None) -> str:
        body = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "temperature": self._config.temperature if temperature is None else temperature,
                "maxOutputTokens": self._config.max_output_tokens,
            },
        }
        text = extract_text(self.generate(self._config.model, body))
        if not text.strip():
            raise AnalysisError(EMPTY_RESPONSE_MESSAGE)
        return text

    def analyze_video(self, payload: TransportPayload, on_sending: Optional[Callable[[], None]] = None) -> str:
        started = time.perf_counter()
        parts = [
            {"text": build_prompt()},
            {"inlineData": {"mimeType": payload.media_type, "data": payload.data}},
        ]
        if on_sending is not None:
            on_sending()
        document = self.generate_text(parts)
        self._logger.info(
            "Gemini analysis of %d bytes finished in %.2fs (%d chars)",
            payload.source_bytes,
            time.perf_counter() - started,
            len(document),
        )
        return document

    def synthesize_speech(self, text: str, voice: str) -> bytes:
        """Return raw 16-bit mono PCM at 24 kHz."""
        body = {
            "contents": [{"role": "user", "parts": [{"text": text}]}],
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {"voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice}}},
            },
        }
        audio = extract_audio(self.generate(self._config.tts_model, body))
        if not audio:
            raise AnalysisError("No audio data received from the model.")
        return audio

    async def analyze(self, payload: TransportPayload, on_status: Callable[[str], None]) -> str:
        on_status("initializing")
        loop = asyncio.get_running_loop()

        def _sending() -> None:
            loop.call_soon_threadsafe(on_status, "sending")

        return await asyncio.to_thread(self.analyze_video, payload, _sending)


__all__ = [
    "AnalysisError",
    "GeminiClient",
    "GeminiConfig",
    "build_prompt",
    "extract_audio",
    "extract_text",
]
