"""Spoken "remix" of an analysis document: short review script plus TTS audio."""
from __future__ import annotations

import asyncio
import io
import logging
import wave
from dataclasses import dataclass
from typing import Optional

from .gemini import GeminiClient

SAMPLE_RATE = 24_000
SAMPLE_WIDTH = 2
CHANNELS = 1
DEFAULT_VOICE = "Puck"

REMIX_PROMPT = """
You are an eccentric, enthusiastic film critic recording a short audio review.
Using the video analysis below, write a spoken script of at most 120 words that
reviews the video with playful energy. Mention the most memorable moments and
end with a one-line verdict. Output only the words to be spoken, with no stage
directions, markdown or emoji.

--- ANALYSIS ---
{document}
""".strip()


@dataclass(frozen=True)
class RemixResult:
    script: str
    audio: bytes
    sample_rate: int = SAMPLE_RATE

    @property
    def duration_sec(self) -> float:
        frames = max(0, len(self.audio) - 44) // (SAMPLE_WIDTH * CHANNELS)
        return round(frames / float(self.sample_rate), 3)


def pcm_to_wav(pcm: bytes, sample_rate: int = SAMPLE_RATE) -> bytes:
    """Wrap raw 16-bit mono PCM in a WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as handle:
        handle.setnchannels(CHANNELS)
        handle.setsampwidth(SAMPLE_WIDTH)
        handle.setframerate(sample_rate)
        handle.writeframes(pcm)
    return buffer.getvalue()


class RemixService:
    def __init__(
        self,
        client: GeminiClient,
        voice: str = DEFAULT_VOICE,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._client = client
        self._voice = voice
        self._logger = logger or logging.getLogger("reelscope.service.remix")

    def generate(self, document: str) -> RemixResult:
        script = self._client.generate_text(
            [{"text": REMIX_PROMPT.format(document=document)}],
            temperature=0.9,
        ).strip()
        pcm = self._client.synthesize_speech(script, self._voice)
        self._logger.info("Remix synthesized: %d chars of script, %d bytes of PCM", len(script), len(pcm))
        return RemixResult(script=script, audio=pcm_to_wav(pcm))

    async def generate_async(self, document: str) -> RemixResult:
        return await asyncio.to_thread(self.generate, document)


__all__ = ["RemixResult", "RemixService", "pcm_to_wav", "SAMPLE_RATE"]
