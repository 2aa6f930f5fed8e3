# speech.py
import logging
from typing import Optional, Protocol

from openai import OpenAI, OpenAIError

from errors import StageError

logger = logging.getLogger(__name__)


class Transcriber(Protocol):
    def transcribe(self, audio: bytes) -> str: ...


class OpenAITranscriber:
    """Speech-to-text through the OpenAI audio transcription endpoint."""

    def __init__(
        self,
        client: Optional[OpenAI] = None,
        model: str = "whisper-1",
        api_key: Optional[str] = None,
        filename: str = "speech.webm",
    ):
        self.client = client or OpenAI(api_key=api_key or None)
        self.model = model
        self.filename = filename

    def transcribe(self, audio: bytes) -> str:
        if not audio:
            raise StageError("transcript", "Transcription failed: empty recording")
        try:
            result = self.client.audio.transcriptions.create(model=self.model, file=(self.filename, audio))
        except OpenAIError as exc:
            raise StageError("transcript", f"Transcription failed: {exc}") from exc

        text = (getattr(result, "text", "") or "").strip()
        if not text:
            raise StageError("transcript", "Transcription failed: no speech detected")
        logger.info("📝 Transcript: %s", text)
        return text
