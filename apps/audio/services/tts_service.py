import logging

import aiofiles
import httpx
from django.conf import settings

from apps.files.exceptions import ServiceNotConfiguredError, UpstreamError, UpstreamTimeoutError
from apps.audio.exceptions import AudioGenerationError, AudioTooLargeError
from apps.audio.storage import remove_quietly

logger = logging.getLogger(__name__)

ELEVENLABS_API_URL = "https://api.elevenlabs.io/v1"
DEFAULT_VOICE_ID = "pNInz6obpgDQGcFmaJgB"

MAX_TEXT_LENGTH = 5000
MAX_AUDIO_BYTES = 50 * 1024 * 1024

VOICE_SETTINGS = {
    "stability": 0.5,
    "similarity_boost": 0.7,
    "style": 0.2,
    "use_speaker_boost": True,
}


def prepare_text(text: str) -> str:
    if len(text) > MAX_TEXT_LENGTH:
        return text[:MAX_TEXT_LENGTH] + "..."
    return text


class TextToSpeechService:
    """
    Client for the ElevenLabs text-to-speech REST API.
    """

    def __init__(self, api_key=None, voice_id=None, timeout=None, probe_timeout=None):
        self.api_key = api_key if api_key is not None else getattr(settings, "ELEVENLABS_API_KEY", None)
        self.voice_id = voice_id or getattr(settings, "ELEVENLABS_VOICE_ID", DEFAULT_VOICE_ID)
        timeouts = getattr(settings, "UPSTREAM_TIMEOUTS", {})
        self.timeout = timeout or timeouts.get("audio", 60.0)
        self.probe_timeout = probe_timeout or 10.0

    def has_valid_key_format(self) -> bool:
        return isinstance(self.api_key, str) and len(self.api_key) >= 10

    @property
    def key_preview(self) -> str:
        return f"{self.api_key[:10]}..." if self.api_key else ""

    def _headers(self) -> dict:
        return {"xi-api-key": self.api_key}

    async def fetch_user(self) -> dict:
        """
        Checks the API key against /v1/user and returns the account info.
        Raises UpstreamError carrying the upstream status when the key is refused.
        """
        if not self.has_valid_key_format():
            raise ServiceNotConfiguredError(
                "TTS service not configured",
                details="ELEVENLABS_API_KEY is missing or has invalid format",
            )

        try:
            async with httpx.AsyncClient(timeout=self.probe_timeout) as client:
                response = await client.get(f"{ELEVENLABS_API_URL}/user", headers=self._headers())
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError("Request timeout") from e
        except httpx.HTTPError as e:
            raise UpstreamError("Network error - cannot reach TTS service", details=str(e)) from e

        if response.status_code != 200:
            logger.error(f"ElevenLabs API key test failed with status {response.status_code}")
            raise UpstreamError(
                "Invalid ElevenLabs API key",
                details=response.text,
                status_code=401 if response.status_code in (401, 403) else None,
            )
        return response.json()

    async def ensure_key(self):
        try:
            await self.fetch_user()
        except UpstreamTimeoutError:
            raise
        except UpstreamError as e:
            raise UpstreamError(
                "Invalid ElevenLabs API key",
                details="API key authentication failed. Please check your ELEVENLABS_API_KEY.",
                status_code=401,
            ) from e

    async def synthesize_to_file(self, text: str, path, max_bytes=MAX_AUDIO_BYTES) -> int:
        """
        Streams the synthesized speech for text into path and returns its size.
        The partial file is removed on any failure.
        """
        url = f"{ELEVENLABS_API_URL}/text-to-speech/{self.voice_id}"
        payload = {"text": text, "voice_settings": VOICE_SETTINGS}
        headers = {
            **self._headers(),
            "Content-Type": "application/json",
            "Accept": "audio/mpeg",
        }

        logger.info(f"Calling ElevenLabs API ({len(text)} characters, key {self.key_preview})")
        written = 0
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                async with client.stream("POST", url, headers=headers, json=payload) as response:
                    if response.status_code != 200:
                        await response.aread()
                        raise self._upstream_error(response)

                    async with aiofiles.open(path, "wb") as fh:
                        async for chunk in response.aiter_bytes():
                            written += len(chunk)
                            if written > max_bytes:
                                raise AudioTooLargeError()
                            await fh.write(chunk)
        except httpx.TimeoutException as e:
            remove_quietly(path)
            logger.error(f"ElevenLabs request timed out: {e}")
            raise UpstreamTimeoutError("Request timeout") from e
        except httpx.HTTPError as e:
            remove_quietly(path)
            logger.error(f"Network error calling ElevenLabs: {e}")
            raise UpstreamError("Network error - cannot reach TTS service", details=str(e)) from e
        except Exception:
            remove_quietly(path)
            raise

        if written == 0:
            remove_quietly(path)
            logger.error("Generated audio file is empty")
            raise AudioGenerationError("Generated audio file is empty")

        logger.info(f"Audio saved: {path} ({written} bytes)")
        return written

    @staticmethod
    def _upstream_error(response) -> UpstreamError:
        status = response.status_code
        logger.error(f"ElevenLabs API error. Status: {status}, Error: {response.text}")
        if status == 401:
            return UpstreamError(
                "Invalid ElevenLabs API key",
                details="Authentication failed. Please verify your API key is correct and active.",
                status_code=401,
            )
        if status == 429:
            return UpstreamError(
                "Rate limit exceeded",
                details="Too many requests to ElevenLabs API. Please try again later.",
                status_code=429,
            )
        if status == 400:
            return UpstreamError(
                "Invalid request to TTS service",
                details=response.text or "The text or voice settings may be invalid",
                status_code=400,
            )
        return UpstreamError("Audio generation failed", details=f"TTS service returned status {status}")
