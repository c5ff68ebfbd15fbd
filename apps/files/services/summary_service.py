import logging
import re

import httpx
from django.conf import settings

from apps.files.exceptions import ServiceNotConfiguredError, UnsupportedTypeError, UpstreamError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models"

PROSE_EXTENSIONS = ("txt", "md", "json")
DATA_EXTENSIONS = ("csv",)
CODE_EXTENSIONS = ("js", "py", "html", "css")
SUPPORTED_EXTENSIONS = PROSE_EXTENSIONS + DATA_EXTENSIONS + CODE_EXTENSIONS

PROMPT_CONTENT_LIMIT = 4000


def is_supported(extension: str) -> bool:
    return (extension or "").lower() in SUPPORTED_EXTENSIONS


def build_prompt(extension: str, content: str) -> str:
    extension = extension.lower()
    excerpt = content[:PROMPT_CONTENT_LIMIT]

    if extension in PROSE_EXTENSIONS:
        return (
            f"Please summarize this {extension.upper()} file in clear, natural English as if you're describing "
            "it to a team. Avoid lists, asterisks, or Markdown symbols. Use complete sentences and paragraph "
            f"structure. Be concise and human-readable:\n\n{excerpt}"
        )
    if extension in DATA_EXTENSIONS:
        return (
            "Please analyze this CSV data. Describe the structure, identify key columns, and provide insights "
            f"about the data:\n\n{excerpt}"
        )
    if extension in CODE_EXTENSIONS:
        return (
            f"Please explain what this {extension.upper()} code does, as if you were describing it to a software "
            "engineering team. Provide key insights and main points, use natural English. Avoid lists, asterisks, "
            "or Markdown symbols. Use complete sentences and paragraph structure. Be concise and "
            f"human-readable:\n\n{excerpt}"
        )
    raise UnsupportedTypeError(f"File type .{extension} is not supported for analysis")


def clean_summary(summary: str) -> str:
    """
    Strips the markup the model tends to add so the text reads well aloud.
    """
    text = re.sub(r"[*_~`]+", "", summary)
    text = re.sub(r"^\d+\.\s*", "", text, flags=re.MULTILINE)
    text = re.sub(r":\s*", ". ", text)
    text = re.sub(r"\s{2,}", " ", text)
    return text.strip()


class SummaryService:
    """
    Summarizes text files with Gemini's generateContent REST endpoint.
    """

    def __init__(self, api_key=None, model=None, timeout=None):
        self.api_key = api_key if api_key is not None else getattr(settings, "GOOGLE_API_KEY", None)
        self.model = model or getattr(settings, "GEMINI_MODEL", "gemini-1.5-flash")
        timeouts = getattr(settings, "UPSTREAM_TIMEOUTS", {})
        self.timeout = timeout or timeouts.get("content", 30.0)
        self.temperature = 0.7
        self.max_output_tokens = 1000

    async def summarize(self, extension: str, content: str) -> str:
        """
        Returns the cleaned summary of content. Raises UnsupportedTypeError,
        ServiceNotConfiguredError or UpstreamError.
        """
        prompt = build_prompt(extension, content)

        if not self.api_key:
            logger.error("Missing Google API key in settings")
            raise ServiceNotConfiguredError("Google API key not configured")

        raw = await self._generate(prompt)
        return clean_summary(raw)

    async def _generate(self, prompt: str) -> str:
        url = f"{GEMINI_API_URL}/{self.model}:generateContent"
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_output_tokens,
            },
        }

        logger.info(f"Sending {len(prompt)} character prompt to {self.model}")
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, params={"key": self.api_key}, json=payload)
        except httpx.TimeoutException as e:
            logger.error(f"Summarizer timed out: {e}")
            raise UpstreamTimeoutError("Summarizer timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"HTTP error calling summarizer: {e}")
            raise UpstreamError(f"Failed to analyze file: {str(e)}") from e

        if response.status_code != 200:
            logger.error(f"Summarizer error. Status: {response.status_code}, Error: {response.text}")
            status = response.status_code if response.status_code in (401, 429) else None
            raise UpstreamError(
                f"Summarizer returned status {response.status_code}",
                status_code=status,
            )

        text = self._extract_text(response.json())
        if not text:
            raise UpstreamError("No summary generated")
        logger.info(f"Summary generated ({len(text)} characters)")
        return text

    @staticmethod
    def _extract_text(data) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts if isinstance(part, dict))
