import base64
import logging
from dataclasses import dataclass

from openai import APIError, AsyncOpenAI, AuthenticationError, RateLimitError

from ..config import Settings

logger = logging.getLogger(__name__)

OCR_PROMPT = (
    "Extract any text from this image and detect its language. "
    "Decide whether the text is a poem: it is a poem when it shows verse structure "
    "(short lines, line breaks that are not dictated by the page width, stanzas, rhyme or metre). "
    "If it is a poem, split it into stanzas in reading order, transliterate each stanza into "
    "Roman script (omit transliteration when the text is already in Roman script) and give a "
    "simple English translation that keeps the meaning. Return:\n"
    '{"language": string, "isPoem": true, "content": '
    '[{"original": string, "transliteration": string, "translation": string}]}\n'
    "If it is not a poem, return the extracted text and an English translation "
    "(omit translation when the text is already English):\n"
    '{"language": string, "isPoem": false, "content": string, "translation": string}\n'
    "Respond with the JSON object only: no Markdown, no code fences, no commentary."
)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class GatewayError(Exception):
    pass


class GatewayAuthError(GatewayError):
    pass


class GatewayRateLimited(GatewayError):
    pass


class GatewayOtherError(GatewayError):
    pass


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def guess_mime_type(image_bytes: bytes, fallback: str = "image/jpeg") -> str:
    if image_bytes.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if image_bytes.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    if image_bytes[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    return fallback


@dataclass(frozen=True)
class GatewayConfig:
    api_key: str
    model: str = "gpt-4o"
    max_tokens: int = 2000
    temperature: float = 0.2

    @classmethod
    def from_settings(cls, settings: Settings) -> "GatewayConfig":
        return cls(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            max_tokens=settings.openai_max_tokens,
            temperature=settings.openai_temperature,
        )


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

class ModelGateway:
    """Single outbound call to the multimodal chat-completion API."""

    def __init__(self, config: GatewayConfig, client: AsyncOpenAI | None = None) -> None:
        self._config = config
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._config.api_key)
        return self._client

    def build_messages(self, image_bytes: bytes, mime_type: str) -> list[dict]:
        image_data = base64.standard_b64encode(image_bytes).decode()
        return [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": OCR_PROMPT},
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:{mime_type};base64,{image_data}"},
                    },
                ],
            }
        ]

    async def analyze(self, image_bytes: bytes, mime_type: str = "image/jpeg") -> str:
        if not self._config.api_key:
            logger.warning("OpenAI request skipped: no API key configured")
            raise GatewayAuthError("no OpenAI API key configured")

        try:
            response = await self._get_client().chat.completions.create(
                model=self._config.model,
                messages=self.build_messages(image_bytes, mime_type),
                max_tokens=self._config.max_tokens,
                temperature=self._config.temperature,
            )
        except AuthenticationError as exc:
            logger.warning("OpenAI request failed: invalid API key")
            raise GatewayAuthError(str(exc)) from exc
        except RateLimitError as exc:
            logger.warning("OpenAI request failed: rate limit exceeded")
            raise GatewayRateLimited(str(exc)) from exc
        except APIError as exc:
            logger.warning("OpenAI request failed: %s", exc)
            raise GatewayOtherError(str(exc)) from exc

        if not response.choices:
            return ""
        return (response.choices[0].message.content or "").strip()
