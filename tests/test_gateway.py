import base64
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from openai import APIConnectionError, AuthenticationError, BadRequestError, RateLimitError

from src.config import Settings
from src.services.gateway_service import (
    OCR_PROMPT,
    GatewayAuthError,
    GatewayConfig,
    GatewayOtherError,
    GatewayRateLimited,
    ModelGateway,
    guess_mime_type,
)

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16
_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _status_error(cls, status_code: int):
    return cls("boom", response=httpx.Response(status_code, request=_REQUEST), body=None)


def _mock_client(content="  {}  ", side_effect=None) -> MagicMock:
    choice = MagicMock()
    choice.message.content = content
    response = MagicMock()
    response.choices = [choice]

    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=response, side_effect=side_effect)
    return client


def _gateway(client, api_key="sk-test") -> ModelGateway:
    return ModelGateway(GatewayConfig(api_key=api_key, model="gpt-4o", max_tokens=1500, temperature=0.1), client)


# ── Request construction ──────────────────────────────────────────────────────


async def test_analyze_sends_prompt_and_data_url():
    client = _mock_client()

    await _gateway(client).analyze(PNG_BYTES, "image/png")

    client.chat.completions.create.assert_called_once()
    content = client.chat.completions.create.call_args.kwargs["messages"][0]["content"]
    text_blocks = [b for b in content if b["type"] == "text"]
    image_blocks = [b for b in content if b["type"] == "image_url"]
    expected_url = "data:image/png;base64," + base64.standard_b64encode(PNG_BYTES).decode()
    assert text_blocks[0]["text"] == OCR_PROMPT
    assert image_blocks[0]["image_url"]["url"] == expected_url


async def test_analyze_uses_configured_budget_and_temperature():
    client = _mock_client()

    await _gateway(client).analyze(PNG_BYTES)

    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o"
    assert kwargs["max_tokens"] == 1500
    assert kwargs["temperature"] == 0.1


async def test_analyze_returns_stripped_text():
    client = _mock_client(content='\n {"language": "French"} \n')

    assert await _gateway(client).analyze(PNG_BYTES) == '{"language": "French"}'


async def test_analyze_returns_empty_string_for_missing_content():
    client = _mock_client(content=None)

    assert await _gateway(client).analyze(PNG_BYTES) == ""


async def test_default_client_is_built_from_config_key():
    with patch("src.services.gateway_service.AsyncOpenAI") as mock_cls:
        mock_cls.return_value = _mock_client()
        gateway = ModelGateway(GatewayConfig(api_key="sk-from-config"))

        await gateway.analyze(PNG_BYTES)

    mock_cls.assert_called_once_with(api_key="sk-from-config")


def test_prompt_describes_both_output_shapes():
    assert '"isPoem": true' in OCR_PROMPT
    assert '"isPoem": false' in OCR_PROMPT
    assert "transliteration" in OCR_PROMPT


# ── Error classification ──────────────────────────────────────────────────────


async def test_missing_api_key_is_auth_error_without_calling_api():
    client = _mock_client()

    with pytest.raises(GatewayAuthError):
        await _gateway(client, api_key="").analyze(PNG_BYTES)

    client.chat.completions.create.assert_not_called()


async def test_authentication_failure_maps_to_auth_error():
    client = _mock_client(side_effect=_status_error(AuthenticationError, 401))

    with pytest.raises(GatewayAuthError):
        await _gateway(client).analyze(PNG_BYTES)


async def test_rate_limit_maps_to_rate_limited():
    client = _mock_client(side_effect=_status_error(RateLimitError, 429))

    with pytest.raises(GatewayRateLimited) as exc_info:
        await _gateway(client).analyze(PNG_BYTES)

    assert isinstance(exc_info.value.__cause__, RateLimitError)


async def test_other_api_error_maps_to_other_error():
    client = _mock_client(side_effect=_status_error(BadRequestError, 400))

    with pytest.raises(GatewayOtherError):
        await _gateway(client).analyze(PNG_BYTES)


async def test_connection_failure_maps_to_other_error():
    client = _mock_client(side_effect=APIConnectionError(request=_REQUEST))

    with pytest.raises(GatewayOtherError):
        await _gateway(client).analyze(PNG_BYTES)


# ── Helpers ───────────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "data, expected",
    [
        (PNG_BYTES, "image/png"),
        (b"\xff\xd8\xff\xe0rest", "image/jpeg"),
        (b"RIFF\x00\x00\x00\x00WEBPVP8 ", "image/webp"),
        (b"GIF89a....", "image/gif"),
        (b"unknown", "image/jpeg"),
    ],
)
def test_guess_mime_type(data, expected):
    assert guess_mime_type(data) == expected


def test_gateway_config_from_settings():
    settings = Settings(openai_api_key="sk-abc", openai_model="gpt-4o-mini", openai_max_tokens=900)

    config = GatewayConfig.from_settings(settings)

    assert config == GatewayConfig(api_key="sk-abc", model="gpt-4o-mini", max_tokens=900, temperature=0.2)
