import base64
import binascii
import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..config import settings
from ..models.extraction import ErrorResponse, ExtractionResult, ProcessImageRequest
from ..services.gateway_service import (
    GatewayAuthError,
    GatewayConfig,
    GatewayError,
    GatewayRateLimited,
    ModelGateway,
    guess_mime_type,
)
from ..services.normalizer_service import NormalizationError, normalize

router = APIRouter(prefix="/api", tags=["OCR"])
logger = logging.getLogger(__name__)

MSG_INVALID_IMAGE = "Invalid or missing image data"
MSG_INVALID_BASE64 = "Invalid base64 image format"
MSG_IMAGE_TOO_LARGE = "Image file is too large. Please select an image under 10MB."
MSG_AUTH_FAILED = "OpenAI API key is missing or invalid"
MSG_RATE_LIMITED = "Rate limit exceeded. Please try again later."
MSG_GATEWAY_FAILED = "Failed to process image"

_CUSTOM_VALIDATION_TYPES = {"missing_image", "invalid_base64"}


def get_gateway() -> ModelGateway:
    return ModelGateway(GatewayConfig.from_settings(settings))


def error_response(
    status_code: int,
    error: str,
    details: str | None = None,
    raw_response: str | None = None,
) -> JSONResponse:
    body = ErrorResponse(error=error, details=details, raw_response=raw_response)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    error = first["msg"] if first.get("type") in _CUSTOM_VALIDATION_TYPES else MSG_INVALID_IMAGE
    details = "; ".join(
        f"{'.'.join(str(part) for part in e.get('loc', ()))}: {e.get('msg')}" for e in errors
    )
    return error_response(status.HTTP_400_BAD_REQUEST, error, details or None)


# ─────────────────────────────────────────────
# POST /api/process-image
# Decode → Vision model → Normalize
# ─────────────────────────────────────────────

@router.post(
    "/process-image",
    response_model=ExtractionResult,
    response_model_exclude_none=True,
    responses={
        400: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
    summary="OCR, transliterate and translate an image",
    description=(
        "Accepts a base64-encoded image, asks the vision model to extract its text, detect the "
        "language and translate it (stanza by stanza when the text is a poem), and returns the "
        "normalized result."
    ),
)
async def process_image(
    request: ProcessImageRequest,
    gateway: ModelGateway = Depends(get_gateway),
) -> ExtractionResult | JSONResponse:
    # 1. Decode
    try:
        image_bytes = base64.b64decode(request.image, validate=True)
    except (binascii.Error, ValueError) as exc:
        return error_response(status.HTTP_400_BAD_REQUEST, MSG_INVALID_BASE64, str(exc))

    if not image_bytes:
        return error_response(status.HTTP_400_BAD_REQUEST, MSG_INVALID_IMAGE)

    if len(image_bytes) > settings.max_image_bytes:
        return error_response(
            status.HTTP_400_BAD_REQUEST,
            MSG_IMAGE_TOO_LARGE,
            f"{len(image_bytes)} bytes exceeds the {settings.max_image_bytes} byte limit",
        )

    # 2. Ask the model
    try:
        raw = await gateway.analyze(image_bytes, guess_mime_type(image_bytes))
    except GatewayAuthError:
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, MSG_AUTH_FAILED)
    except GatewayRateLimited as exc:
        return error_response(status.HTTP_429_TOO_MANY_REQUESTS, MSG_RATE_LIMITED, str(exc))
    except GatewayError as exc:
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, MSG_GATEWAY_FAILED, str(exc))

    # 3. Normalize
    try:
        return normalize(raw, settings.raw_excerpt_chars)
    except NormalizationError as exc:
        logger.warning("Normalization failed with %s", type(exc).__name__)
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            exc.message,
            exc.details,
            exc.excerpt or None,
        )
