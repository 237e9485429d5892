import re

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator, model_validator
from pydantic_core import PydanticCustomError

BASE64_PATTERN = re.compile(r"[A-Za-z0-9+/=]+")


class Stanza(BaseModel):
    model_config = ConfigDict(frozen=True)

    original: str = ""
    transliteration: str | None = Field(
        default=None,
        description="Romanized reading. Omitted entirely when the model gave none.",
    )
    translation: str = ""


class ExtractionResult(BaseModel):
    """Canonical result of one OCR + translation request.

    `content` is a list of stanzas when `isPoem` is true and a single string
    otherwise. Serialize with `by_alias=True, exclude_none=True` so that an
    absent `translation` / `transliteration` never reaches the wire.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    language: str
    is_poem: bool = Field(alias="isPoem")
    content: list[Stanza] | str
    translation: str | None = None

    @model_validator(mode="after")
    def check_content_matches_kind(self) -> "ExtractionResult":
        if self.is_poem and isinstance(self.content, str):
            raise ValueError("poem content must be a list of stanzas")
        if not self.is_poem and not isinstance(self.content, str):
            raise ValueError("plain-text content must be a string")
        return self

    @property
    def stanzas(self) -> list[Stanza]:
        return self.content if self.is_poem else []

    @property
    def text(self) -> str:
        if self.is_poem:
            return "\n\n".join(stanza.original for stanza in self.content)
        return self.content


class ProcessImageRequest(BaseModel):
    image: StrictStr = Field(
        ...,
        description="Base64-encoded JPEG/PNG bytes, without a data-URL prefix.",
    )

    @field_validator("image")
    @classmethod
    def check_base64_alphabet(cls, value: str) -> str:
        if not value:
            raise PydanticCustomError("missing_image", "Invalid or missing image data")
        if not BASE64_PATTERN.fullmatch(value):
            raise PydanticCustomError("invalid_base64", "Invalid base64 image format")
        return value


class ErrorResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    error: str
    details: str | None = None
    raw_response: str | None = Field(
        default=None,
        alias="rawResponse",
        description="Leading excerpt of the model reply, for debugging.",
    )
