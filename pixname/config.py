"""Configuration models passed explicitly to every component."""

from enum import Enum

from pydantic import BaseModel, Field


DEFAULT_BASE_URL = "http://127.0.0.1:1234/v1"
DEFAULT_MODEL = "qwen2.5-vl-7b-instruct"

# Sanitized filename stems are capped at this many characters
MAX_FILENAME_LENGTH = 100

# Inline display limit for error messages (full text stays on the record)
MAX_ERROR_PREVIEW_LENGTH = 80


class FilenameStyle(str, Enum):
    """Case style applied to suggested filenames."""

    LOWERCASE = "lowercase"
    TITLE_CASE = "title_case"


class VisionServiceConfig(BaseModel):
    """Connection settings for the OpenAI-compatible vision endpoint."""

    base_url: str = Field(default=DEFAULT_BASE_URL, description="Base URL of the API, including the /v1 suffix")
    model: str = Field(default=DEFAULT_MODEL, description="Model identifier to request")
    api_key: str = Field(default="not-needed", description="API key (local servers ignore it)")
    timeout_seconds: float = Field(default=120.0, gt=0, description="Per-request timeout")
    max_retries: int = Field(default=3, ge=1, description="Total attempts per image, including the first")
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1024, gt=0)
    max_image_dimension: int = Field(default=1024, gt=0, description="Longest side sent to the model")
    max_image_bytes: int = Field(default=4 * 1024 * 1024, gt=0, description="Files above this size are re-encoded")
    retry_base_delay: float = Field(default=2.0, ge=0.0, description="First backoff delay in seconds")
    rate_limit_backoff_multiplier: float = Field(
        default=3.0,
        ge=1.0,
        description="Factor applied to the exponential backoff after a 429",
    )

    @property
    def models_endpoint(self) -> str:
        return f"{self.base_url.rstrip('/')}/models"


class ProcessingOptions(BaseModel):
    """User-facing options for a scan/analyze/apply run."""

    recursive: bool = False
    skip_existing_metadata: bool = Field(default=False, description="Skip images that already carry tags")
    filename_style: FilenameStyle = FilenameStyle.LOWERCASE
    max_tags: int = Field(default=10, ge=1)
    write_metadata: bool = True
    metadata_delay: float = Field(
        default=0.05,
        ge=0.0,
        description="Pause between a rename and the metadata write on the renamed file",
    )
