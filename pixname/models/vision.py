"""Schema for the JSON object the vision model is asked to produce."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class VisionAnalysis(BaseModel):
    """Fields suggested by the vision model for one image.

    Validation is lenient: models return nulls, comma-separated tag strings or
    lists of authors often enough that rejecting them would waste a call.
    """

    model_config = ConfigDict(extra="ignore")

    suggested_filename: str = Field(default="", description="Descriptive filename stem")
    title: str = Field(default="", description="Short photo-style title")
    subject: str = Field(default="", description="What the image is about")
    description: str = Field(default="", description="Factual description of the content")
    tags: list[str] = Field(default_factory=list, description="Lower-case keywords")
    comments: str = Field(default="", description="Style, mood or composition notes")
    authors: str = Field(default="", description="Creator, only when visible in the image")
    copyright: str = Field(default="", description="Copyright notice, only when visible in the image")
    visible_date: str = Field(default="", description="Date, only when visible in the image")

    @field_validator(
        "suggested_filename",
        "title",
        "subject",
        "description",
        "comments",
        "authors",
        "copyright",
        "visible_date",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, list):
            return ", ".join(str(item).strip() for item in value if item is not None and str(item).strip())
        return str(value).strip()

    @field_validator("tags", mode="before")
    @classmethod
    def _coerce_tags(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = value.replace(";", ",").split(",")
        if not isinstance(value, list):
            value = [value]
        return [str(tag).strip() for tag in value if tag is not None and str(tag).strip()]
