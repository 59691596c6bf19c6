"""Metadata fields embedded into image files."""

from pydantic import BaseModel, Field, field_validator

from pixname.filenames import clean_tag
from pixname.models.analysis import AnalysisRecord


class MetadataFields(BaseModel):
    """Human-readable metadata, independent of the container it is stored in."""

    title: str = ""
    comment: str = Field(default="", description="Subject, description and comments merged into one block")
    tags: list[str] = Field(default_factory=list)
    author: str = ""
    copyright: str = ""

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, tags: list[str]) -> list[str]:
        return [tag for tag in map(clean_tag, tags) if tag]

    @classmethod
    def from_record(cls, record: AnalysisRecord) -> "MetadataFields":
        """Collect the writable fields of an analysis, using the user's tag edits when present."""
        comment = record.description.strip()
        subject = record.subject.strip()
        if subject:
            comment = f"{subject} - {comment}" if comment else subject
        comments = record.comments.strip()
        if comments:
            comment = f"{comment}\n\n{comments}" if comment else comments

        return cls(
            title=record.title.strip(),
            comment=comment,
            tags=record.final_tags,
            author=record.authors.strip(),
            copyright=record.copyright.strip(),
        )

    @property
    def is_empty(self) -> bool:
        return not (self.title or self.comment or self.tags or self.author or self.copyright)

    @property
    def field_count(self) -> int:
        return sum(1 for value in (self.title, self.comment, self.tags, self.author, self.copyright) if value)

    def shares_any_field(self, other: "MetadataFields") -> bool:
        """Whether at least one non-empty field of `self` has the same value in `other`."""
        return any(
            mine and mine == theirs
            for mine, theirs in (
                (self.title, other.title),
                (self.comment, other.comment),
                (self.tags, other.tags),
                (self.author, other.author),
                (self.copyright, other.copyright),
            )
        )
