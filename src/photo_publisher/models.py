"""Domain types shared by the extractor, the copy generator and the orchestrator."""

from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


KEYWORD_DELIMITER = ", "


class TaskState(StrEnum):
    """Lifecycle of one photo through the upload form."""

    INIT = "init"
    SESSION_ACQUIRED = "session_acquired"
    AUTHENTICATION_CHECKED = "authentication_checked"
    FILE_ATTACHED = "file_attached"
    FORM_POPULATED = "form_populated"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    AMBIGUOUS_SUCCESS = "ambiguous_success"
    FAILED = "failed"
    FINALIZED = "finalized"


class ExifAttributes(BaseModel):
    """Camera attributes read from the image. Every field may be missing."""

    model_config = ConfigDict(frozen=True)

    captured_at: datetime | None = None
    camera: str | None = None
    exposure_time: float | None = None
    f_number: float | None = None
    iso: int | None = None
    focal_length: float | None = None
    gps_latitude: float | None = None
    gps_longitude: float | None = None

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class ListingCopy(BaseModel):
    """
    Marketing copy for one listing.

    Validation rejects blank titles, blank descriptions and tag lists that are
    empty once blank entries are dropped, so partial copy never reaches the form.
    """

    model_config = ConfigDict(frozen=True)

    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    tags: list[str] = Field(min_length=1)

    @field_validator("title", "description", mode="after")
    @classmethod
    def _strip_text(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            msg = "must not be blank"
            raise ValueError(msg)
        return stripped

    @field_validator("tags", mode="after")
    @classmethod
    def _clean_tags(cls, value: list[str]) -> list[str]:
        cleaned = [tag.strip() for tag in value if tag.strip()]
        if not cleaned:
            msg = "must contain at least one non-blank tag"
            raise ValueError(msg)
        return cleaned

    @property
    def keywords(self) -> str:
        """
        Tags as the single delimited string the upload form expects.

        Examples:
            >>> ListingCopy(title="Sunset", description="Warm sky.", tags=["sky", "orange"]).keywords
            'sky, orange'

        """
        return KEYWORD_DELIMITER.join(self.tags)


class Confirmed(BaseModel):
    """The page navigated away after the submit click."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["confirmed"] = "confirmed"

    @property
    def is_success(self) -> bool:
        return True


class AmbiguousSuccess(BaseModel):
    """No navigation was observed, but the page is no longer the upload form."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["ambiguous_success"] = "ambiguous_success"
    current_url: str

    @property
    def is_success(self) -> bool:
        return True


class Failed(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["failed"] = "failed"
    reason: str
    current_url: str | None = None

    @property
    def is_success(self) -> bool:
        return False


SubmissionOutcome = Annotated[Confirmed | AmbiguousSuccess | Failed, Field(discriminator="kind")]


class PhotoTask(BaseModel):
    """One photo's journey from the source folder to the completion folder."""

    path: Path
    name: str
    state: TaskState = TaskState.INIT
    error: str | None = None
    outcome: SubmissionOutcome | None = None
    final_path: Path | None = None

    @classmethod
    def from_path(cls, path: Path) -> "PhotoTask":
        resolved = path.resolve()
        return cls(path=resolved, name=resolved.name)
