from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator, model_validator


class SurveyCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    start_at: datetime | None = None
    end_at: datetime | None = None
    time_limit: int | None = None  # minutes; > 0 means end_at is derived on activation
    allow_review: bool = False

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be blank")
        return v

    @model_validator(mode="after")
    def check_window(self) -> SurveyCreate:
        if self.start_at and self.end_at and self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        return self


class StatusChangeRequest(BaseModel):
    # Plain string so unknown values reach the engine and come back as invalid_status.
    status: str


class ReviewPermissionRequest(BaseModel):
    allow_review: bool
