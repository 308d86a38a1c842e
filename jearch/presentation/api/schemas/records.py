"""Pydantic schemas for the career record endpoints."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, ClassVar, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

STAR_FIELD_MAX_LENGTH = 10000
NAME_MAX_LENGTH = 255
DEGREE_TYPE_MAX_LENGTH = 100
GPA_MAX_LENGTH = 50
COURSEWORK_MAX_LENGTH = 1000


class _StarFields(BaseModel):
    situation: Optional[str] = Field(default=None, max_length=STAR_FIELD_MAX_LENGTH)
    task: Optional[str] = Field(default=None, max_length=STAR_FIELD_MAX_LENGTH)
    action: Optional[str] = Field(default=None, max_length=STAR_FIELD_MAX_LENGTH)
    result: Optional[str] = Field(default=None, max_length=STAR_FIELD_MAX_LENGTH)


class ProfessionalExperiencePayload(_StarFields):
    model_config = ConfigDict(extra="forbid")

    company: str = Field(..., min_length=1, max_length=NAME_MAX_LENGTH)
    role: str = Field(..., min_length=1, max_length=NAME_MAX_LENGTH)
    start_date: date
    end_date: Optional[date] = None
    is_current: bool = False


class ExtraProfessionalExperiencePayload(_StarFields):
    model_config = ConfigDict(extra="forbid")

    activity_name: str = Field(..., min_length=1, max_length=NAME_MAX_LENGTH)
    organization: Optional[str] = Field(default=None, max_length=NAME_MAX_LENGTH)
    start_date: date
    end_date: Optional[date] = None
    is_ongoing: bool = False


class EducationPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    institution: str = Field(..., min_length=1, max_length=NAME_MAX_LENGTH)
    degree_type: str = Field(..., min_length=1, max_length=DEGREE_TYPE_MAX_LENGTH)
    field_of_study: str = Field(..., min_length=1, max_length=NAME_MAX_LENGTH)
    start_date: date
    end_date: Optional[date] = None
    is_in_progress: bool = False
    gpa: Optional[str] = Field(default=None, max_length=GPA_MAX_LENGTH)
    honors: Optional[str] = Field(default=None, max_length=NAME_MAX_LENGTH)
    relevant_coursework: Optional[str] = Field(default=None, max_length=COURSEWORK_MAX_LENGTH)


class _RecordUpdate(BaseModel):
    """Partial update. ``updatedAt`` is the version the client last saw."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    non_nullable: ClassVar[Tuple[str, ...]] = ()

    updated_at: datetime = Field(..., alias="updatedAt")

    @model_validator(mode="after")
    def _reject_null_required(self) -> "_RecordUpdate":
        for name in self.non_nullable:
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude={"updated_at"})


class ProfessionalExperienceUpdate(_RecordUpdate):
    non_nullable: ClassVar[Tuple[str, ...]] = ("company", "role", "start_date", "is_current")

    company: Optional[str] = Field(default=None, min_length=1, max_length=NAME_MAX_LENGTH)
    role: Optional[str] = Field(default=None, min_length=1, max_length=NAME_MAX_LENGTH)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_current: Optional[bool] = None
    situation: Optional[str] = Field(default=None, max_length=STAR_FIELD_MAX_LENGTH)
    task: Optional[str] = Field(default=None, max_length=STAR_FIELD_MAX_LENGTH)
    action: Optional[str] = Field(default=None, max_length=STAR_FIELD_MAX_LENGTH)
    result: Optional[str] = Field(default=None, max_length=STAR_FIELD_MAX_LENGTH)


class ExtraProfessionalExperienceUpdate(_RecordUpdate):
    non_nullable: ClassVar[Tuple[str, ...]] = ("activity_name", "start_date", "is_ongoing")

    activity_name: Optional[str] = Field(default=None, min_length=1, max_length=NAME_MAX_LENGTH)
    organization: Optional[str] = Field(default=None, max_length=NAME_MAX_LENGTH)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_ongoing: Optional[bool] = None
    situation: Optional[str] = Field(default=None, max_length=STAR_FIELD_MAX_LENGTH)
    task: Optional[str] = Field(default=None, max_length=STAR_FIELD_MAX_LENGTH)
    action: Optional[str] = Field(default=None, max_length=STAR_FIELD_MAX_LENGTH)
    result: Optional[str] = Field(default=None, max_length=STAR_FIELD_MAX_LENGTH)


class EducationUpdate(_RecordUpdate):
    non_nullable: ClassVar[Tuple[str, ...]] = (
        "institution",
        "degree_type",
        "field_of_study",
        "start_date",
        "is_in_progress",
    )

    institution: Optional[str] = Field(default=None, min_length=1, max_length=NAME_MAX_LENGTH)
    degree_type: Optional[str] = Field(default=None, min_length=1, max_length=DEGREE_TYPE_MAX_LENGTH)
    field_of_study: Optional[str] = Field(default=None, min_length=1, max_length=NAME_MAX_LENGTH)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_in_progress: Optional[bool] = None
    gpa: Optional[str] = Field(default=None, max_length=GPA_MAX_LENGTH)
    honors: Optional[str] = Field(default=None, max_length=NAME_MAX_LENGTH)
    relevant_coursework: Optional[str] = Field(default=None, max_length=COURSEWORK_MAX_LENGTH)
