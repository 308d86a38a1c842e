"""Editable career records guarded by optimistic concurrency."""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Type, Union


@dataclass(slots=True)
class ProfessionalExperience:
    id: str
    user_id: str
    company: str
    role: str
    start_date: date
    end_date: Optional[date]
    is_current: bool
    situation: Optional[str]
    task: Optional[str]
    action: Optional[str]
    result: Optional[str]
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class ExtraProfessionalExperience:
    id: str
    user_id: str
    activity_name: str
    organization: Optional[str]
    start_date: date
    end_date: Optional[date]
    is_ongoing: bool
    situation: Optional[str]
    task: Optional[str]
    action: Optional[str]
    result: Optional[str]
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class Education:
    id: str
    user_id: str
    institution: str
    degree_type: str
    field_of_study: str
    start_date: date
    end_date: Optional[date]
    is_in_progress: bool
    gpa: Optional[str]
    honors: Optional[str]
    relevant_coursework: Optional[str]
    created_at: datetime
    updated_at: datetime


EditableRecord = Union[ProfessionalExperience, ExtraProfessionalExperience, Education]

_SYSTEM_FIELDS = ("id", "user_id", "created_at", "updated_at")


class RecordKind(str, Enum):
    """Kinds of editable record, valued by their URL slug."""

    PROFESSIONAL = "professional"
    EXTRA_PROFESSIONAL = "extra-professional"
    EDUCATION = "education"

    @property
    def model(self) -> Type[Any]:
        return _MODELS[self]

    @property
    def table(self) -> str:
        return _TABLES[self]

    @property
    def content_fields(self) -> Tuple[str, ...]:
        """User-editable columns, in declaration order."""
        return tuple(f.name for f in fields(self.model) if f.name not in _SYSTEM_FIELDS)

    @property
    def date_fields(self) -> Tuple[str, ...]:
        return ("start_date", "end_date")

    @property
    def flag_fields(self) -> Tuple[str, ...]:
        return _FLAGS[self]


_MODELS: Dict[RecordKind, Type[Any]] = {
    RecordKind.PROFESSIONAL: ProfessionalExperience,
    RecordKind.EXTRA_PROFESSIONAL: ExtraProfessionalExperience,
    RecordKind.EDUCATION: Education,
}

_TABLES: Dict[RecordKind, str] = {
    RecordKind.PROFESSIONAL: "professional_experiences",
    RecordKind.EXTRA_PROFESSIONAL: "extra_professional_experiences",
    RecordKind.EDUCATION: "educations",
}

_FLAGS: Dict[RecordKind, Tuple[str, ...]] = {
    RecordKind.PROFESSIONAL: ("is_current",),
    RecordKind.EXTRA_PROFESSIONAL: ("is_ongoing",),
    RecordKind.EDUCATION: ("is_in_progress",),
}


def record_to_dict(record: EditableRecord) -> Dict[str, Any]:
    return {f.name: getattr(record, f.name) for f in fields(record)}
