"""Domain models for the Jearch career profile service."""

from .conflict import ConflictDecision
from .email import EmailStatus, EmailTemplate, QueuedEmail
from .login_attempt import LoginAttemptRecord, RateLimitInfo
from .records import (
    EditableRecord,
    Education,
    ExtraProfessionalExperience,
    ProfessionalExperience,
    RecordKind,
)
from .user import User

__all__ = [
    "ConflictDecision",
    "EditableRecord",
    "Education",
    "EmailStatus",
    "EmailTemplate",
    "ExtraProfessionalExperience",
    "LoginAttemptRecord",
    "ProfessionalExperience",
    "QueuedEmail",
    "RateLimitInfo",
    "RecordKind",
    "User",
]
