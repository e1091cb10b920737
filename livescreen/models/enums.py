import enum

from sqlalchemy import Enum as SAEnum


class SessionStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ValidityStatus(str, enum.Enum):
    VALID = "valid"
    QUESTIONABLE = "questionable"
    INVALID = "invalid"


class ScoreCode(str, enum.Enum):
    CORRECT = "correct"
    INCORRECT = "incorrect"
    SELF_CORRECT = "self_correct"
    PROMPTED = "prompted"
    NO_RESPONSE = "no_response"


class ModuleType(str, enum.Enum):
    PRINT_AWARENESS = "print_awareness"
    PHONOLOGICAL_AWARENESS = "phonological_awareness"
    PHONICS = "phonics"
    HFW = "hfw"
    ORF = "orf"
    COMPREHENSION = "comprehension"


def db_enum(enum_cls, name: str) -> SAEnum:
    """Store enum values (not member names) in a portable VARCHAR column."""
    return SAEnum(
        enum_cls,
        name=name,
        native_enum=False,
        values_callable=lambda e: [m.value for m in e],
        validate_strings=True,
    )
