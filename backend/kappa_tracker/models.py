import re
from pydantic import BaseModel, Field, field_validator
from typing import Optional

UUID4_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$"
)

MAX_LEVEL = 79
MAX_COMPLETED = 2000


def _validate_uuid4(v: str) -> str:
    if not UUID4_RE.match(v.lower()):
        raise ValueError("must be a valid UUID v4")
    return v.lower()


class UserRegister(BaseModel):
    user_id: str
    display_name: str = Field(min_length=1, max_length=30)

    @field_validator("user_id")
    @classmethod
    def validate_user_id(cls, v):
        return _validate_uuid4(v)


class ProfilePatch(BaseModel):
    display_name: Optional[str] = Field(default=None, min_length=1, max_length=30)
    is_public: Optional[bool] = None


class ProgressUpdate(BaseModel):
    level: int = Field(default=1, ge=1, le=MAX_LEVEL)
    completed_quests: list[str] = Field(default_factory=list, max_length=MAX_COMPLETED)
    model_config = {"extra": "ignore"}

    @field_validator("completed_quests")
    @classmethod
    def dedupe_completed(cls, v):
        # a quest id appears at most once; keep first-seen order for the activity feed
        return list(dict.fromkeys(q for q in v if q))
