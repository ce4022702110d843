from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime
from app.models.task import UNASSIGNED
from app.utils.dates import as_utc, to_storage
from app.utils.sanitization import sanitize_string


# ── Request body ────────────────────────────────────────
class TaskIn(BaseModel):
    """
    Body for create and full replace. Presence of name and deadline is
    checked by the service so a missing field gets the service's message.
    """
    name: str | None = None
    description: str | None = None
    deadline: datetime | None = None
    completed: bool = False
    assignedUser: str | None = None
    # Accepted but never trusted: the name is always read from the user
    assignedUserName: str | None = None

    @field_validator("name", "description", "assignedUser", mode="before")
    @classmethod
    def sanitize(cls, v):
        return sanitize_string(v)

    @field_validator("completed", mode="before")
    @classmethod
    def none_is_false(cls, v):
        return False if v is None else v

    @field_validator("deadline", mode="after")
    @classmethod
    def utc(cls, v):
        return as_utc(to_storage(v)) if v is not None else v


# ── Entity ──────────────────────────────────────────────
class Task(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str = Field(alias="_id")
    name: str
    description: str = ""
    deadline: datetime
    completed: bool = False
    assigned_user: str = Field("", alias="assignedUser")
    assigned_user_name: str = Field(UNASSIGNED, alias="assignedUserName")
    date_created: datetime | None = Field(None, alias="dateCreated")

    @field_validator("deadline", "date_created", mode="after")
    @classmethod
    def utc(cls, v):
        return as_utc(v)

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
