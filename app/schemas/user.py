from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime
from app.utils.dates import as_utc
from app.utils.sanitization import sanitize_string


class UserIn(BaseModel):
    name: str | None = None
    email: str | None = None
    pendingTasks: list[str] = Field(default_factory=list)

    @field_validator("name", "email", mode="before")
    @classmethod
    def sanitize(cls, v):
        return sanitize_string(v)

    @field_validator("pendingTasks", mode="before")
    @classmethod
    def only_lists(cls, v):
        # Anything that is not a list means "no pending tasks"
        if not isinstance(v, list):
            return []
        return [sanitize_string(x) for x in v]


class User(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str = Field(alias="_id")
    name: str
    email: str
    pending_tasks: list[str] = Field(default_factory=list, alias="pendingTasks")
    date_created: datetime | None = Field(None, alias="dateCreated")

    @field_validator("date_created", mode="after")
    @classmethod
    def utc(cls, v):
        return as_utc(v)

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
