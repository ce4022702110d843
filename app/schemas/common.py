from typing import Any
from pydantic import BaseModel


class Envelope(BaseModel):
    """Uniform response body for every endpoint."""
    message: str
    data: Any = None
