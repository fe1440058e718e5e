from typing import Any

from pydantic import BaseModel


class Envelope(BaseModel):
    """Response body shared by the pricing endpoints."""

    success: bool
    message: str
    data: dict[str, Any] | None = None
