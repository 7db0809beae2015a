"""Change notification schemas."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from clinic_scheduler.schemas.appointments import UpdateType


class ChangeType(str, Enum):
    """Kind of store change behind a notification."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class AppointmentChangeEvent(BaseModel):
    """Classified appointment change delivered to hub listeners."""

    type: ChangeType
    appointment: dict[str, Any]
    update_type: UpdateType | None = None
    message: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
