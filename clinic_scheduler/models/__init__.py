"""Database models."""

from clinic_scheduler.models.appointments import appointments, metadata

__all__ = [
    "appointments",
    "metadata",
]
