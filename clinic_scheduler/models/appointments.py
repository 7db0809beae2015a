"""Appointments table model using SQLAlchemy Core."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
)

# Metadata for all tables
metadata = MetaData()

# Appointments table
appointments = Table(
    "appointments",
    metadata,
    Column("id", String(36), primary_key=True),
    # Ownership
    Column("user_id", String(64), nullable=False),
    Column("patient_name", Text, nullable=True),
    # Snapshot fields (denormalized for display)
    Column("doctor_id", String(64), nullable=False),
    Column("doctor_name", Text, nullable=True),
    Column("branch_id", String(64), nullable=True),
    Column("branch_name", Text, nullable=True),
    Column("service_id", String(64), nullable=True),
    Column("service_name", Text, nullable=True),
    # Slot labels, e.g. "Monday, 15 Jan 2025" / "9:30 AM"
    Column("date", String(40), nullable=False),
    Column("time_slot", String(16), nullable=False),
    # Status management
    Column("status", String(20), nullable=False, server_default="Booked"),
    Column("last_transition", String(20), nullable=True),
    Column("notes", Text, nullable=True),
    # Confirmation
    Column("confirmed_at", DateTime(timezone=True), nullable=True),
    Column("confirmed_by", Text, nullable=True),
    # Cancellation
    Column("cancelled_at", DateTime(timezone=True), nullable=True),
    Column("cancellation_reason", Text, nullable=True),
    Column("cancelled_by", Text, nullable=True),
    # Rescheduling
    Column("rescheduled_at", DateTime(timezone=True), nullable=True),
    Column("reschedule_reason", Text, nullable=True),
    Column("reschedule_count", Integer, nullable=True),
    Column("original_date", String(40), nullable=True),
    Column("original_time_slot", String(16), nullable=True),
    Column("original_status", String(20), nullable=True),
    # Completion
    Column("completed_at", DateTime(timezone=True), nullable=True),
    Column("completion_notes", Text, nullable=True),
    Column("has_prescription", Boolean, nullable=True),
    # No show
    Column("no_show_at", DateTime(timezone=True), nullable=True),
    Column("no_show_reason", Text, nullable=True),
    # Audit fields
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=True),
    # Constraints
    CheckConstraint(
        "status IN ('Booked', 'Confirmed', 'Rescheduled', 'Cancelled', 'Completed', 'No Show')",
        name="appointments_status_check",
    ),
    Index("ix_appointments_doctor_slot", "doctor_id", "date", "time_slot"),
    Index("ix_appointments_user_id", "user_id"),
)
