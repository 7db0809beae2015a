"""Real-time appointment change notifications."""

import inspect
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

import structlog

from clinic_scheduler.schemas.appointments import AppointmentStatus, UpdateType
from clinic_scheduler.schemas.events import AppointmentChangeEvent, ChangeType
from clinic_scheduler.store.base import DocumentStore
from clinic_scheduler.store.feed import RawChangeEvent

logger = structlog.get_logger(__name__)

ChangeCallback = Callable[[AppointmentChangeEvent], Awaitable[None] | None]

_UPDATE_MESSAGES = {
    UpdateType.CANCELLED: "Appointment cancelled: {date} at {time}",
    UpdateType.RESCHEDULED: "Appointment rescheduled to: {date} at {time}",
    UpdateType.CONFIRMED: "Appointment confirmed: {date} at {time}",
    UpdateType.COMPLETED: "Appointment completed: {date} at {time}",
    UpdateType.NO_SHOW: "Appointment marked as no-show: {date} at {time}",
}


def detect_update_type(appointment: dict[str, Any] | None) -> UpdateType:
    """
    Classify an updated appointment payload.

    A cancelled status always wins. Otherwise the ``last_transition`` tag
    written by the lifecycle service is used, and payloads written without it
    fall back to inspecting ``rescheduled_at`` and the status.
    """
    if not appointment:
        return UpdateType.GENERAL_UPDATE

    status = appointment.get("status")
    if status == AppointmentStatus.CANCELLED.value:
        return UpdateType.CANCELLED

    tag = appointment.get("last_transition")
    if tag:
        try:
            return UpdateType(tag)
        except ValueError:
            logger.warning("unknown_transition_tag", tag=tag, appointment_id=appointment.get("id"))

    if appointment.get("rescheduled_at"):
        return UpdateType.RESCHEDULED
    if status == AppointmentStatus.CONFIRMED.value:
        return UpdateType.CONFIRMED
    if status == AppointmentStatus.COMPLETED.value:
        return UpdateType.COMPLETED
    return UpdateType.GENERAL_UPDATE


def get_update_message(update_type: UpdateType, appointment: dict[str, Any] | None) -> str:
    """Human-readable message for an update."""
    template = _UPDATE_MESSAGES.get(update_type)
    if not appointment or template is None:
        return "Appointment updated"
    return template.format(
        date=appointment.get("date") or "Unknown date",
        time=appointment.get("time_slot") or "Unknown time",
    )


def detect_change_type(events: list[str]) -> ChangeType | None:
    """Map raw store event names to a change type."""
    actions = {name.rsplit(".", 1)[-1].lower() for name in events}
    if "create" in actions:
        return ChangeType.CREATED
    if "update" in actions:
        return ChangeType.UPDATED
    if "delete" in actions:
        return ChangeType.DELETED
    return None


def classify_event(raw: RawChangeEvent) -> AppointmentChangeEvent | None:
    """
    Turn a raw store event into a classified appointment event.

    Returns:
        The event, or None when the raw event names are not recognised
    """
    change_type = detect_change_type(raw.events or [])
    if change_type is None:
        return None

    payload = raw.payload or {}

    if change_type is ChangeType.CREATED:
        return AppointmentChangeEvent(
            type=change_type,
            appointment=payload,
            message=f"New appointment created: {payload.get('status') or 'Unknown status'}",
            timestamp=raw.timestamp,
        )

    if change_type is ChangeType.DELETED:
        return AppointmentChangeEvent(
            type=change_type,
            appointment=payload,
            message="Appointment deleted",
            timestamp=raw.timestamp,
        )

    update_type = detect_update_type(payload)
    return AppointmentChangeEvent(
        type=change_type,
        appointment=payload,
        update_type=update_type,
        message=get_update_message(update_type, payload),
        timestamp=raw.timestamp,
    )


@dataclass
class _Channel:
    """One underlying store subscription shared by every listener of a filter."""

    options: dict[str, Any]
    unsubscribe: Callable[[], None]
    listeners: dict[str, ChangeCallback] = field(default_factory=dict)


class ChangeNotificationHub:
    """
    Fan out classified appointment changes to registered callbacks.

    Listeners registering the same ``options`` share a single store
    subscription. ``options`` are equality filters applied to the payload.
    """

    def __init__(self, store: DocumentStore, collection: str = "appointments"):
        """Initialize hub over a document store collection."""
        self.store = store
        self.collection = collection
        self._channels: dict[str, _Channel] = {}
        self._handles: dict[str, str] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        """True once :meth:`close` has been called."""
        return self._closed

    @property
    def active_subscription_count(self) -> int:
        """Number of underlying store subscriptions currently open."""
        return len(self._channels)

    @property
    def listener_count(self) -> int:
        """Number of registered callbacks."""
        return len(self._handles)

    @staticmethod
    def subscription_key(options: dict[str, Any] | None) -> str:
        """Stable identity of a filter."""
        return json.dumps(options or {}, sort_keys=True, default=str)

    def subscribe_to_appointments(
        self,
        callback: ChangeCallback,
        options: dict[str, Any] | None = None,
    ) -> str:
        """
        Register a callback for appointment changes.

        Args:
            callback: Called with each classified event; may be a coroutine function
            options: Equality filters on the payload, e.g. ``{"doctor_id": "D1"}``

        Returns:
            Handle for :meth:`unsubscribe`

        Raises:
            RuntimeError: If the hub has been closed
        """
        if self._closed:
            raise RuntimeError("Notification hub is closed")

        key = self.subscription_key(options)
        channel = self._channels.get(key)

        if channel is None:
            filters = dict(options or {})

            async def handler(raw: RawChangeEvent) -> None:
                await self._dispatch(key, raw)

            channel = _Channel(
                options=filters,
                unsubscribe=self.store.subscribe_to_collection(self.collection, handler),
            )
            self._channels[key] = channel
            logger.info("appointment_subscription_opened", key=key)

        handle = uuid4().hex
        channel.listeners[handle] = callback
        self._handles[handle] = key

        logger.debug("appointment_listener_added", handle=handle, key=key)
        return handle

    def subscribe_to_appointment(self, appointment_id: str, callback: ChangeCallback) -> str:
        """Register a callback for changes to a single appointment."""
        return self.subscribe_to_appointments(callback, {"id": appointment_id})

    def unsubscribe(self, handle: str) -> bool:
        """
        Remove a listener. Unknown or already removed handles are ignored.

        The underlying store subscription is torn down with its last listener.

        Returns:
            True if a listener was removed
        """
        key = self._handles.pop(handle, None)
        if key is None:
            return False

        channel = self._channels.get(key)
        if channel is None:
            return False

        channel.listeners.pop(handle, None)
        if not channel.listeners:
            del self._channels[key]
            channel.unsubscribe()
            logger.info("appointment_subscription_closed", key=key)

        return True

    def close(self) -> None:
        """Tear down every subscription; later subscribe calls fail."""
        self._closed = True

        for key, channel in list(self._channels.items()):
            channel.unsubscribe()
            logger.debug("appointment_subscription_closed", key=key)

        count = len(self._channels)
        self._channels.clear()
        self._handles.clear()
        logger.info("notification_hub_closed", subscriptions=count)

    @staticmethod
    def _matches(options: dict[str, Any], payload: dict[str, Any]) -> bool:
        return all(payload.get(name) == value for name, value in options.items())

    async def _dispatch(self, key: str, raw: RawChangeEvent) -> None:
        if self._closed:
            return

        channel = self._channels.get(key)
        if channel is None or not self._matches(channel.options, raw.payload or {}):
            return

        event = classify_event(raw)
        if event is None:
            logger.debug("appointment_event_ignored", events=raw.events)
            return

        for handle, callback in list(channel.listeners.items()):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("appointment_listener_failed", handle=handle)
