"""
Remote Record Mapping
=====================

Normalizes raw ServiceNow Table API records into the Ticket shape.

Every optional field is materialized (``None`` or ``[]``) so that stored and
freshly-mapped tickets can be diffed field by field.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from src.core import ValidationException, ensure_utc
from src.sync.domain import Ticket, normalize_ref

# ServiceNow display format, then ISO-8601 variants
_TIMESTAMP_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
)


def parse_timestamp(value: Any, field_name: str = "timestamp") -> Optional[datetime]:
    """
    Parse a remote timestamp as UTC.

    Raises:
        ValidationException: If the value is present but unparseable
    """
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        value = value.get("value") or value.get("display_value")
        if not value:
            return None
    if isinstance(value, datetime):
        return ensure_utc(value)

    text = str(value).strip()
    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    try:
        return ensure_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        raise ValidationException(
            f"Unparseable {field_name}: {text!r}",
            {"field": field_name, "value": text}
        )


def parse_tags(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [normalize_ref(item) or "" for item in value]
    else:
        items = [str(value)]
    return [item.strip() for item in items if item and item.strip()]


def _text(value: Any) -> Optional[str]:
    """Display text of a field that may also arrive as a reference object."""
    if isinstance(value, dict):
        value = value.get("display_value", value.get("value"))
    if value is None or value == "":
        return None
    return str(value)


class TicketMapper:
    """Maps ServiceNow incident records to Ticket entities."""

    def __init__(self, source: str):
        self.source = source

    def to_ticket(self, raw: Dict[str, Any]) -> Ticket:
        """
        Normalize a raw remote record.

        Raises:
            ValidationException: Record is not a mapping, has no ``number``,
                or carries an unparseable timestamp
        """
        if not isinstance(raw, dict):
            raise ValidationException(
                f"Remote record must be an object, got {type(raw).__name__}"
            )

        external_id = _text(raw.get("number"))
        if not external_id:
            raise ValidationException(
                "Remote record has no ticket number",
                {"sys_id": normalize_ref(raw.get("sys_id"))}
            )

        return Ticket(
            external_id=external_id,
            source=self.source,
            short_description=_text(raw.get("short_description")),
            description=_text(raw.get("description")),
            category=_text(raw.get("category")),
            subcategory=_text(raw.get("subcategory")),
            status=_text(raw.get("state")),
            priority=_text(raw.get("priority")),
            impact=_text(raw.get("impact")),
            urgency=_text(raw.get("urgency")),
            opened_at=parse_timestamp(raw.get("opened_at"), "opened_at"),
            closed_at=parse_timestamp(raw.get("closed_at"), "closed_at"),
            resolved_at=parse_timestamp(raw.get("resolved_at"), "resolved_at"),
            remote_updated_at=parse_timestamp(raw.get("sys_updated_on"), "sys_updated_on"),
            requester_id=normalize_ref(raw.get("caller_id")),
            assignee_id=normalize_ref(raw.get("assigned_to")),
            assignment_group_id=normalize_ref(raw.get("assignment_group")),
            company_id=normalize_ref(raw.get("company")),
            location_id=normalize_ref(raw.get("location")),
            tags=parse_tags(raw.get("tags")),
            raw_payload=dict(raw),
        )
