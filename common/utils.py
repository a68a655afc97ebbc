import datetime
import decimal
import uuid
from decimal import ROUND_HALF_UP, Decimal

from sync.models import SyncOutbox

MONEY_QUANT = Decimal("0.01")


def to_money(value):
    return Decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def display_name(user):
    if user is None:
        return ""
    full_name = user.get_full_name() if hasattr(user, "get_full_name") else ""
    return full_name or getattr(user, "username", "") or str(user.pk)


def _to_json_compatible(value):
    if isinstance(value, dict):
        return {key: _to_json_compatible(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_to_json_compatible(item) for item in value]
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, decimal.Decimal):
        return str(value)
    if isinstance(value, (datetime.date, datetime.datetime, datetime.time)):
        return value.isoformat()
    return value


def emit_outbox(location, entity, entity_id, op, payload):
    """Append a change to the outbox. Call inside the transaction that made the change."""
    payload_data = _to_json_compatible(dict(payload or {}))
    if location and payload_data.get("location") in (None, ""):
        payload_data["location"] = location

    envelope = {
        "entity": entity,
        "op": op,
        "entity_id": str(entity_id),
        "payload": payload_data,
    }

    return SyncOutbox.objects.create(
        location=location or "",
        entity=entity,
        entity_id=str(entity_id),
        op=op,
        payload=envelope,
    )
