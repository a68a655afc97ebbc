from django.db.models import Q
from django.utils import timezone

from common.exceptions import InvalidInput
from common.utils import display_name, emit_outbox
from inventory.models import LedgerEntry


def ledger_payload(entry):
    return {
        "id": entry.id,
        "entry_type": entry.entry_type,
        "item_code": entry.item_code,
        "brand": entry.brand,
        "model": entry.model_name,
        "quantity": entry.quantity,
        "from_location": entry.from_location,
        "to_location": entry.to_location,
        "actor_id": entry.actor_id,
        "actor_name": entry.actor_name,
        "occurred_at": entry.occurred_at,
        "rejection_reason": entry.rejection_reason,
        "transfer_id": entry.transfer_id,
        "sale_id": entry.sale_id,
    }


def record_entry(
    *,
    entry_type,
    item_code,
    quantity,
    from_location,
    actor,
    to_location="",
    brand="",
    model_name="",
    rejection_reason="",
    transfer=None,
    sale_id=None,
    occurred_at=None,
):
    """Append one ledger entry. Only structural completeness is checked."""
    missing = [
        name
        for name, value in (
            ("entry_type", entry_type),
            ("item_code", item_code),
            ("quantity", quantity),
            ("from_location", from_location),
            ("actor", actor),
        )
        if value in (None, "")
    ]
    if entry_type in (LedgerEntry.EntryType.APPROVED_TRANSFER, LedgerEntry.EntryType.REJECTED_TRANSFER) and not to_location:
        missing.append("to_location")
    if missing:
        raise InvalidInput({name: "This field is required." for name in missing})
    if entry_type not in LedgerEntry.EntryType.values:
        raise InvalidInput({"entry_type": f"Unknown ledger entry type {entry_type!r}."})

    entry = LedgerEntry.objects.create(
        entry_type=entry_type,
        item_code=item_code,
        brand=brand or "",
        model_name=model_name or "",
        quantity=quantity,
        from_location=from_location,
        to_location=to_location or "",
        actor=actor,
        actor_name=display_name(actor),
        occurred_at=occurred_at or timezone.now(),
        rejection_reason=rejection_reason or "",
        transfer=transfer,
        sale_id=sale_id,
    )
    emit_outbox(entry.from_location, "ledger_entry", entry.id, "insert", ledger_payload(entry))
    return entry


def query_entries(*, start=None, end=None, location=None, entry_type=None):
    qs = LedgerEntry.objects.select_related("actor")
    if start is not None:
        qs = qs.filter(occurred_at__gte=start)
    if end is not None:
        qs = qs.filter(occurred_at__lte=end)
    if location:
        qs = qs.filter(Q(from_location=location) | Q(to_location=location))
    if entry_type:
        qs = qs.filter(entry_type=entry_type)
    return qs.order_by("occurred_at", "id")
