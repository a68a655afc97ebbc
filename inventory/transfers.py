"""Transfer request lifecycle: pending -> approved | rejected | failed.

A request is created ``pending`` and leaves that state exactly once. Stock
only moves on approval, inside one transaction that debits the source,
credits the destination, flips the status and appends the ledger entry. The
status flip is a conditional update on ``status=pending``, so two approvers
racing on one request cannot both move stock.
"""

import logging
import threading
from contextlib import contextmanager

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from common.exceptions import AlreadyProcessing, AlreadyResolved, InvalidInput, PartialFailure, RecordNotFound
from common.utils import display_name, emit_outbox
from inventory import ledger
from inventory.models import LedgerEntry, TransferRequest
from inventory.policy import decide
from inventory.services import adjust_quantity, find_stock, require_positive_int, require_text, upsert_at_destination

logger = logging.getLogger(__name__)

APPROVE = "approve"
REJECT = "reject"
DECISIONS = (APPROVE, REJECT)

REASON_ITEM_NOT_FOUND = "Item not found in source location"
REASON_INSUFFICIENT_STOCK = "Insufficient stock in source location"
REASON_DESTINATION_NOT_ALLOWED = "Destination location not allowed"
AUTO_APPROVAL_LABEL = "Auto-approval"

_in_flight = set()
_in_flight_lock = threading.Lock()


@contextmanager
def single_flight(request_id):
    """Refuse a second resolution of the same request while one is running in this process."""
    key = str(request_id)
    with _in_flight_lock:
        if key in _in_flight:
            raise AlreadyProcessing()
        _in_flight.add(key)
    try:
        yield
    finally:
        with _in_flight_lock:
            _in_flight.discard(key)


def transfer_payload(transfer):
    return {
        "id": transfer.id,
        "item_code": transfer.item_code,
        "quantity": transfer.quantity,
        "from_location": transfer.from_location,
        "to_location": transfer.to_location,
        "status": transfer.status,
        "requested_by": transfer.requested_by_id,
        "requested_by_name": transfer.requested_by_name,
        "requested_at": transfer.requested_at,
        "approved_by": transfer.approved_by_id,
        "approved_at": transfer.approved_at,
        "rejected_by": transfer.rejected_by_id,
        "rejected_at": transfer.rejected_at,
        "rejection_reason": transfer.rejection_reason,
        "failed_at": transfer.failed_at,
        "error": transfer.error,
        "processed_at": transfer.processed_at,
    }


def _emit_transfer(transfer):
    emit_outbox(transfer.from_location, "transfer_request", transfer.id, "upsert", transfer_payload(transfer))


def request_transfer(*, item_code, quantity, from_location, to_location, requester, policy=None, auto_resolve=False):
    item_code = require_text(item_code, "item_code")
    from_location = require_text(from_location, "from_location")
    to_location = require_text(to_location, "to_location")
    quantity = require_positive_int(quantity)
    if requester is None:
        raise InvalidInput({"requester": "This field is required."})
    if from_location == to_location:
        raise InvalidInput({"to_location": "Source and destination locations must differ."})

    with transaction.atomic():
        transfer = TransferRequest.objects.create(
            item_code=item_code,
            quantity=quantity,
            from_location=from_location,
            to_location=to_location,
            requested_by=requester,
            requested_by_name=display_name(requester),
        )
        _emit_transfer(transfer)

    logger.info(
        "transfer_requested request=%s item=%s from=%s to=%s quantity=%s",
        transfer.id,
        item_code,
        from_location,
        to_location,
        quantity,
        extra={"transfer_request_id": str(transfer.id), "item_code": item_code, "location": from_location},
    )

    if auto_resolve and policy is not None and decide(transfer, policy).auto_approvable:
        return resolve(
            transfer.id,
            APPROVE,
            requester,
            policy=policy,
            actor_name=f"{AUTO_APPROVAL_LABEL} ({display_name(requester)})",
        )
    return transfer


def _load_request(request_id):
    transfer = TransferRequest.objects.filter(pk=request_id).first()
    if transfer is None:
        raise RecordNotFound(f"Transfer request {request_id} not found.")
    if transfer.is_terminal:
        raise AlreadyResolved(f"Transfer request {request_id} is already {transfer.status}.")
    return transfer


def _transition(transfer, status, **fields):
    """Move a pending request to ``status``. Raises AlreadyResolved if another writer got there first."""
    now = timezone.now()
    fields.setdefault("processed_at", now)
    updated = TransferRequest.objects.filter(pk=transfer.pk, status=TransferRequest.Status.PENDING).update(
        status=status,
        updated_at=now,
        **fields,
    )
    if not updated:
        raise AlreadyResolved(f"Transfer request {transfer.pk} is already resolved.")
    transfer.refresh_from_db()
    _emit_transfer(transfer)
    return transfer


def _reject(transfer, actor, reason, *, brand="", model_name=""):
    reason = (reason or "").strip() or settings.INVENTORY_DEFAULT_REJECTION_REASON
    now = timezone.now()
    transfer = _transition(
        transfer,
        TransferRequest.Status.REJECTED,
        rejected_by=actor,
        rejected_by_name=display_name(actor),
        rejected_at=now,
        rejection_reason=reason,
    )
    ledger.record_entry(
        entry_type=LedgerEntry.EntryType.REJECTED_TRANSFER,
        item_code=transfer.item_code,
        brand=brand,
        model_name=model_name,
        quantity=transfer.quantity,
        from_location=transfer.from_location,
        to_location=transfer.to_location,
        actor=actor,
        rejection_reason=reason,
        transfer=transfer,
        occurred_at=now,
    )
    logger.info(
        "transfer_rejected request=%s item=%s reason=%s",
        transfer.id,
        transfer.item_code,
        reason,
        extra={"transfer_request_id": str(transfer.id), "item_code": transfer.item_code},
    )
    return transfer


def _lock_transfer_rows(transfer):
    """Lock the source and destination rows in location order.

    Approvals running in opposite directions (A->B and B->A) then wait on
    each other instead of deadlocking.
    """
    locked = {}
    for location in sorted({transfer.from_location, transfer.to_location}):
        locked[location] = find_stock(transfer.item_code, location, for_update=True)
    return locked[transfer.from_location]


def _approve(transfer, actor, policy, actor_name=None):
    source = _lock_transfer_rows(transfer)
    if source is None:
        return _reject(transfer, actor, REASON_ITEM_NOT_FOUND)
    if source.quantity < transfer.quantity:
        return _reject(transfer, actor, REASON_INSUFFICIENT_STOCK, brand=source.brand, model_name=source.model_name)
    if policy is not None and not policy.allows_destination(transfer.to_location):
        return _reject(transfer, actor, REASON_DESTINATION_NOT_ALLOWED, brand=source.brand, model_name=source.model_name)

    now = timezone.now()
    source = adjust_quantity(
        transfer.item_code,
        transfer.from_location,
        -transfer.quantity,
        {
            "last_transfer": {
                "to_location": transfer.to_location,
                "quantity": transfer.quantity,
                "transferred_at": now,
                "transferred_by": str(actor.pk),
            }
        },
    )
    upsert_at_destination(
        transfer.item_code,
        transfer.to_location,
        transfer.quantity,
        source,
        transfer.from_location,
        actor=actor,
    )
    transfer = _transition(
        transfer,
        TransferRequest.Status.APPROVED,
        approved_by=actor,
        approved_by_name=actor_name or display_name(actor),
        approved_at=now,
        source_stock=source,
    )
    ledger.record_entry(
        entry_type=LedgerEntry.EntryType.APPROVED_TRANSFER,
        item_code=transfer.item_code,
        brand=source.brand,
        model_name=source.model_name,
        quantity=transfer.quantity,
        from_location=transfer.from_location,
        to_location=transfer.to_location,
        actor=actor,
        transfer=transfer,
        occurred_at=now,
    )
    logger.info(
        "transfer_approved request=%s item=%s from=%s to=%s quantity=%s",
        transfer.id,
        transfer.item_code,
        transfer.from_location,
        transfer.to_location,
        transfer.quantity,
        extra={"transfer_request_id": str(transfer.id), "item_code": transfer.item_code, "location": transfer.from_location},
    )
    return transfer


def _mark_failed(transfer, error):
    now = timezone.now()
    updated = TransferRequest.objects.filter(pk=transfer.pk, status=TransferRequest.Status.PENDING).update(
        status=TransferRequest.Status.FAILED,
        failed_at=now,
        error=str(error)[:2000],
        processed_at=now,
        updated_at=now,
    )
    if updated:
        transfer.refresh_from_db()
        _emit_transfer(transfer)


def resolve(request_id, decision, actor, reason=None, policy=None, actor_name=None):
    """Approve or reject a pending transfer request.

    Business refusals during approval (missing source record, short stock,
    destination outside the policy whitelist) end in ``rejected`` with the
    reason recorded. Any other error rolls back every write of the approval,
    leaves the request ``failed`` with the error text and raises
    ``PartialFailure``.
    """
    if decision not in DECISIONS:
        raise InvalidInput({"decision": f"Decision must be one of: {', '.join(DECISIONS)}."})
    if actor is None:
        raise InvalidInput({"actor": "This field is required."})

    with single_flight(request_id):
        transfer = _load_request(request_id)
        try:
            with transaction.atomic():
                if decision == REJECT:
                    return _reject(transfer, actor, reason)
                return _approve(transfer, actor, policy, actor_name=actor_name)
        except AlreadyResolved:
            raise
        except Exception as exc:
            logger.exception(
                "transfer_resolution_failed request=%s decision=%s",
                transfer.id,
                decision,
                extra={"transfer_request_id": str(transfer.id), "item_code": transfer.item_code},
            )
            _mark_failed(transfer, exc)
            raise PartialFailure(f"Transfer request {transfer.id} failed: {exc}") from exc
