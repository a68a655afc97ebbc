"""Bulk and automatic resolution of pending transfer requests."""

import logging
from dataclasses import asdict, dataclass

from rest_framework.exceptions import APIException

from inventory.models import TransferRequest
from inventory.policy import load_policy
from inventory.transfers import APPROVE, resolve

logger = logging.getLogger(__name__)


@dataclass
class ResolutionResult:
    request_id: str
    ok: bool
    status: str = ""
    error_code: str = ""
    message: str = ""

    def as_dict(self):
        return asdict(self)


def _request_id(item):
    return str(getattr(item, "pk", item))


def bulk_resolve(requests, decision, actor, reason=None, policy=None):
    """Resolve ``requests`` one after another, in the order given.

    A failing element does not stop the loop; its error is logged and
    reported in the matching ``ResolutionResult``. Elements already processed
    stay processed.
    """
    results = []
    for item in requests:
        request_id = _request_id(item)
        try:
            transfer = resolve(request_id, decision, actor, reason=reason, policy=policy)
        except APIException as exc:
            logger.warning(
                "bulk_resolve_item_failed request=%s decision=%s code=%s",
                request_id,
                decision,
                exc.default_code,
                extra={"transfer_request_id": request_id},
            )
            status = TransferRequest.objects.filter(pk=request_id).values_list("status", flat=True).first() or ""
            results.append(ResolutionResult(request_id=request_id, ok=False, status=status, error_code=str(exc.default_code), message=str(exc.detail)))
            continue
        except Exception as exc:
            logger.exception("bulk_resolve_item_error request=%s decision=%s", request_id, decision, extra={"transfer_request_id": request_id})
            status = TransferRequest.objects.filter(pk=request_id).values_list("status", flat=True).first() or ""
            results.append(ResolutionResult(request_id=request_id, ok=False, status=status, error_code="internal_server_error", message=str(exc)))
            continue
        results.append(ResolutionResult(request_id=request_id, ok=True, status=transfer.status))

    logger.info(
        "bulk_resolve_completed decision=%s total=%s succeeded=%s",
        decision,
        len(results),
        sum(1 for result in results if result.ok),
    )
    return results


def auto_approve(actor, pending=None, policy=None):
    """Approve every pending request at or under the policy threshold.

    ``pending`` defaults to all pending requests, oldest first.
    """
    if policy is None:
        policy = load_policy()
    if pending is None:
        pending = TransferRequest.objects.filter(status=TransferRequest.Status.PENDING).order_by("requested_at", "id")

    eligible = [request for request in pending if request.quantity <= policy.auto_approve_below]
    logger.info("auto_approve_started eligible=%s threshold=%s", len(eligible), policy.auto_approve_below)
    return bulk_resolve(eligible, APPROVE, actor, policy=policy)
