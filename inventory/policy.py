"""Approval policy: the auto-approval threshold and destination whitelist.

The policy lives in a single database row. Callers never hold the row; they
get an immutable ``PolicySnapshot`` from ``load_policy()`` and pass it into
the transfer workflow explicitly. Saves replace the whole policy and are
guarded by a version number so two administrators editing at once cannot
silently overwrite each other.
"""

import logging
from dataclasses import dataclass

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from common.audit import create_audit_log
from common.exceptions import InvalidInput, PolicyConflict
from common.utils import display_name, emit_outbox
from inventory.models import ApprovalPolicy

logger = logging.getLogger(__name__)

POLICY_KEY = "default"


@dataclass(frozen=True)
class PolicySnapshot:
    require_approval: bool
    auto_approve_below: int
    allowed_locations: frozenset
    version: int = 0

    def allows_destination(self, location):
        return location in self.allowed_locations

    def as_dict(self):
        return {
            "require_approval": self.require_approval,
            "auto_approve_below": self.auto_approve_below,
            "allowed_locations": sorted(self.allowed_locations),
            "version": self.version,
        }


@dataclass(frozen=True)
class Decision:
    auto_approvable: bool


def _snapshot(row):
    return PolicySnapshot(
        require_approval=row.require_approval,
        auto_approve_below=row.auto_approve_below,
        allowed_locations=frozenset(row.allowed_locations or []),
        version=row.version,
    )


def default_policy_values():
    return {
        "require_approval": settings.INVENTORY_REQUIRE_APPROVAL,
        "auto_approve_below": settings.INVENTORY_AUTO_APPROVE_BELOW,
        "allowed_locations": list(settings.INVENTORY_LOCATIONS),
    }


def load_policy():
    row, created = ApprovalPolicy.objects.get_or_create(key=POLICY_KEY, defaults=default_policy_values())
    if created:
        logger.info("approval_policy_initialised version=%s", row.version)
    return _snapshot(row)


def decide(request, policy):
    return Decision(auto_approvable=not policy.require_approval or request.quantity <= policy.auto_approve_below)


def _clean_locations(allowed_locations):
    if isinstance(allowed_locations, str) or not hasattr(allowed_locations, "__iter__"):
        raise InvalidInput({"allowed_locations": "Must be a list of location names."})
    cleaned = []
    for location in allowed_locations:
        if not isinstance(location, str) or not location.strip():
            raise InvalidInput({"allowed_locations": "Location names must be non-empty strings."})
        if location.strip() not in cleaned:
            cleaned.append(location.strip())
    if not cleaned:
        raise InvalidInput({"allowed_locations": "At least one destination location is required."})
    return cleaned


def save_policy(*, actor, expected_version, require_approval, auto_approve_below, allowed_locations, request_id=None):
    """Replace the policy if nobody saved it since ``expected_version`` was read."""
    if isinstance(auto_approve_below, bool) or not isinstance(auto_approve_below, int) or auto_approve_below < 1:
        raise InvalidInput({"auto_approve_below": "Must be a positive integer."})
    locations = _clean_locations(allowed_locations)

    load_policy()
    with transaction.atomic():
        before = ApprovalPolicy.objects.select_for_update().get(key=POLICY_KEY)
        updated = ApprovalPolicy.objects.filter(key=POLICY_KEY, version=expected_version).update(
            require_approval=bool(require_approval),
            auto_approve_below=auto_approve_below,
            allowed_locations=locations,
            version=F("version") + 1,
            updated_by=actor,
            updated_by_name=display_name(actor),
            updated_at=timezone.now(),
        )
        if not updated:
            logger.warning(
                "approval_policy_conflict expected_version=%s current_version=%s user=%s",
                expected_version,
                before.version,
                getattr(actor, "username", None),
            )
            raise PolicyConflict()

        row = ApprovalPolicy.objects.get(key=POLICY_KEY)
        snapshot = _snapshot(row)
        create_audit_log(
            actor=actor,
            action="approval_policy.update",
            entity="approval_policy",
            entity_id=row.pk,
            before_snapshot=_snapshot(before).as_dict(),
            after_snapshot=snapshot.as_dict(),
            request_id=request_id,
        )
        emit_outbox("", "approval_policy", row.pk, "upsert", snapshot.as_dict())

    logger.info("approval_policy_saved version=%s user=%s", snapshot.version, getattr(actor, "username", None))
    return snapshot
