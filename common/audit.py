import json

from django.core.serializers.json import DjangoJSONEncoder

from core.models import AuditLog


def get_request_id(request):
    if request is None:
        return None
    return getattr(request, "request_id", None) or request.headers.get("X-Request-ID")


def _json_safe(value):
    if value is None:
        return None
    return json.loads(json.dumps(value, cls=DjangoJSONEncoder))


def create_audit_log(
    *,
    actor=None,
    location="",
    action,
    entity,
    entity_id=None,
    before_snapshot=None,
    after_snapshot=None,
    request_id=None,
):
    return AuditLog.objects.create(
        actor=actor if actor is not None and getattr(actor, "pk", None) else None,
        location=location or "",
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else "",
        before_snapshot=_json_safe(before_snapshot),
        after_snapshot=_json_safe(after_snapshot),
        request_id=request_id,
    )


def create_audit_log_from_request(
    request,
    *,
    action,
    entity,
    entity_id=None,
    before_snapshot=None,
    after_snapshot=None,
    location="",
):
    user = getattr(request, "user", None)
    return create_audit_log(
        actor=user if user is not None and user.is_authenticated else None,
        location=location,
        action=action,
        entity=entity,
        entity_id=entity_id,
        before_snapshot=before_snapshot,
        after_snapshot=after_snapshot,
        request_id=get_request_id(request),
    )
