import logging
from decimal import Decimal, InvalidOperation

from django.db import IntegrityError, transaction
from django.utils import timezone

from common.exceptions import InsufficientStock, InvalidInput, RecordNotFound
from common.utils import display_name, emit_outbox, to_money
from inventory.models import StockRecord

logger = logging.getLogger(__name__)

PRODUCT_ATTRIBUTES = ("brand", "model_name", "storage", "color", "order_price", "sale_price", "discount_percentage")
ADJUSTMENT_METADATA_FIELDS = ("last_transfer", "last_restock", "last_sold_at")


def stock_payload(stock):
    return {
        "id": stock.id,
        "item_code": stock.item_code,
        "location": stock.location,
        "brand": stock.brand,
        "model": stock.model_name,
        "storage": stock.storage,
        "color": stock.color,
        "quantity": stock.quantity,
        "order_price": stock.order_price,
        "sale_price": stock.sale_price,
        "discount_percentage": stock.discount_percentage,
        "last_transfer": stock.last_transfer,
        "last_restock": stock.last_restock,
        "last_sold_at": stock.last_sold_at,
        "transferred_from": stock.transferred_from,
        "updated_at": stock.updated_at,
    }


def _emit_stock(stock):
    emit_outbox(stock.location, "stock", stock.id, "upsert", stock_payload(stock))


def require_text(value, field_name):
    if value is None or not str(value).strip():
        raise InvalidInput({field_name: "This field is required."})
    return str(value).strip()


def require_positive_int(value, field_name="quantity"):
    if isinstance(value, bool):
        raise InvalidInput({field_name: "Must be a positive integer."})
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and value.strip().isdigit():
        number = int(value.strip())
    else:
        raise InvalidInput({field_name: "Must be a positive integer."})
    if number <= 0:
        raise InvalidInput({field_name: "Must be greater than zero."})
    return number


def _clean_attributes(attributes):
    cleaned = {}
    for field_name, value in attributes.items():
        if field_name not in PRODUCT_ATTRIBUTES:
            raise InvalidInput({field_name: "Unknown or read-only stock field."})
        if field_name in ("order_price", "sale_price", "discount_percentage"):
            try:
                value = Decimal(str(value if value not in (None, "") else 0))
            except InvalidOperation:
                raise InvalidInput({field_name: "Must be a number."})
            if value < 0:
                raise InvalidInput({field_name: "Must not be negative."})
            if field_name == "discount_percentage" and value > 100:
                raise InvalidInput({field_name: "Must be between 0 and 100."})
            value = to_money(value)
        else:
            value = (value or "").strip() if isinstance(value, str) or value is None else str(value)
        cleaned[field_name] = value
    return cleaned


def find_stock(item_code, location, *, for_update=False):
    qs = StockRecord.objects.filter(item_code=item_code, location=location)
    if for_update:
        qs = qs.select_for_update()
    return qs.first()


def get_stock(item_code, location):
    stock = find_stock(item_code, location)
    if stock is None:
        raise RecordNotFound(f"No stock record for item {item_code} at {location}.")
    return stock


def adjust_quantity(item_code, location, delta, metadata=None):
    """Apply ``delta`` to the stock record for (item_code, location).

    Every quantity change goes through here. The row is locked for the rest of
    the surrounding transaction, so concurrent debits on the same key are
    serialised and cannot drive the balance below zero.
    """
    metadata = dict(metadata or {})
    unknown = set(metadata) - set(ADJUSTMENT_METADATA_FIELDS)
    if unknown:
        raise InvalidInput({"metadata": f"Unsupported metadata keys: {', '.join(sorted(unknown))}."})
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise InvalidInput({"delta": "Must be an integer."})

    with transaction.atomic():
        stock = find_stock(item_code, location, for_update=True)
        if stock is None:
            raise RecordNotFound(f"No stock record for item {item_code} at {location}.")

        new_quantity = stock.quantity + delta
        if new_quantity < 0:
            logger.info(
                "stock_adjust_refused item=%s location=%s on_hand=%s delta=%s",
                item_code,
                location,
                stock.quantity,
                delta,
                extra={"item_code": item_code, "location": location},
            )
            raise InsufficientStock(f"Insufficient stock for item {item_code} at {location}. Only {stock.quantity} units available.")

        stock.quantity = new_quantity
        update_fields = ["quantity", "updated_at"]
        for field_name, value in metadata.items():
            setattr(stock, field_name, value)
            update_fields.append(field_name)
        stock.save(update_fields=update_fields)
        _emit_stock(stock)

    return stock


def upsert_at_destination(item_code, location, quantity, template, transfer_origin, actor=None):
    """Credit ``quantity`` at the destination, creating the record from ``template`` if needed."""
    quantity = require_positive_int(quantity)
    now = timezone.now()

    with transaction.atomic():
        existing = find_stock(item_code, location, for_update=True)
        if existing is None:
            try:
                with transaction.atomic():
                    stock = StockRecord.objects.create(
                        item_code=item_code,
                        location=location,
                        quantity=quantity,
                        transferred_from=transfer_origin,
                        original_stock=template,
                        **{field_name: getattr(template, field_name) for field_name in PRODUCT_ATTRIBUTES},
                    )
            except IntegrityError:
                # Lost a create race for the same key; fall through to the increment path.
                logger.warning("stock_upsert_create_conflict item=%s location=%s", item_code, location)
            else:
                _emit_stock(stock)
                return stock

        return adjust_quantity(
            item_code,
            location,
            quantity,
            {
                "last_restock": {
                    "from_location": transfer_origin,
                    "quantity": quantity,
                    "restocked_at": now,
                    "restocked_by": str(actor.pk) if actor is not None else None,
                }
            },
        )


def receive_stock(*, item_code, location, quantity, actor, **attributes):
    """Stock intake: create the record on first receipt, otherwise add to it."""
    item_code = require_text(item_code, "item_code")
    location = require_text(location, "location")
    quantity = require_positive_int(quantity)
    attributes = _clean_attributes(attributes)

    with transaction.atomic():
        existing = find_stock(item_code, location, for_update=True)
        if existing is not None:
            stock = adjust_quantity(
                item_code,
                location,
                quantity,
                {
                    "last_restock": {
                        "from_location": None,
                        "quantity": quantity,
                        "restocked_at": timezone.now(),
                        "restocked_by": str(actor.pk) if actor is not None else None,
                    }
                },
            )
            return stock, False

        require_text(attributes.get("brand"), "brand")
        require_text(attributes.get("model_name"), "model_name")
        stock = StockRecord.objects.create(
            item_code=item_code,
            location=location,
            quantity=quantity,
            added_by=actor,
            added_by_name=display_name(actor),
            **attributes,
        )
        _emit_stock(stock)

    logger.info(
        "stock_received item=%s location=%s quantity=%s",
        item_code,
        location,
        quantity,
        extra={"item_code": item_code, "location": location},
    )
    return stock, True


def update_stock_details(stock, actor=None, **changes):
    """Edit product attributes and pricing. Quantity is never accepted here."""
    if "quantity" in changes:
        raise InvalidInput({"quantity": "Quantity changes must go through intake, sales or transfers."})
    changes = _clean_attributes(changes)
    if not changes:
        return stock

    with transaction.atomic():
        locked = StockRecord.objects.select_for_update().get(pk=stock.pk)
        for field_name, value in changes.items():
            setattr(locked, field_name, value)
        locked.save(update_fields=[*changes.keys(), "updated_at"])
        _emit_stock(locked)

    logger.info(
        "stock_details_updated item=%s location=%s fields=%s user=%s",
        locked.item_code,
        locked.location,
        ",".join(sorted(changes)),
        getattr(actor, "username", None),
        extra={"item_code": locked.item_code, "location": locked.location},
    )
    return locked
