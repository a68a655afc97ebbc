import logging
from decimal import Decimal, InvalidOperation

from django.db import transaction
from django.utils import timezone

from common.exceptions import InsufficientStock, InvalidInput, InvalidPrice, RecordNotFound
from common.utils import display_name, emit_outbox, to_money
from inventory import ledger
from inventory.models import LedgerEntry
from inventory.services import adjust_quantity, find_stock, require_positive_int, require_text
from sales.models import SaleRecord

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
# Largest amount SaleRecord's DecimalField(max_digits=12, decimal_places=2) holds.
MAX_PRICE = Decimal("9999999999.99")


def sale_payload(sale):
    return {
        "id": sale.id,
        "item_code": sale.item_code,
        "brand": sale.brand,
        "model": sale.model_name,
        "storage": sale.storage,
        "color": sale.color,
        "stock_id": sale.stock_id,
        "quantity": sale.quantity,
        "original_price": sale.original_price,
        "final_sale_price": sale.final_sale_price,
        "custom_price": sale.custom_price,
        "discount_percentage": sale.discount_percentage,
        "location": sale.location,
        "sold_by": sale.sold_by_id,
        "sold_by_name": sale.sold_by_name,
        "sold_at": sale.sold_at,
        "sale_type": sale.sale_type,
        "status": sale.status,
    }


def _clean_custom_price(custom_price):
    if custom_price is None:
        return None
    if isinstance(custom_price, bool):
        raise InvalidPrice()
    try:
        price = to_money(Decimal(str(custom_price).strip()))
    except (InvalidOperation, ValueError):
        raise InvalidPrice()
    # Compared after rounding to cents.
    if price <= 0 or price > MAX_PRICE:
        raise InvalidPrice()
    return price


def standard_price(stock, quantity):
    """Catalogue price less the record's discount, times quantity, rounded half-up to cents."""
    discount = Decimal(stock.discount_percentage or 0)
    return to_money(Decimal(stock.sale_price) * (1 - discount / HUNDRED) * quantity)


def sell(*, item_code, location, quantity, actor, custom_price=None):
    """Debit ``quantity`` at ``location`` and record the sale.

    A custom price replaces the whole sale total; it is not multiplied by
    quantity. The debit, the sale record and the ledger entry commit together.
    """
    item_code = require_text(item_code, "item_code")
    location = require_text(location, "location")
    quantity = require_positive_int(quantity)
    if actor is None:
        raise InvalidInput({"actor": "This field is required."})
    custom_price = _clean_custom_price(custom_price)

    with transaction.atomic():
        stock = find_stock(item_code, location, for_update=True)
        if stock is None:
            raise RecordNotFound(f"Item {item_code} not found at {location}.")
        if stock.quantity < quantity:
            raise InsufficientStock(f"Insufficient stock. Only {stock.quantity} units available.")

        now = timezone.now()
        if custom_price is not None:
            final_price = custom_price
            sale_type = SaleRecord.SaleType.CUSTOM_PRICE
        else:
            final_price = standard_price(stock, quantity)
            sale_type = SaleRecord.SaleType.STANDARD

        stock = adjust_quantity(item_code, location, -quantity, {"last_sold_at": now})
        sale = SaleRecord.objects.create(
            item_code=item_code,
            brand=stock.brand,
            model_name=stock.model_name,
            storage=stock.storage,
            color=stock.color,
            stock=stock,
            quantity=quantity,
            original_price=stock.sale_price,
            final_sale_price=final_price,
            custom_price=custom_price,
            discount_percentage=stock.discount_percentage,
            location=location,
            sold_by=actor,
            sold_by_name=display_name(actor),
            sold_at=now,
            sale_type=sale_type,
        )
        ledger.record_entry(
            entry_type=LedgerEntry.EntryType.SALE,
            item_code=item_code,
            brand=stock.brand,
            model_name=stock.model_name,
            quantity=quantity,
            from_location=location,
            actor=actor,
            sale_id=sale.id,
            occurred_at=now,
        )
        emit_outbox(location, "sale", sale.id, "insert", sale_payload(sale))

    logger.info(
        "sale_completed sale=%s item=%s location=%s quantity=%s total=%s type=%s",
        sale.id,
        item_code,
        location,
        quantity,
        final_price,
        sale_type,
        extra={"sale_id": str(sale.id), "item_code": item_code, "location": location},
    )
    return sale
