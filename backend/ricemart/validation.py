"""
Typed commands for every write operation.

Each parse_* function takes the raw JSON body once, at the HTTP boundary,
and returns a frozen dataclass. Services only ever see these values, never
request dicts. Keys are accepted in camelCase (client contract) or
snake_case. Money is always integer minor units.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .errors import ValidationError
from .models.inventory import AROMA_LEVELS, MOVEMENT_ADJUSTMENT, MOVEMENT_LOSS, MOVEMENT_RETURN, QUALITY_GRADES
from .models.orders import VALID_PAYMENT_METHODS
from .models.payments import FARMER_PAYMENT_METHODS
from .state_machine import DeliveryStatus, OrderStatus, parse_delivery_status, parse_order_status
from .time_utils import parse_iso_datetime


# Maximum price: 9,999,999.99 in major units
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999
MAX_QUANTITY = 1_000_000

ADJUSTMENT_TYPES = (MOVEMENT_ADJUSTMENT, MOVEMENT_LOSS, MOVEMENT_RETURN)

_MISSING = object()


# =============================================================================
# FIELD COERCION
# =============================================================================

def _get(data: dict, *keys: str, default: Any = _MISSING) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return default


def _require(data: dict, *keys: str) -> Any:
    value = _get(data, *keys)
    if value is _MISSING or value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{keys[0]} is required", details={"field": keys[0]})
    return value


def _as_int(value: Any, field: str) -> int:
    """Strict integer: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", details={"field": field})
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", details={"field": field})
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", details={"field": field})
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(
                f"{field} must be a plain integer (scientific notation not allowed)",
                details={"field": field},
            )
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", details={"field": field})
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", details={"field": field}) from None
    raise ValidationError(f"{field} must be an integer", details={"field": field})


def _as_positive_int(value: Any, field: str, *, maximum: int = MAX_QUANTITY) -> int:
    number = _as_int(value, field)
    if number <= 0:
        raise ValidationError(f"{field} must be greater than 0", details={"field": field})
    if number > maximum:
        raise ValidationError(f"{field} cannot exceed {maximum}", details={"field": field})
    return number


def _as_amount(value: Any, field: str, *, allow_zero: bool = True) -> int:
    amount = _as_int(value, field)
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError(f"{field} must be {'>=' if allow_zero else '>'} 0", details={"field": field})
    if amount > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS}", details={"field": field})
    return amount


def _optional_int(data: dict, *keys: str) -> int | None:
    value = _get(data, *keys, default=None)
    if value is None:
        return None
    return _as_int(value, keys[0])


def _optional_amount(data: dict, *keys: str) -> int | None:
    value = _get(data, *keys, default=None)
    if value is None:
        return None
    return _as_amount(value, keys[0])


def _as_str(value: Any, field: str, *, max_length: int = 255) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", details={"field": field})
    stripped = value.strip()
    if len(stripped) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}", details={"field": field})
    return stripped


def _optional_str(data: dict, *keys: str, max_length: int = 255) -> str | None:
    value = _get(data, *keys, default=None)
    if value is None:
        return None
    text = _as_str(value, keys[0], max_length=max_length)
    return text or None


def _optional_float(data: dict, *keys: str, minimum: float = 0.0, maximum: float = 100.0) -> float | None:
    value = _get(data, *keys, default=None)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{keys[0]} must be a number", details={"field": keys[0]})
    if not minimum <= value <= maximum:
        raise ValidationError(f"{keys[0]} must be between {minimum} and {maximum}", details={"field": keys[0]})
    return float(value)


def _optional_dict(data: dict, *keys: str) -> dict | None:
    value = _get(data, *keys, default=None)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValidationError(f"{keys[0]} must be an object", details={"field": keys[0]})
    return value


def _as_datetime(value: Any, field: str) -> datetime:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime", details={"field": field})
    try:
        parsed = parse_iso_datetime(value)
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError(f"{field} must be an ISO-8601 datetime", details={"field": field})
    return parsed


def _choice(value: Any, field: str, allowed) -> str:
    if value not in allowed:
        raise ValidationError(
            f"{field} must be one of: {', '.join(allowed)}",
            details={"field": field},
        )
    return value


def _body(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


# =============================================================================
# ORDERS
# =============================================================================

@dataclass(frozen=True)
class OrderItemCommand:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class ShippingAddress:
    address: str
    city: str
    postal_code: str
    country: str
    state: str | None = None
    phone: str | None = None

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "country": self.country,
            "phone": self.phone,
        }


@dataclass(frozen=True)
class CreateOrderCommand:
    items: tuple[OrderItemCommand, ...]
    shipping_address: ShippingAddress
    payment_method: str
    tax_price_cents: int = 0
    shipping_price_cents: int = 0
    # Client-computed totals; checked against the server's figures when present
    items_price_cents: int | None = None
    total_price_cents: int | None = None
    payment_result: dict | None = None
    notes: str | None = None


def parse_create_order(payload: Any) -> CreateOrderCommand:
    data = _body(payload)

    raw_items = _get(data, "items", "orderItems", default=None)
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("No order items", details={"field": "items"})

    quantities: dict[int, int] = {}
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object", details={"field": "items"})
        product_id = _as_positive_int(_require(raw, "productId", "product_id", "product"), "productId", maximum=2**31 - 1)
        quantity = _as_positive_int(_require(raw, "quantity"), "quantity")
        # Duplicate lines for one product are merged
        quantities[product_id] = quantities.get(product_id, 0) + quantity

    items = tuple(OrderItemCommand(product_id=pid, quantity=qty) for pid, qty in quantities.items())

    raw_address = _require(data, "shippingAddress", "shipping_address")
    if not isinstance(raw_address, dict):
        raise ValidationError("shippingAddress must be an object", details={"field": "shippingAddress"})
    address = ShippingAddress(
        address=_as_str(_require(raw_address, "address"), "address"),
        city=_as_str(_require(raw_address, "city"), "city", max_length=100),
        postal_code=_as_str(_require(raw_address, "postalCode", "postal_code"), "postalCode", max_length=20),
        country=_as_str(_require(raw_address, "country"), "country", max_length=100),
        state=_optional_str(raw_address, "state", max_length=100),
        phone=_optional_str(raw_address, "phone", max_length=32),
    )

    payment_method = _choice(
        _require(data, "paymentMethod", "payment_method"), "paymentMethod", VALID_PAYMENT_METHODS,
    )

    return CreateOrderCommand(
        items=items,
        shipping_address=address,
        payment_method=payment_method,
        tax_price_cents=_optional_amount(data, "taxPrice", "tax_price_cents") or 0,
        shipping_price_cents=_optional_amount(data, "shippingPrice", "shipping_price_cents") or 0,
        items_price_cents=_optional_amount(data, "itemsPrice", "items_price_cents"),
        total_price_cents=_optional_amount(data, "totalPrice", "total_price_cents"),
        payment_result=_optional_dict(data, "paymentResult", "payment_result"),
        notes=_optional_str(data, "notes", max_length=500),
    )


@dataclass(frozen=True)
class UpdateOrderStatusCommand:
    status: OrderStatus
    note: str | None = None


def parse_update_order_status(payload: Any) -> UpdateOrderStatusCommand:
    data = _body(payload)
    return UpdateOrderStatusCommand(
        status=parse_order_status(_require(data, "status")),
        note=_optional_str(data, "note", max_length=500),
    )


@dataclass(frozen=True)
class CancelOrderCommand:
    reason: str | None = None


def parse_cancel_order(payload: Any) -> CancelOrderCommand:
    data = _body(payload)
    return CancelOrderCommand(reason=_optional_str(data, "reason", max_length=255))


@dataclass(frozen=True)
class UpdateTrackingCommand:
    tracking_number: str
    courier_provider: str


def parse_update_tracking(payload: Any) -> UpdateTrackingCommand:
    data = _body(payload)
    return UpdateTrackingCommand(
        tracking_number=_as_str(_require(data, "trackingNumber", "tracking_number"), "trackingNumber", max_length=64),
        courier_provider=_as_str(_require(data, "courierProvider", "courier_provider"), "courierProvider", max_length=64),
    )


@dataclass(frozen=True)
class MarkOrderPaidCommand:
    payment_result: dict


def parse_mark_order_paid(payload: Any) -> MarkOrderPaidCommand:
    data = _body(payload)
    result = {
        "id": _optional_str(data, "id"),
        "status": _optional_str(data, "status"),
        "update_time": _optional_str(data, "update_time", "updateTime"),
        "email_address": _optional_str(data, "email_address", "emailAddress"),
    }
    return MarkOrderPaidCommand(payment_result=result)


# =============================================================================
# INVENTORY
# =============================================================================

@dataclass(frozen=True)
class RecordPurchaseCommand:
    product_id: int
    farmer_id: int
    quantity_purchased: int
    purchase_price_cents: int
    selling_price_cents: int
    purchase_date: datetime | None = None
    low_stock_threshold: int | None = None
    quality_grade: str | None = None
    warehouse_location: dict | None = None
    packaging: dict | None = None


def parse_record_purchase(payload: Any) -> RecordPurchaseCommand:
    data = _body(payload)

    purchase_date = _get(data, "purchaseDate", "purchase_date", default=None)
    threshold = _optional_int(data, "lowStockThreshold", "low_stock_threshold")
    if threshold is not None and threshold < 0:
        raise ValidationError("lowStockThreshold must be >= 0", details={"field": "lowStockThreshold"})

    grade = _optional_str(data, "qualityGrade", "quality_grade", max_length=4)
    if grade is not None:
        _choice(grade, "qualityGrade", QUALITY_GRADES)

    return RecordPurchaseCommand(
        product_id=_as_positive_int(_require(data, "productId", "product_id"), "productId", maximum=2**31 - 1),
        farmer_id=_as_positive_int(_require(data, "farmerId", "farmer_id"), "farmerId", maximum=2**31 - 1),
        quantity_purchased=_as_positive_int(_require(data, "quantityPurchased", "quantity_purchased"), "quantityPurchased"),
        purchase_price_cents=_as_amount(_require(data, "purchasePrice", "purchase_price_cents"), "purchasePrice"),
        selling_price_cents=_as_amount(_require(data, "sellingPrice", "selling_price_cents"), "sellingPrice"),
        purchase_date=_as_datetime(purchase_date, "purchaseDate") if purchase_date is not None else None,
        low_stock_threshold=threshold,
        quality_grade=grade,
        warehouse_location=_optional_dict(data, "warehouseLocation", "warehouse_location"),
        packaging=_optional_dict(data, "packaging"),
    )


@dataclass(frozen=True)
class AdjustStockCommand:
    quantity: int
    reason: str
    type: str = MOVEMENT_ADJUSTMENT


def parse_adjust_stock(payload: Any) -> AdjustStockCommand:
    data = _body(payload)
    quantity = _as_int(_require(data, "quantity"), "quantity")
    if quantity == 0:
        raise ValidationError("quantity must not be 0", details={"field": "quantity"})
    if abs(quantity) > MAX_QUANTITY:
        raise ValidationError(f"quantity cannot exceed {MAX_QUANTITY}", details={"field": "quantity"})

    movement_type = _get(data, "type", default=None) or MOVEMENT_ADJUSTMENT
    return AdjustStockCommand(
        quantity=quantity,
        reason=_as_str(_require(data, "reason"), "reason"),
        type=_choice(movement_type, "type", ADJUSTMENT_TYPES),
    )


@dataclass(frozen=True)
class UpdateLedgerEntryCommand:
    selling_price_cents: int | None = None
    low_stock_threshold: int | None = None
    warehouse_location: dict | None = None
    packaging: dict | None = None


def parse_update_ledger_entry(payload: Any) -> UpdateLedgerEntryCommand:
    data = _body(payload)
    threshold = _optional_int(data, "lowStockThreshold", "low_stock_threshold")
    if threshold is not None and threshold < 0:
        raise ValidationError("lowStockThreshold must be >= 0", details={"field": "lowStockThreshold"})

    cmd = UpdateLedgerEntryCommand(
        selling_price_cents=_optional_amount(data, "sellingPrice", "selling_price_cents"),
        low_stock_threshold=threshold,
        warehouse_location=_optional_dict(data, "warehouseLocation", "warehouse_location"),
        packaging=_optional_dict(data, "packaging"),
    )
    if all(v is None for v in (cmd.selling_price_cents, cmd.low_stock_threshold, cmd.warehouse_location, cmd.packaging)):
        raise ValidationError("No updatable fields supplied")
    return cmd


@dataclass(frozen=True)
class QualityAssessmentCommand:
    overall_grade: str
    moisture: float | None = None
    broken: float | None = None
    foreign_matter: float | None = None
    discoloration: float | None = None
    aroma: str | None = None
    notes: str | None = None
    update_grade: bool = True


def parse_quality_assessment(payload: Any) -> QualityAssessmentCommand:
    data = _body(payload)
    aroma = _optional_str(data, "aroma", max_length=16)
    if aroma is not None:
        _choice(aroma, "aroma", AROMA_LEVELS)

    update_grade = _get(data, "updateGrade", "update_grade", default=True)
    if not isinstance(update_grade, bool):
        raise ValidationError("updateGrade must be a boolean", details={"field": "updateGrade"})

    return QualityAssessmentCommand(
        overall_grade=_choice(_require(data, "overallGrade", "overall_grade"), "overallGrade", QUALITY_GRADES),
        moisture=_optional_float(data, "moisture"),
        broken=_optional_float(data, "broken"),
        foreign_matter=_optional_float(data, "foreignMatter", "foreign_matter"),
        discoloration=_optional_float(data, "discoloration"),
        aroma=aroma,
        notes=_optional_str(data, "notes", max_length=2000),
        update_grade=update_grade,
    )


# =============================================================================
# PAYMENTS
# =============================================================================

@dataclass(frozen=True)
class CreateGatewayOrderCommand:
    order_id: int


def parse_create_gateway_order(payload: Any) -> CreateGatewayOrderCommand:
    data = _body(payload)
    return CreateGatewayOrderCommand(
        order_id=_as_positive_int(_require(data, "orderId", "order_id"), "orderId", maximum=2**31 - 1),
    )


@dataclass(frozen=True)
class VerifyPaymentCommand:
    gateway_order_id: str
    gateway_payment_id: str
    signature: str
    payment_id: int


def parse_verify_payment(payload: Any) -> VerifyPaymentCommand:
    data = _body(payload)
    return VerifyPaymentCommand(
        gateway_order_id=_as_str(
            _require(data, "gateway_order_id", "razorpay_order_id", "gatewayOrderId"), "gateway_order_id", max_length=64,
        ),
        gateway_payment_id=_as_str(
            _require(data, "gateway_payment_id", "razorpay_payment_id", "gatewayPaymentId"), "gateway_payment_id", max_length=64,
        ),
        signature=_as_str(
            _require(data, "signature", "razorpay_signature"), "signature", max_length=128,
        ),
        payment_id=_as_positive_int(_require(data, "paymentId", "payment_id"), "paymentId", maximum=2**31 - 1),
    )


@dataclass(frozen=True)
class RefundCommand:
    reason: str
    amount_cents: int | None = None


def parse_refund(payload: Any) -> RefundCommand:
    data = _body(payload)
    amount = _get(data, "amount", "amount_cents", default=None)
    return RefundCommand(
        reason=_as_str(_require(data, "reason"), "reason"),
        amount_cents=_as_amount(amount, "amount", allow_zero=False) if amount is not None else None,
    )


@dataclass(frozen=True)
class FarmerPaymentCommand:
    farmer_id: int
    amount_cents: int
    payment_method: str
    inventory_id: int | None = None
    description: str | None = None
    bank_details: dict | None = None
    rice_quantity: int | None = None
    rate_per_kg_cents: int | None = None


def parse_farmer_payment(payload: Any) -> FarmerPaymentCommand:
    data = _body(payload)
    if _get(data, "farmerId", "farmer_id", default=None) is None \
            or _get(data, "amount", "amount_cents", default=None) is None \
            or not _get(data, "paymentMethod", "payment_method", default=None):
        raise ValidationError("Farmer ID, amount, and payment method are required")

    rice_quantity = _get(data, "riceQuantity", "rice_quantity", default=None)
    inventory_id = _get(data, "inventoryId", "inventory_id", default=None)

    return FarmerPaymentCommand(
        farmer_id=_as_positive_int(_get(data, "farmerId", "farmer_id"), "farmerId", maximum=2**31 - 1),
        amount_cents=_as_amount(_get(data, "amount", "amount_cents"), "amount", allow_zero=False),
        payment_method=_choice(_get(data, "paymentMethod", "payment_method"), "paymentMethod", FARMER_PAYMENT_METHODS),
        inventory_id=_as_positive_int(inventory_id, "inventoryId", maximum=2**31 - 1) if inventory_id is not None else None,
        description=_optional_str(data, "description", max_length=500),
        bank_details=_optional_dict(data, "bankDetails", "bank_details"),
        rice_quantity=_as_positive_int(rice_quantity, "riceQuantity") if rice_quantity is not None else None,
        rate_per_kg_cents=_optional_amount(data, "ratePerKg", "rate_per_kg_cents"),
    )


# =============================================================================
# DELIVERIES
# =============================================================================

@dataclass(frozen=True)
class CreateDeliveryCommand:
    order_id: int
    scheduled_date: datetime
    time_slot: str | None = None
    agent_id: int | None = None
    address: dict | None = None
    special_instructions: str | None = None


def parse_create_delivery(payload: Any) -> CreateDeliveryCommand:
    data = _body(payload)
    agent_id = _get(data, "agentId", "agent_id", "deliveryAgent", default=None)
    return CreateDeliveryCommand(
        order_id=_as_positive_int(_require(data, "orderId", "order_id"), "orderId", maximum=2**31 - 1),
        scheduled_date=_as_datetime(_require(data, "scheduledDate", "scheduled_date"), "scheduledDate"),
        time_slot=_optional_str(data, "timeSlot", "time_slot", max_length=32),
        agent_id=_as_positive_int(agent_id, "agentId", maximum=2**31 - 1) if agent_id is not None else None,
        address=_optional_dict(data, "address", "deliveryAddress"),
        special_instructions=_optional_str(data, "specialInstructions", "special_instructions", max_length=2000),
    )


@dataclass(frozen=True)
class UpdateDeliveryStatusCommand:
    status: DeliveryStatus
    location: dict | None = None
    note: str | None = None
    failure_reason: str | None = None


def parse_update_delivery_status(payload: Any) -> UpdateDeliveryStatusCommand:
    data = _body(payload)
    return UpdateDeliveryStatusCommand(
        status=parse_delivery_status(_require(data, "status")),
        location=_optional_dict(data, "location"),
        note=_optional_str(data, "note", max_length=500),
        failure_reason=_optional_str(data, "failureReason", "failure_reason", max_length=255),
    )


# =============================================================================
# QUERY PARAMS
# =============================================================================

def parse_paging(args) -> tuple[int, int]:
    """limit/offset from a query-string mapping, clamped like the other list endpoints."""
    try:
        limit = int(args.get("limit", 50))
        offset = int(args.get("offset", 0))
    except (TypeError, ValueError):
        raise ValidationError("limit and offset must be integers") from None
    return max(1, min(limit, 200)), max(0, offset)


def parse_optional_datetime_arg(args, name: str) -> datetime | None:
    value = args.get(name)
    if not value:
        return None
    return _as_datetime(value, name)
