"""Closed value sets for every status/type column."""
import enum


class ArticleType(str, enum.Enum):
    PRODUCT = "product"
    INGREDIENT = "ingredient"
    SERVICE = "service"


class OrderStatus(str, enum.Enum):
    DRAFT = "draft"
    CONFIRMED = "confirmed"
    PREPARED = "prepared"
    READY = "ready"
    PARTIALLY_DELIVERED = "partially_delivered"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# Orders a delivery may be created from.
DELIVERABLE_ORDER_STATUSES = frozenset(
    {
        OrderStatus.CONFIRMED,
        OrderStatus.PREPARED,
        OrderStatus.READY,
        OrderStatus.PARTIALLY_DELIVERED,
    }
)


class DeliveryStatus(str, enum.Enum):
    PENDING = "pending"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# Forward order of the non-terminal path; cancelled sits outside it.
DELIVERY_STATUS_RANK = {
    DeliveryStatus.PENDING: 0,
    DeliveryStatus.IN_TRANSIT: 1,
    DeliveryStatus.DELIVERED: 2,
}


class OperationType(str, enum.Enum):
    RECEPTION = "reception"
    DELIVERY = "delivery"
    ADJUSTMENT = "adjustment"
    DELIVERY_RETURN = "delivery_return"
    DELIVERY_WASTE = "delivery_waste"
    PRODUCTION = "production"
    INVENTORY = "inventory"


OPERATION_CODE_PREFIX = {
    OperationType.RECEPTION: "REC",
    OperationType.DELIVERY: "LIV",
    OperationType.ADJUSTMENT: "AJU",
    OperationType.DELIVERY_RETURN: "RETL",
    OperationType.DELIVERY_WASTE: "REBL",
    OperationType.PRODUCTION: "FAB",
    OperationType.INVENTORY: "INV",
}


def operation_code(op_type: OperationType, sequence: int) -> str:
    prefix = OPERATION_CODE_PREFIX.get(op_type, "OP")
    return f"{prefix}-{int(sequence):06d}"


class OperationStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ReservationStatus(str, enum.Enum):
    RESERVED = "reserved"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    VALID = "VALID"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    BANK = "bank"
    CARD = "card"
    CHEQUE = "cheque"


class InvoiceStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    PARTIAL = "partial"
    CANCELLED = "cancelled"


class ExpirationStatus(str, enum.Enum):
    VALID = "valid"
    ALERT = "alert"
    EXPIRED = "expired"
