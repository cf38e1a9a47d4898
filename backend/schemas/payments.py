from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import Field, field_validator

from core.enums import PaymentMethod, PaymentStatus
from schemas.base import CamelModel


class PaymentCreate(CamelModel):
    amount: Decimal
    method: PaymentMethod = PaymentMethod.CASH
    status: PaymentStatus = PaymentStatus.PENDING
    payment_date: Optional[date] = None
    reference: Optional[str] = None
    notes: Optional[str] = None
    received_by: Optional[str] = None

    @field_validator("amount")
    @classmethod
    def _amount_positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("amount must be > 0")
        return v

    @field_validator("status")
    @classmethod
    def _initial_status(cls, v: PaymentStatus) -> PaymentStatus:
        if v not in (PaymentStatus.PENDING, PaymentStatus.VALID):
            raise ValueError("a new payment must be PENDING or VALID")
        return v

    @field_validator("reference", "notes", "received_by")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class PaymentOut(CamelModel):
    id: UUID
    delivery_id: Optional[UUID] = None
    order_id: Optional[UUID] = None
    invoice_id: Optional[UUID] = None
    client_id: Optional[UUID] = None
    amount: float
    method: PaymentMethod
    status: PaymentStatus
    payment_date: Optional[date] = None
    reference: Optional[str] = None
    notes: Optional[str] = None
    received_by: Optional[str] = None


class PaymentSummaryOut(CamelModel):
    total_due: float
    total_paid: float
    total_refunded: float
    remaining_amount: float
    is_fully_paid: bool


class DeliveryPaymentsOut(CamelModel):
    payments: List[PaymentOut]
    summary: PaymentSummaryOut


class ClientPaymentSummaryOut(CamelModel):
    client_id: UUID
    client_name: str
    delivery_count: int
    total_due: float
    total_paid: float
    total_refunded: float
    remaining_amount: float
    recovery_rate: float


class OutstandingPaymentOut(CamelModel):
    invoice_id: UUID
    invoice_code: str
    client_id: UUID
    client_name: Optional[str] = None
    total_ttc: float = Field(alias="totalTTC")
    amount_paid: float
    outstanding_amount: float
    due_date: Optional[date] = None
    days_overdue: int


class BaseFiguresOut(CamelModel):
    total_due: float
    total_paid: float
    encours: float
    recovery_rate: float


class StatusBucketOut(CamelModel):
    count: int
    amount: float


class DashboardBasesOut(CamelModel):
    invoiced: BaseFiguresOut
    ordered: BaseFiguresOut
    delivered_net: BaseFiguresOut


class DashboardFiltersOut(CamelModel):
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    status: Optional[PaymentStatus] = None
    client_id: Optional[UUID] = None
    order_id: Optional[UUID] = None
    delivery_id: Optional[UUID] = None
    invoice_id: Optional[UUID] = None


class DashboardStatsOut(CamelModel):
    filters: DashboardFiltersOut
    payment_count: int
    total_paid: float
    total_refunded: float
    total_cancelled: float
    by_status: Dict[str, StatusBucketOut]
    by_method: Dict[str, float]
    bases: DashboardBasesOut
    skipped_rows: int
