import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.enums import DeliveryStatus, InvoiceStatus, OrderStatus, PaymentStatus
from core.errors import DomainError, NotFound, StateConflict, ValidationFailed
from core.reconciliation import (
    PaymentFigure,
    base_figures,
    bucket_payments,
    days_overdue,
    outstanding_rows,
    recovery_rate,
    summarize_payments,
)
from db.client import Client as ClientModel
from db.database import get_async_session
from db.delivery import Delivery as DeliveryModel
from db.invoice import Invoice as InvoiceModel
from db.order import Order as OrderModel
from db.payment import Payment as PaymentModel
from schemas.payments import (
    BaseFiguresOut,
    ClientPaymentSummaryOut,
    DashboardBasesOut,
    DashboardFiltersOut,
    DashboardStatsOut,
    DeliveryPaymentsOut,
    OutstandingPaymentOut,
    PaymentCreate,
    PaymentOut,
    PaymentSummaryOut,
    StatusBucketOut,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# action -> (allowed current statuses, new status)
_TRANSITIONS = {
    "validate": ({PaymentStatus.PENDING}, PaymentStatus.VALID),
    "cancel": ({PaymentStatus.PENDING, PaymentStatus.VALID}, PaymentStatus.CANCELLED),
    "refund": ({PaymentStatus.VALID}, PaymentStatus.REFUNDED),
}

_DELETABLE = {PaymentStatus.PENDING, PaymentStatus.CANCELLED}


def _figure(p: PaymentModel) -> PaymentFigure:
    return PaymentFigure(
        amount=Decimal(p.amount),
        status=p.status,
        method=p.method,
        payment_id=p.id,
        delivery_id=p.delivery_id,
        invoice_id=p.invoice_id,
    )


def _summary_out(summary) -> PaymentSummaryOut:
    return PaymentSummaryOut(
        total_due=float(summary.total_due),
        total_paid=float(summary.total_paid),
        total_refunded=float(summary.total_refunded),
        remaining_amount=float(summary.remaining_amount),
        is_fully_paid=summary.is_fully_paid,
    )


def _base_out(due, paid) -> BaseFiguresOut:
    b = base_figures(due, paid)
    return BaseFiguresOut(
        total_due=float(b.total_due),
        total_paid=float(b.total_paid),
        encours=float(b.encours),
        recovery_rate=float(b.recovery_rate),
    )


async def _get_delivery_or_404(db: AsyncSession, delivery_id: UUID, *, lock: bool = False) -> DeliveryModel:
    stmt = select(DeliveryModel).where(DeliveryModel.id == delivery_id)
    if lock:
        stmt = stmt.with_for_update()
    d = (await db.execute(stmt)).scalar_one_or_none()
    if not d:
        raise NotFound("Delivery not found")
    return d


async def _get_payment_or_404(db: AsyncSession, payment_id: UUID, *, lock: bool = False) -> PaymentModel:
    stmt = select(PaymentModel).where(PaymentModel.id == payment_id)
    if lock:
        stmt = stmt.with_for_update()
    p = (await db.execute(stmt)).scalar_one_or_none()
    if not p:
        raise NotFound("Payment not found")
    return p


async def _delivery_payments(db: AsyncSession, delivery_id: UUID) -> List[PaymentModel]:
    res = await db.execute(
        select(PaymentModel)
        .where(PaymentModel.delivery_id == delivery_id)
        .order_by(PaymentModel.payment_date.asc(), PaymentModel.created_at.asc())
    )
    return list(res.scalars().all())


@router.get("/deliveries/{delivery_id}/payments", response_model=DeliveryPaymentsOut)
async def list_delivery_payments(
    delivery_id: UUID,
    db: AsyncSession = Depends(get_async_session),
):
    d = await _get_delivery_or_404(db, delivery_id)
    payments = await _delivery_payments(db, d.id)
    summary = summarize_payments(d.total_ttc, [_figure(p) for p in payments])
    return DeliveryPaymentsOut(
        payments=[PaymentOut(**p.to_schema) for p in payments],
        summary=_summary_out(summary),
    )


@router.post("/deliveries/{delivery_id}/payments", response_model=PaymentOut, status_code=status.HTTP_201_CREATED)
async def create_delivery_payment(
    delivery_id: UUID,
    payload: PaymentCreate,
    db: AsyncSession = Depends(get_async_session),
):
    try:
        # the row lock serialises payments on this delivery until commit
        d = await _get_delivery_or_404(db, delivery_id, lock=True)
        if d.status == DeliveryStatus.CANCELLED:
            raise StateConflict("Cannot record a payment on a cancelled delivery")

        existing = await _delivery_payments(db, d.id)
        summary = summarize_payments(d.total_ttc, [_figure(p) for p in existing])
        if payload.amount > summary.remaining_amount + settings.payment_overpay_tolerance:
            raise ValidationFailed(
                f"Amount {payload.amount} exceeds the remaining amount ({summary.remaining_amount})"
            )

        inv = await db.execute(
            select(InvoiceModel.id)
            .where(InvoiceModel.delivery_id == d.id)
            .where(InvoiceModel.status != InvoiceStatus.CANCELLED)
        )
        invoice_id = inv.scalars().first()

        p = PaymentModel(
            delivery_id=d.id,
            order_id=d.order_id,
            invoice_id=invoice_id,
            client_id=d.client_id,
            amount=payload.amount,
            method=payload.method,
            status=payload.status,
            payment_date=payload.payment_date or date.today(),
            reference=payload.reference,
            notes=payload.notes,
            received_by=payload.received_by,
        )
        db.add(p)
        await db.commit()
        await db.refresh(p)
        logger.info("Payment %s of %s recorded on delivery %s (%s)", p.id, p.amount, d.code, p.status.value)
        return PaymentOut(**p.to_schema)
    except (DomainError, HTTPException):
        raise
    except Exception:
        await db.rollback()
        logger.exception("create_delivery_payment failed")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to record payment")


async def _transition(db: AsyncSession, payment_id: UUID, action: str) -> PaymentOut:
    allowed, target = _TRANSITIONS[action]
    p = await _get_payment_or_404(db, payment_id, lock=True)
    if p.status not in allowed:
        raise StateConflict(f"Cannot {action} a payment that is {p.status.value}")
    logger.info("Payment %s: %s -> %s", p.id, p.status.value, target.value)
    p.status = target
    await db.commit()
    await db.refresh(p)
    return PaymentOut(**p.to_schema)


@router.put("/payments/{payment_id}/validate", response_model=PaymentOut)
async def validate_payment(payment_id: UUID, db: AsyncSession = Depends(get_async_session)):
    return await _transition(db, payment_id, "validate")


@router.put("/payments/{payment_id}/cancel", response_model=PaymentOut)
async def cancel_payment(payment_id: UUID, db: AsyncSession = Depends(get_async_session)):
    return await _transition(db, payment_id, "cancel")


@router.put("/payments/{payment_id}/refund", response_model=PaymentOut)
async def refund_payment(payment_id: UUID, db: AsyncSession = Depends(get_async_session)):
    return await _transition(db, payment_id, "refund")


@router.delete("/payments/{payment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_payment(payment_id: UUID, db: AsyncSession = Depends(get_async_session)):
    p = await _get_payment_or_404(db, payment_id, lock=True)
    if p.status not in _DELETABLE:
        raise StateConflict(f"Only PENDING or CANCELLED payments can be deleted (payment is {p.status.value})")
    await db.delete(p)
    await db.commit()
    logger.info("Payment %s deleted", payment_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/clients/{client_id}/payments/summary", response_model=ClientPaymentSummaryOut)
async def client_payment_summary(
    client_id: UUID,
    db: AsyncSession = Depends(get_async_session),
):
    client = (await db.execute(select(ClientModel).where(ClientModel.id == client_id))).scalar_one_or_none()
    if not client:
        raise NotFound("Client not found")

    res = await db.execute(
        select(DeliveryModel.id, DeliveryModel.total_ttc)
        .where(DeliveryModel.client_id == client.id)
        .where(DeliveryModel.status != DeliveryStatus.CANCELLED)
    )
    deliveries = res.all()
    delivery_ids = {d_id for d_id, _ in deliveries}
    total_due = sum((Decimal(t or 0) for _, t in deliveries), Decimal("0"))

    res = await db.execute(select(PaymentModel).where(PaymentModel.client_id == client.id))
    # payments on cancelled deliveries are not part of this client's balance
    payments = [p for p in res.scalars().all() if p.delivery_id is None or p.delivery_id in delivery_ids]

    summary = summarize_payments(total_due, [_figure(p) for p in payments])
    return ClientPaymentSummaryOut(
        client_id=client.id,
        client_name=client.name,
        delivery_count=len(delivery_ids),
        total_due=float(summary.total_due),
        total_paid=float(summary.total_paid),
        total_refunded=float(summary.total_refunded),
        remaining_amount=float(summary.remaining_amount),
        recovery_rate=float(recovery_rate(summary.total_paid, summary.total_due)),
    )


@router.get("/payments/outstanding", response_model=List[OutstandingPaymentOut])
async def list_outstanding(
    client_id: Optional[UUID] = Query(None, alias="clientId"),
    db: AsyncSession = Depends(get_async_session),
):
    """Encours per invoice: what is still owed on each non-cancelled invoice, most overdue first."""
    stmt = (
        select(InvoiceModel, ClientModel.name)
        .outerjoin(ClientModel, InvoiceModel.client_id == ClientModel.id)
        .where(InvoiceModel.status != InvoiceStatus.CANCELLED)
    )
    if client_id is not None:
        stmt = stmt.where(InvoiceModel.client_id == client_id)
    invoices = (await db.execute(stmt)).all()

    today = date.today()
    rows = []
    for inv, client_name in invoices:
        cond = PaymentModel.invoice_id == inv.id
        if inv.delivery_id is not None:
            cond = or_(cond, PaymentModel.delivery_id == inv.delivery_id)
        payments = (await db.execute(select(PaymentModel).where(cond))).scalars().all()
        summary = summarize_payments(inv.total_ttc, [_figure(p) for p in payments])
        rows.append(
            {
                "invoice_id": inv.id,
                "code": inv.code,
                "client_id": inv.client_id,
                "client_name": client_name,
                "total_ttc": summary.total_due,
                "amount_paid": summary.total_paid,
                "outstanding_amount": summary.remaining_amount,
                "due_date": inv.due_date,
                "days_overdue": days_overdue(inv.due_date, today),
            }
        )

    return [
        OutstandingPaymentOut(
            invoice_id=r["invoice_id"],
            invoice_code=r["code"],
            client_id=r["client_id"],
            client_name=r["client_name"],
            total_ttc=float(r["total_ttc"]),
            amount_paid=float(r["amount_paid"]),
            outstanding_amount=float(r["outstanding_amount"]),
            due_date=r["due_date"],
            days_overdue=r["days_overdue"],
        )
        for r in outstanding_rows(rows)
    ]


@router.get("/payments/dashboard/stats", response_model=DashboardStatsOut)
async def payment_dashboard_stats(
    date_from: Optional[date] = Query(None, alias="dateFrom"),
    date_to: Optional[date] = Query(None, alias="dateTo"),
    payment_status: Optional[PaymentStatus] = Query(None, alias="status"),
    client_id: Optional[UUID] = Query(None, alias="clientId"),
    order_id: Optional[UUID] = Query(None, alias="orderId"),
    delivery_id: Optional[UUID] = Query(None, alias="deliveryId"),
    invoice_id: Optional[UUID] = Query(None, alias="invoiceId"),
    db: AsyncSession = Depends(get_async_session),
):
    """
    Payment totals by status and method, plus due / encours / recovery rate on three bases:
    invoiced, ordered and delivered (net of cancellations).

    Date and status filters apply to payments; reference filters apply to both sides.
    Payments whose delivery or invoice no longer exists are skipped and counted.
    """
    stmt = select(PaymentModel)
    if date_from is not None:
        stmt = stmt.where(PaymentModel.payment_date >= date_from)
    if date_to is not None:
        stmt = stmt.where(PaymentModel.payment_date <= date_to)
    if payment_status is not None:
        stmt = stmt.where(PaymentModel.status == payment_status)
    if client_id is not None:
        stmt = stmt.where(PaymentModel.client_id == client_id)
    if order_id is not None:
        stmt = stmt.where(PaymentModel.order_id == order_id)
    if delivery_id is not None:
        stmt = stmt.where(PaymentModel.delivery_id == delivery_id)
    if invoice_id is not None:
        stmt = stmt.where(PaymentModel.invoice_id == invoice_id)
    payments = (await db.execute(stmt)).scalars().all()

    ref_deliveries = {p.delivery_id for p in payments if p.delivery_id is not None}
    ref_invoices = {p.invoice_id for p in payments if p.invoice_id is not None}
    known_deliveries = set()
    if ref_deliveries:
        res = await db.execute(select(DeliveryModel.id).where(DeliveryModel.id.in_(list(ref_deliveries))))
        known_deliveries = set(res.scalars().all())
    known_invoices = set()
    if ref_invoices:
        res = await db.execute(select(InvoiceModel.id).where(InvoiceModel.id.in_(list(ref_invoices))))
        known_invoices = set(res.scalars().all())

    buckets = bucket_payments(
        [_figure(p) for p in payments],
        known_delivery_ids=known_deliveries,
        known_invoice_ids=known_invoices,
    )

    inv_q = select(func.coalesce(func.sum(InvoiceModel.total_ttc), 0)).where(
        InvoiceModel.status != InvoiceStatus.CANCELLED
    )
    ord_q = select(func.coalesce(func.sum(OrderModel.total_ttc), 0)).where(
        OrderModel.status.notin_([OrderStatus.CANCELLED, OrderStatus.DRAFT])
    )
    del_q = select(func.coalesce(func.sum(DeliveryModel.total_ttc), 0)).where(
        DeliveryModel.status != DeliveryStatus.CANCELLED
    )
    if client_id is not None:
        inv_q = inv_q.where(InvoiceModel.client_id == client_id)
        ord_q = ord_q.where(OrderModel.client_id == client_id)
        del_q = del_q.where(DeliveryModel.client_id == client_id)
    if order_id is not None:
        inv_q = inv_q.where(InvoiceModel.order_id == order_id)
        ord_q = ord_q.where(OrderModel.id == order_id)
        del_q = del_q.where(DeliveryModel.order_id == order_id)
    if delivery_id is not None:
        ref = (
            await db.execute(select(DeliveryModel.order_id).where(DeliveryModel.id == delivery_id))
        ).first()
        inv_q = inv_q.where(InvoiceModel.delivery_id == delivery_id)
        ord_q = ord_q.where(OrderModel.id == (ref.order_id if ref else None))
        del_q = del_q.where(DeliveryModel.id == delivery_id)
    if invoice_id is not None:
        ref = (
            await db.execute(
                select(InvoiceModel.order_id, InvoiceModel.delivery_id).where(InvoiceModel.id == invoice_id)
            )
        ).first()
        inv_q = inv_q.where(InvoiceModel.id == invoice_id)
        ord_q = ord_q.where(OrderModel.id == (ref.order_id if ref else None))
        if ref is not None and ref.delivery_id is not None:
            del_q = del_q.where(DeliveryModel.id == ref.delivery_id)
        else:
            # an invoice without a delivery covers its order's deliveries
            del_q = del_q.where(DeliveryModel.order_id == (ref.order_id if ref else None))

    invoiced = (await db.execute(inv_q)).scalar_one()
    ordered = (await db.execute(ord_q)).scalar_one()
    delivered = (await db.execute(del_q)).scalar_one()

    if buckets.skipped_rows:
        logger.warning("Payment dashboard skipped %d row(s) with missing references", buckets.skipped_rows)

    return DashboardStatsOut(
        filters=DashboardFiltersOut(
            date_from=date_from,
            date_to=date_to,
            status=payment_status,
            client_id=client_id,
            order_id=order_id,
            delivery_id=delivery_id,
            invoice_id=invoice_id,
        ),
        payment_count=buckets.payment_count,
        total_paid=float(buckets.total_paid),
        total_refunded=float(buckets.total_refunded),
        total_cancelled=float(buckets.total_cancelled),
        by_status={
            k: StatusBucketOut(count=int(v["count"]), amount=float(v["amount"])) for k, v in buckets.by_status.items()
        },
        by_method={k: float(v) for k, v in buckets.by_method.items()},
        bases=DashboardBasesOut(
            invoiced=_base_out(invoiced, buckets.total_paid),
            ordered=_base_out(ordered, buckets.total_paid),
            delivered_net=_base_out(delivered, buckets.total_paid),
        ),
        skipped_rows=buckets.skipped_rows,
    )
