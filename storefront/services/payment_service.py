"""
Payment service.

Records payment attempts against orders and feeds their outcome into the
order lifecycle. Every write locks the order row first (then the payment),
and order status changes go through the shared helpers in order_service,
so a payment confirmation can never race a cancellation of the same order.

No payment gateway is called: the processor's verdict arrives through
confirm_payment / fail_payment.
"""
import logging
import re
import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy.orm import Session, joinedload

from storefront.models import Order, Payment, PaymentStatus
from storefront.exceptions import (
    NotFoundError, ValidationError, InvalidOperationError, AccessDeniedError
)
from storefront.services import order_service
from storefront.blueprints.metrics import payment_events_total

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = 'USD'
CURRENCY_RE = re.compile(r'^[A-Z]{3}$')

# (field, max length) accepted from the processor on confirmation
CONFIRMATION_FIELDS = (
    ('card_last4', 4),
    ('card_brand', 30),
    ('receipt_url', 500),
)


def create_payment(
    session: Session,
    user_id: int,
    order_id: int,
    payment_method: Optional[str] = None,
    currency: Optional[str] = None,
) -> Payment:
    """
    Open a PENDING payment for one of the user's own orders.

    The amount is the order total at this moment. Cancelled, refunded and
    already paid orders cannot take a new payment.
    """
    currency = _parse_currency(currency)
    method = order_service.parse_payment_method(payment_method)

    try:
        order = order_service.lock_order(session, order_id)
        order_service.ensure_access(order, user_id)
        if order.is_terminal():
            raise InvalidOperationError(
                f'Cannot pay order. Current status: {order.status.value}',
                order.status.value
            )
        if order.payment_status == PaymentStatus.PAID:
            raise InvalidOperationError('Order is already paid', order.status.value)

        payment = Payment(
            order=order,
            user_id=order.user_id,
            transaction_id=_new_transaction_id(),
            amount=order.total_amount,
            currency=currency,
            method=method or order.payment_method,
            status=PaymentStatus.PENDING,
        )
        session.add(payment)
        session.commit()
    except Exception:
        session.rollback()
        raise

    payment_events_total.labels(event='created').inc()
    logger.info(
        f"Payment {payment.transaction_id} opened for order {order.order_number}: "
        f"{payment.amount} {payment.currency}"
    )
    return payment


def confirm_payment(
    session: Session,
    user_id: int,
    payment_id: int,
    details: Optional[Mapping[str, Any]] = None,
    is_admin: bool = False,
) -> Payment:
    """
    Mark a PENDING payment PAID.

    The order records the payment (transaction id, method) and is confirmed
    through order_service.apply_payment_status, the same transition the
    admin payment-status endpoint uses.
    """
    confirmation = _validate_confirmation(details)

    try:
        order, payment = _lock_payment(session, payment_id, user_id, is_admin)
        _ensure_pending(payment)
        if order.is_terminal():
            raise InvalidOperationError(
                f'Cannot confirm payment. Order status: {order.status.value}',
                order.status.value
            )
        if order.payment_status == PaymentStatus.PAID:
            # another attempt already settled this order
            raise InvalidOperationError('Order is already paid', order.status.value)

        payment.status = PaymentStatus.PAID
        payment.completed_at = _now()
        for field, value in confirmation.items():
            setattr(payment, field, value)

        order.payment_transaction_id = payment.transaction_id
        if payment.method is not None:
            order.payment_method = payment.method
        order_service.apply_payment_status(order, PaymentStatus.PAID)
        session.commit()
    except Exception:
        session.rollback()
        raise

    payment_events_total.labels(event='confirmed').inc()
    logger.info(
        f"Payment {payment.transaction_id} confirmed; order {order.order_number} "
        f"is {order.status.value}"
    )
    return payment


def fail_payment(
    session: Session,
    user_id: int,
    payment_id: int,
    failure_message: Optional[str] = None,
    is_admin: bool = False,
) -> Payment:
    """Mark a PENDING payment FAILED. An unpaid order shows the failure too."""
    if failure_message is not None and not isinstance(failure_message, str):
        raise ValidationError(['failure_message: must be a string'])

    try:
        order, payment = _lock_payment(session, payment_id, user_id, is_admin)
        _ensure_pending(payment)

        payment.status = PaymentStatus.FAILED
        payment.failure_message = (failure_message or 'Payment failed')[:500]
        payment.completed_at = _now()

        if order.payment_status == PaymentStatus.PENDING and not order.is_terminal():
            order_service.apply_payment_status(order, PaymentStatus.FAILED)
        session.commit()
    except Exception:
        session.rollback()
        raise

    payment_events_total.labels(event='failed').inc()
    logger.warning(f"Payment {payment.transaction_id} failed: {payment.failure_message}")
    return payment


def refund_payment(session: Session, payment_id: int, amount: Any = None) -> Payment:
    """
    Refund a PAID payment (admin).

    The amount defaults to the full payment and may not exceed it. The order
    becomes REFUNDED through order_service.apply_refund; an order that is
    already terminal keeps its status.
    """
    refund_amount = _parse_refund_amount(amount)

    try:
        order, payment = _lock_payment(session, payment_id, None, is_admin=True)
        if payment.status != PaymentStatus.PAID:
            raise InvalidOperationError(
                'Only paid payments can be refunded',
                payment.status.value
            )
        if refund_amount is None:
            refund_amount = payment.amount
        if refund_amount > payment.amount:
            raise ValidationError([
                f'amount: cannot exceed the payment amount {payment.amount}'
            ])

        payment.status = PaymentStatus.REFUNDED
        payment.refund_amount = refund_amount

        if not order.is_terminal():
            order_service.apply_refund(order)
        session.commit()
    except Exception:
        session.rollback()
        raise

    payment_events_total.labels(event='refunded').inc()
    logger.info(
        f"Payment {payment.transaction_id} refunded {payment.refund_amount}; "
        f"order {order.order_number} is {order.status.value}"
    )
    return payment


def get_payment(session: Session, user_id: int, payment_id: int, is_admin: bool = False) -> Payment:
    payment = session.query(Payment).options(joinedload(Payment.order)).filter(
        Payment.id == payment_id
    ).first()
    if not payment:
        raise NotFoundError('Payment not found')
    if not is_admin and payment.user_id != user_id:
        raise AccessDeniedError('Access denied')
    return payment


def get_payment_history(
    session: Session,
    user_id: int,
    page: int = 0,
    size: int = 10,
    status: Optional[PaymentStatus] = None,
) -> Tuple[List[Payment], int]:
    """Page of the user's payments, newest first, optionally only one status."""
    query = session.query(Payment).filter(Payment.user_id == user_id)
    if status is not None:
        query = query.filter(Payment.status == status)

    total = query.count()
    payments = (
        query.options(joinedload(Payment.order))
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .offset(page * size)
        .limit(size)
        .all()
    )
    return payments, total


# =====================================================
# PRIVATE HELPERS
# =====================================================

def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_transaction_id() -> str:
    return f'PAY-{uuid.uuid4().hex}'


def _lock_payment(
    session: Session, payment_id: int, user_id: Optional[int], is_admin: bool
) -> Tuple[Order, Payment]:
    """Lock the owning order, then the payment row."""
    order_id = session.query(Payment.order_id).filter(Payment.id == payment_id).scalar()
    if order_id is None:
        raise NotFoundError('Payment not found')

    order = order_service.lock_order(session, order_id)
    order_service.ensure_access(order, user_id, is_admin)
    payment = (
        session.query(Payment)
        .filter(Payment.id == payment_id)
        .with_for_update()
        .populate_existing()
        .one()
    )
    return order, payment


def _ensure_pending(payment: Payment) -> None:
    if payment.status != PaymentStatus.PENDING:
        raise InvalidOperationError(
            f'Payment is already {payment.status.value}',
            payment.status.value
        )


def _parse_currency(value: Optional[str]) -> str:
    if value is None or value == '':
        return DEFAULT_CURRENCY
    if not isinstance(value, str) or not CURRENCY_RE.match(value.strip().upper()):
        raise ValidationError(['currency: must be a 3-letter ISO code'])
    return value.strip().upper()


def _parse_refund_amount(value: Any) -> Optional[Decimal]:
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise ValidationError(['amount: must be a valid number'])
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(['amount: must be a valid number'])
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(['amount: must be greater than 0'])
    return amount.quantize(Decimal('0.01'))


def _validate_confirmation(details: Optional[Mapping[str, Any]]) -> Dict[str, Optional[str]]:
    if details is None:
        details = {}
    if not isinstance(details, Mapping):
        raise ValidationError(['details: must be an object'])
    errors = []
    cleaned = {}
    for field, max_length in CONFIRMATION_FIELDS:
        value = details.get(field)
        if value is None:
            continue
        if not isinstance(value, str):
            errors.append(f'{field}: must be a string')
        elif len(value.strip()) > max_length:
            errors.append(f'{field}: must be at most {max_length} characters')
        else:
            cleaned[field] = value.strip() or None
    if errors:
        raise ValidationError(errors)
    return cleaned
