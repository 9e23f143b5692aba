"""
Order service with transactional logic.
Handles order placement from the cart, stock reservation, and the order lifecycle.

Every mutating operation runs as one transaction on the request session:
either all writes commit or the session is rolled back before the error
propagates. Product rows are read with SELECT ... FOR UPDATE in id order,
and Product's version column turns any remaining concurrent write into a
StaleDataError, which is retried a few times before giving up.
"""
import logging
import random
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from flask import current_app, has_app_context
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError
from tenacity import Retrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from storefront.models import (
    AppUser, CartItem, Product, Order, OrderItem,
    OrderStatus, PaymentStatus, PaymentMethod
)
from storefront.exceptions import (
    NotFoundError, EmptyCartError, ValidationError, InvalidArgumentError,
    InvalidOperationError, AccessDeniedError, ConcurrentModificationError,
    InsufficientStockError, ProductUnavailableError
)
from storefront.services.cart_service import get_cart_lines, delete_cart_lines
from storefront.services.pricing_service import OrderCharges, get_charges_calculator, to_money
from storefront.services.cache_service import invalidate_catalog_cache
from storefront.blueprints.metrics import (
    orders_created_total, orders_cancelled_total,
    order_stock_rejections_total, order_conflict_retries_total
)

logger = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 20
RECENT_ORDERS_LIMIT = 5

# (field, required, max length)
SHIPPING_FIELDS = (
    ('name', True, 100),
    ('email', True, 255),
    ('phone', True, 20),
    ('address_line1', True, 255),
    ('address_line2', False, 255),
    ('city', True, 100),
    ('state', False, 100),
    ('postal_code', True, 20),
    ('country', True, 100),
)


class OrderNumberCollision(Exception):
    """Raised when a generated order number is already taken."""


RETRYABLE_CONFLICTS = (StaleDataError, OrderNumberCollision)

ChargesCalculator = Callable[[Decimal, List[CartItem]], OrderCharges]


# =====================================================
# ORDER PLACEMENT
# =====================================================

def create_order(
    session: Session,
    user_id: int,
    shipping: Mapping[str, Any],
    payment_method: Optional[str] = None,
    payment_transaction_id: Optional[str] = None,
    order_notes: Optional[str] = None,
    charges: Optional[ChargesCalculator] = None,
) -> Order:
    """
    Turn the user's cart into an order.

    Steps (single transaction):
    1. Load cart lines with their products
    2. Lock the referenced product rows
    3. Check every line (active + enough stock); abort before any write
    4. Persist the order header, then its lines
    5. Decrement stock and increment sold count per line
    6. Clear the cart and commit

    Raises:
        NotFoundError: unknown user
        ValidationError: invalid shipping data
        EmptyCartError: nothing to order
        ProductUnavailableError / InsufficientStockError: a line failed the stock check
        ConcurrentModificationError: conflicts persisted after all retries
    """
    if session.get(AppUser, user_id) is None:
        raise NotFoundError('User not found')

    shipping_snapshot = validate_shipping(shipping)
    method = parse_payment_method(payment_method)
    calculator = charges or get_charges_calculator()

    errors = []
    for field, value, max_length in (
        ('order_notes', order_notes, 1000),
        ('payment_transaction_id', payment_transaction_id, 255),
    ):
        if value is None:
            continue
        if not isinstance(value, str):
            errors.append(f'{field}: must be a string')
        elif len(value) > max_length:
            errors.append(f'{field}: must be at most {max_length} characters')
    if errors:
        raise ValidationError(errors)

    def place():
        return _place_order(
            session, user_id, shipping_snapshot, method,
            payment_transaction_id, order_notes, calculator
        )

    order = _with_conflict_retry(place, f'placing order for user {user_id}')

    orders_created_total.inc()
    invalidate_catalog_cache()
    logger.info(
        f"Order {order.order_number} created for user {user_id}: "
        f"{len(order.items)} lines, total {order.total_amount}"
    )
    return order


def _place_order(
    session: Session,
    user_id: int,
    shipping_snapshot: Dict[str, Optional[str]],
    method: Optional[PaymentMethod],
    payment_transaction_id: Optional[str],
    order_notes: Optional[str],
    calculator: ChargesCalculator,
) -> Order:
    """One placement attempt. Rolls back on any failure."""
    try:
        lines = get_cart_lines(session, user_id)
        if not lines:
            raise EmptyCartError()

        products = _lock_products(session, [line.product_id for line in lines])
        check_stock(lines, products)

        order = _materialize_order(
            session, user_id, lines, products, shipping_snapshot,
            method, payment_transaction_id, order_notes, calculator
        )

        delete_cart_lines(session, user_id)
        session.commit()
        return order

    except IntegrityError as e:
        session.rollback()
        if 'order_number' in str(e.orig):
            raise OrderNumberCollision(str(e.orig)) from e
        raise
    except Exception:
        session.rollback()
        raise


def check_stock(lines: Iterable[CartItem], products: Mapping[int, Product]) -> None:
    """
    All-or-nothing stock reservation check.

    Fails on the first line whose product is missing, inactive, or short on
    stock. Nothing has been written when this raises.
    """
    for line in lines:
        product = products.get(line.product_id)
        if product is None:
            raise NotFoundError(f'Product {line.product_id} not found')
        if not product.active:
            order_stock_rejections_total.labels(reason='unavailable').inc()
            raise ProductUnavailableError(product.name)
        if product.stock < line.quantity:
            order_stock_rejections_total.labels(reason='insufficient_stock').inc()
            raise InsufficientStockError(product.name, line.quantity, product.stock)


def _materialize_order(
    session: Session,
    user_id: int,
    lines: List[CartItem],
    products: Mapping[int, Product],
    shipping_snapshot: Dict[str, Optional[str]],
    method: Optional[PaymentMethod],
    payment_transaction_id: Optional[str],
    order_notes: Optional[str],
    calculator: ChargesCalculator,
) -> Order:
    """Compute totals, persist header and lines, and consume stock."""
    subtotal = Decimal('0.00')
    discount = Decimal('0.00')
    line_data = []

    for line in lines:
        product = products[line.product_id]
        line_subtotal = to_money(line.price_at_addition * line.quantity)
        unit_discount = Decimal('0.00')
        if product.has_discount:
            unit_discount = product.price - product.discount_price
        line_discount = to_money(unit_discount * line.quantity)

        subtotal += line_subtotal
        discount += line_discount
        line_data.append({
            'product': product,
            'quantity': line.quantity,
            # unit_price * quantity - discount_amount == subtotal
            'unit_price': to_money(line.price_at_addition + unit_discount),
            'discount_amount': line_discount,
            'subtotal': line_subtotal,
        })

    order_charges = calculator(subtotal, lines)
    tax = to_money(order_charges.tax)
    shipping_cost = to_money(order_charges.shipping)

    order = Order(
        order_number=generate_order_number(session),
        user_id=user_id,
        status=OrderStatus.PENDING,
        payment_status=PaymentStatus.PENDING,
        payment_method=method,
        payment_transaction_id=payment_transaction_id,
        subtotal=subtotal,
        discount=discount,
        tax=tax,
        shipping_cost=shipping_cost,
        total_amount=subtotal + tax + shipping_cost,
        order_notes=order_notes,
        **{f'shipping_{field}': value for field, value in shipping_snapshot.items()}
    )
    session.add(order)
    session.flush()  # header first, to obtain its id

    for data in line_data:
        product = data['product']
        order.items.append(OrderItem(
            product_id=product.id,
            product_name=product.name,
            product_sku=product.sku,
            product_image=product.image_url,
            quantity=data['quantity'],
            unit_price=data['unit_price'],
            discount_amount=data['discount_amount'],
            subtotal=data['subtotal'],
        ))
        product.decrement_stock(data['quantity'])

    session.flush()
    return order


def generate_order_number(session: Session, now: Optional[datetime] = None) -> str:
    """
    ORD-<yyyyMMddHHmmss>-<4 random digits>, re-rolling the suffix while taken.

    A concurrent transaction can still claim the same number before commit;
    the unique constraint catches that and the placement is retried.
    """
    prefix = current_app.config.get('ORDER_NUMBER_PREFIX', 'ORD') if has_app_context() else 'ORD'
    timestamp = (now or datetime.now()).strftime('%Y%m%d%H%M%S')

    for _ in range(ORDER_NUMBER_ATTEMPTS):
        candidate = f"{prefix}-{timestamp}-{random.randint(0, 9999):04d}"
        exists = session.query(Order.id).filter(Order.order_number == candidate).first()
        if not exists:
            return candidate

    raise OrderNumberCollision(f'No free order number for timestamp {timestamp}')


def validate_shipping(shipping: Optional[Mapping[str, Any]]) -> Dict[str, Optional[str]]:
    """Validate shipping fields and return the normalized snapshot."""
    if shipping is None:
        shipping = {}
    if not isinstance(shipping, Mapping):
        raise ValidationError(['shipping_address: must be an object'])
    errors = []
    snapshot = {}

    for field, required, max_length in SHIPPING_FIELDS:
        value = shipping.get(field)
        value = str(value).strip() if value is not None else ''
        if required and not value:
            errors.append(f'{field}: is required')
        elif len(value) > max_length:
            errors.append(f'{field}: must be at most {max_length} characters')
        snapshot[field] = value or None

    email = snapshot.get('email')
    if email and '@' not in email:
        errors.append('email: invalid email format')

    if errors:
        raise ValidationError(errors)
    return snapshot


def parse_payment_method(value: Optional[str]) -> Optional[PaymentMethod]:
    """Unknown methods fall back to cash on delivery."""
    if value is None or str(value).strip() == '':
        return None
    try:
        return PaymentMethod(str(value).strip().upper())
    except ValueError:
        return PaymentMethod.CASH_ON_DELIVERY


# =====================================================
# QUERIES
# =====================================================

def ensure_access(order: Order, user_id: int, is_admin: bool = False) -> None:
    if not is_admin and order.user_id != user_id:
        raise AccessDeniedError('Access denied')


def get_order(session: Session, user_id: int, order_id: int, is_admin: bool = False) -> Order:
    order = session.query(Order).options(selectinload(Order.items)).filter(
        Order.id == order_id
    ).first()
    if not order:
        raise NotFoundError('Order not found')
    ensure_access(order, user_id, is_admin)
    return order


def get_order_by_number(session: Session, user_id: int, order_number: str, is_admin: bool = False) -> Order:
    order = session.query(Order).options(selectinload(Order.items)).filter(
        Order.order_number == order_number
    ).first()
    if not order:
        raise NotFoundError('Order not found')
    ensure_access(order, user_id, is_admin)
    return order


def get_order_history(session: Session, user_id: int, page: int = 0, size: int = 10) -> Tuple[List[Order], int]:
    """Page of the user's orders, newest first, plus the total count."""
    query = session.query(Order).filter(Order.user_id == user_id)
    total = query.count()
    orders = (
        query.options(selectinload(Order.items))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset(page * size)
        .limit(size)
        .all()
    )
    return orders, total


def get_recent_orders(session: Session, user_id: int, limit: int = RECENT_ORDERS_LIMIT) -> List[Order]:
    orders, _ = get_order_history(session, user_id, page=0, size=limit)
    return orders


def list_orders(
    session: Session,
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    page: int = 0,
    size: int = 10,
) -> Tuple[List[Order], int]:
    """Admin listing across users, optionally filtered by status."""
    query = session.query(Order)
    if status:
        query = query.filter(Order.status == parse_order_status(status))
    if payment_status:
        query = query.filter(Order.payment_status == parse_payment_status(payment_status))

    total = query.count()
    orders = (
        query.options(selectinload(Order.items))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset(page * size)
        .limit(size)
        .all()
    )
    return orders, total


def get_user_order_statistics(session: Session, user_id: int) -> Dict[str, Any]:
    """Order count, amount spent on paid orders, and average order value."""
    total_orders = session.query(func.count(Order.id)).filter(Order.user_id == user_id).scalar() or 0
    total_spent = session.query(func.sum(Order.total_amount)).filter(
        Order.user_id == user_id,
        Order.payment_status == PaymentStatus.PAID
    ).scalar()
    total_spent = to_money(total_spent or 0)
    average = to_money(total_spent / total_orders) if total_orders else to_money(0)

    return {
        'total_orders': total_orders,
        'total_spent': total_spent,
        'average_order_value': average,
    }


# =====================================================
# LIFECYCLE
# =====================================================

def cancel_order(
    session: Session,
    user_id: int,
    order_id: int,
    reason: Optional[str] = None,
    is_admin: bool = False,
) -> Order:
    """
    Cancel a PENDING or CONFIRMED order and give its stock back.

    Restores exactly the stock and sold count consumed at placement. A paid
    order is marked REFUNDED on the payment side.
    """
    if not isinstance(reason, str) or not reason.strip():
        reason = 'Cancelled by user'

    def cancel():
        try:
            order = lock_order(session, order_id)
            ensure_access(order, user_id, is_admin)
            if not order.can_be_cancelled():
                raise InvalidOperationError(
                    f'Order cannot be cancelled. Current status: {order.status.value}',
                    order.status.value
                )
            _apply_cancellation(session, order, reason)
            session.commit()
            return order
        except Exception:
            session.rollback()
            raise

    order = _with_conflict_retry(cancel, f'cancelling order {order_id}')

    orders_cancelled_total.inc()
    invalidate_catalog_cache()
    logger.info(f"Order {order.order_number} cancelled by user {user_id}: {order.cancellation_reason}")
    return order


def update_order_status(session: Session, order_id: int, status: str) -> Order:
    """
    Admin status change.

    Terminal orders (CANCELLED, REFUNDED) cannot change. Moving to CANCELLED
    goes through the same stock restoration as a user cancellation; moving
    to DELIVERED stamps delivered_at.
    """
    new_status = parse_order_status(status)

    def update():
        try:
            order = lock_order(session, order_id)
            if order.is_terminal():
                raise InvalidOperationError(
                    f'Order status cannot be changed. Current status: {order.status.value}',
                    order.status.value
                )
            old_status = order.status

            if new_status == OrderStatus.CANCELLED:
                _apply_cancellation(session, order, 'Cancelled by administrator')
            elif new_status == OrderStatus.REFUNDED:
                apply_refund(order)
            else:
                order.status = new_status
                if new_status == OrderStatus.DELIVERED:
                    order.delivered_at = _now()

            session.commit()
            return order, old_status
        except Exception:
            session.rollback()
            raise

    order, old_status = _with_conflict_retry(update, f'updating status of order {order_id}')

    if new_status == OrderStatus.CANCELLED:
        orders_cancelled_total.inc()
        invalidate_catalog_cache()
    logger.info(f"Order {order.order_number} status {old_status.value} -> {order.status.value}")
    return order


def update_payment_status(session: Session, order_id: int, payment_status: str) -> Order:
    """
    Admin payment status change.

    A payment that becomes PAID confirms the order only while it is PENDING;
    unlike a plain "any status -> CONFIRMED" rule, a late payment never moves
    a PROCESSING, SHIPPED or DELIVERED order back.
    """
    new_payment_status = parse_payment_status(payment_status)

    try:
        order = lock_order(session, order_id)
        apply_payment_status(order, new_payment_status)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(
        f"Order {order.order_number} payment status -> {order.payment_status.value} "
        f"(status {order.status.value})"
    )
    return order


def add_tracking_number(session: Session, order_id: int, tracking_number: Optional[str]) -> Order:
    """
    Attach a tracking number; the order becomes SHIPPED.

    Not every status may ship: DELIVERED, CANCELLED and REFUNDED orders
    reject tracking with InvalidOperationError instead of moving to SHIPPED.
    """
    if tracking_number is not None and not isinstance(tracking_number, str):
        raise InvalidArgumentError('Tracking number must be a string')
    tracking_number = (tracking_number or '').strip()
    if not tracking_number:
        raise InvalidArgumentError('Tracking number is required')
    if len(tracking_number) > 255:
        raise InvalidArgumentError('Tracking number must be at most 255 characters')

    try:
        order = lock_order(session, order_id)
        if order.is_terminal() or order.status == OrderStatus.DELIVERED:
            raise InvalidOperationError(
                f'Cannot ship order. Current status: {order.status.value}',
                order.status.value
            )
        order.tracking_number = tracking_number
        order.status = OrderStatus.SHIPPED
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"Order {order.order_number} shipped with tracking {tracking_number}")
    return order


def apply_payment_status(order: Order, payment_status: PaymentStatus) -> bool:
    """
    Record a payment outcome on an order locked by the caller. Does not commit.

    Returns True when the order became PAID with this call.
    """
    newly_paid = (
        payment_status == PaymentStatus.PAID
        and order.payment_status != PaymentStatus.PAID
    )
    order.payment_status = payment_status
    if newly_paid and order.status == OrderStatus.PENDING:
        order.status = OrderStatus.CONFIRMED
    return newly_paid


def apply_refund(order: Order) -> None:
    """
    Move an order locked by the caller to REFUNDED. Does not commit.

    Settled payments are refunded in full. Stock is not restored: refunded
    goods are not assumed to be back on the shelf.
    """
    order.status = OrderStatus.REFUNDED
    if order.payment_status == PaymentStatus.PAID:
        order.payment_status = PaymentStatus.REFUNDED
    _refund_settled_payments(order)


def parse_order_status(value: Optional[str]) -> OrderStatus:
    try:
        return OrderStatus(str(value).strip().upper())
    except ValueError:
        raise InvalidArgumentError(f'Invalid order status: {value}')


def parse_payment_status(value: Optional[str]) -> PaymentStatus:
    try:
        return PaymentStatus(str(value).strip().upper())
    except ValueError:
        raise InvalidArgumentError(f'Invalid payment status: {value}')


# =====================================================
# PRIVATE HELPERS
# =====================================================

def _now() -> datetime:
    return datetime.now(timezone.utc)


def _lock_products(session: Session, product_ids: Iterable[int]) -> Dict[int, Product]:
    """Lock product rows FOR UPDATE (in id order) and reload their current values."""
    ids = sorted(set(product_ids))
    if not ids:
        return {}
    products = (
        session.query(Product)
        .filter(Product.id.in_(ids))
        .order_by(Product.id)
        .with_for_update()
        .populate_existing()
        .all()
    )
    return {product.id: product for product in products}


def lock_order(session: Session, order_id: int) -> Order:
    order = (
        session.query(Order)
        .filter(Order.id == order_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not order:
        raise NotFoundError('Order not found')
    return order


def _apply_cancellation(session: Session, order: Order, reason: str) -> None:
    """Restore stock for every line and mark the order cancelled."""
    products = _lock_products(session, [item.product_id for item in order.items])
    for item in order.items:
        products[item.product_id].restore_stock(item.quantity)

    order.status = OrderStatus.CANCELLED
    order.cancelled_at = _now()
    order.cancellation_reason = reason[:500]
    if order.payment_status == PaymentStatus.PAID:
        order.payment_status = PaymentStatus.REFUNDED
    _refund_settled_payments(order)


def _refund_settled_payments(order: Order) -> None:
    for payment in order.payments:
        if payment.status == PaymentStatus.PAID:
            payment.status = PaymentStatus.REFUNDED
            payment.refund_amount = payment.amount


def _conflict_attempts() -> int:
    if has_app_context():
        return max(int(current_app.config.get('ORDER_CONFLICT_RETRIES', 3)), 1)
    return 3


def _log_conflict_retry(retry_state) -> None:
    order_conflict_retries_total.inc()
    logger.warning(
        f"Write conflict ({type(retry_state.outcome.exception()).__name__}), "
        f"retrying attempt {retry_state.attempt_number + 1}"
    )


def _with_conflict_retry(operation: Callable[[], Any], description: str) -> Any:
    """Run a transactional operation, retrying on optimistic-lock or order-number conflicts."""
    try:
        for attempt in Retrying(
            stop=stop_after_attempt(_conflict_attempts()),
            wait=wait_exponential(multiplier=0.05, max=1),
            retry=retry_if_exception_type(RETRYABLE_CONFLICTS),
            before_sleep=_log_conflict_retry,
            reraise=True,
        ):
            with attempt:
                return operation()
    except RETRYABLE_CONFLICTS as e:
        logger.error(f"Giving up {description} after repeated conflicts: {e}")
        raise ConcurrentModificationError() from e
