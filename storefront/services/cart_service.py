"""Cart Service - persistent per-user cart operations."""

import logging
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy.orm import Session, joinedload

from storefront.models import CartItem, Product
from storefront.exceptions import (
    BusinessLogicError, NotFoundError, InsufficientStockError, ProductUnavailableError
)
from storefront.services.pricing_service import get_charges_calculator, to_money
from storefront.utils.serializers import cart_item_to_dict, money

logger = logging.getLogger(__name__)


def get_cart_lines(session: Session, user_id: int) -> List[CartItem]:
    """
    Load the user's cart lines with their products in a single query.
    
    Most recently added lines come first.
    """
    return (
        session.query(CartItem)
        .options(joinedload(CartItem.product))
        .filter(CartItem.user_id == user_id)
        .order_by(CartItem.added_at.desc(), CartItem.id.desc())
        .all()
    )


def _get_active_product(session: Session, product_id: int) -> Product:
    product = session.get(Product, product_id)
    if not product:
        raise NotFoundError('Product not found')
    if not product.active:
        raise ProductUnavailableError(product.name)
    return product


def _validate_quantity(quantity: int) -> int:
    try:
        quantity = int(quantity)
    except (TypeError, ValueError):
        raise BusinessLogicError('Quantity must be a whole number')
    if quantity < 1:
        raise BusinessLogicError('Quantity must be at least 1')
    return quantity


def add_to_cart(session: Session, user_id: int, product_id: int, quantity: int = 1) -> CartItem:
    """Add product to cart or accumulate quantity if already present."""
    quantity = _validate_quantity(quantity)
    product = _get_active_product(session, product_id)
    
    line = session.query(CartItem).filter(
        CartItem.user_id == user_id,
        CartItem.product_id == product_id
    ).first()
    
    new_quantity = quantity + (line.quantity if line else 0)
    if product.stock < new_quantity:
        raise InsufficientStockError(product.name, new_quantity, product.stock)
    
    if line:
        line.quantity = new_quantity
    else:
        line = CartItem(user_id=user_id, product_id=product_id, quantity=new_quantity)
        session.add(line)
    line.price_at_addition = product.effective_price
    
    session.commit()
    logger.debug(f"Cart of user {user_id}: product {product_id} -> qty {new_quantity}")
    return line


def update_cart_item(session: Session, user_id: int, product_id: int, quantity: int) -> CartItem:
    """Set the quantity of an existing cart line."""
    quantity = _validate_quantity(quantity)
    line = session.query(CartItem).filter(
        CartItem.user_id == user_id,
        CartItem.product_id == product_id
    ).first()
    if not line:
        raise NotFoundError('Cart item not found')
    
    product = line.product
    if not product.active:
        raise ProductUnavailableError(product.name)
    if product.stock < quantity:
        raise InsufficientStockError(product.name, quantity, product.stock)
    
    line.quantity = quantity
    line.price_at_addition = product.effective_price
    session.commit()
    return line


def remove_from_cart(session: Session, user_id: int, product_id: int) -> None:
    """Remove a line from the cart."""
    deleted = session.query(CartItem).filter(
        CartItem.user_id == user_id,
        CartItem.product_id == product_id
    ).delete(synchronize_session='fetch')
    if not deleted:
        session.rollback()
        raise NotFoundError('Cart item not found')
    session.commit()


def delete_cart_lines(session: Session, user_id: int) -> int:
    """Delete every line of the user's cart without committing."""
    return session.query(CartItem).filter(
        CartItem.user_id == user_id
    ).delete(synchronize_session='fetch')


def clear_cart(session: Session, user_id: int) -> None:
    """Clear all lines from the cart."""
    delete_cart_lines(session, user_id)
    session.commit()


def count_cart_items(session: Session, user_id: int) -> int:
    return session.query(CartItem).filter(CartItem.user_id == user_id).count()


def calculate_cart_summary(lines: List[CartItem]) -> Dict[str, Any]:
    """Totals for a list of cart lines, using the same rules as checkout."""
    subtotal = Decimal('0.00')
    discount = Decimal('0.00')
    
    for line in lines:
        subtotal += line.subtotal
        product = line.product
        if product.has_discount:
            discount += (product.price - product.discount_price) * line.quantity
    
    subtotal = to_money(subtotal)
    charges = get_charges_calculator()(subtotal, lines)
    total = subtotal + charges.tax + charges.shipping
    
    return {
        'total_items': len(lines),
        'total_quantity': sum(line.quantity for line in lines),
        'subtotal': money(subtotal),
        'discount': money(discount),
        'tax': money(charges.tax),
        'shipping': money(charges.shipping),
        'total': money(total),
        'has_unavailable_items': any(line.has_stock_issue for line in lines),
    }


def get_cart(session: Session, user_id: int) -> Dict[str, Any]:
    """Cart lines with summary and availability messages."""
    lines = get_cart_lines(session, user_id)
    messages = [
        f"'{line.product.name}' has limited stock or is unavailable"
        for line in lines if line.has_stock_issue
    ]
    return {
        'items': [cart_item_to_dict(line) for line in lines],
        'summary': calculate_cart_summary(lines),
        'messages': messages,
    }


def validate_cart(session: Session, user_id: int) -> Dict[str, Any]:
    """
    Pre-checkout validation.
    
    Errors block checkout (inactive product, insufficient stock); warnings
    report price drift since the line was last touched.
    """
    errors = []
    warnings = []
    
    for line in get_cart_lines(session, user_id):
        product = line.product
        if not product.active:
            errors.append(f"Product '{product.name}' is no longer available")
            continue
        if product.stock < line.quantity:
            errors.append(
                f"Insufficient stock for '{product.name}'. "
                f"Available: {product.stock}, Requested: {line.quantity}"
            )
        current_price = product.effective_price
        if current_price != line.price_at_addition:
            warnings.append(
                f"Price changed for '{product.name}'. "
                f"Old: ${money(line.price_at_addition)}, New: ${money(current_price)}"
            )
    
    return {'valid': not errors, 'errors': errors, 'warnings': warnings}
