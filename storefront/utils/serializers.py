"""JSON representations of models returned by the API."""
from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime, date
from typing import Any, Dict, Optional, Union


def money(value: Union[int, float, Decimal, str, None]) -> Optional[str]:
    """
    Render an amount as a two-place decimal string.
    
    Examples:
        money(Decimal('35')) -> "35.00"
        money(None) -> None
    """
    if value is None:
        return None
    return str(Decimal(str(value)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))


def iso(value: Optional[Union[datetime, date]]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def enum_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    return getattr(value, 'value', value)


def user_to_dict(user) -> Dict[str, Any]:
    return {
        'id': user.id,
        'email': user.email,
        'full_name': user.full_name,
        'phone': user.phone,
        'role': enum_value(user.role),
    }


def product_to_dict(product) -> Dict[str, Any]:
    return {
        'id': product.id,
        'name': product.name,
        'slug': product.slug,
        'sku': product.sku,
        'description': product.description,
        'image_url': product.image_url,
        'price': money(product.price),
        'discount_price': money(product.discount_price),
        'effective_price': money(product.effective_price),
        'discount_percentage': product.discount_percentage,
        'stock': product.stock,
        'in_stock': product.in_stock,
        'active': product.active,
        'sold_count': product.sold_count,
        'view_count': product.view_count,
    }


def cart_item_to_dict(item) -> Dict[str, Any]:
    product = item.product
    if not product.active:
        availability = 'Product is no longer available'
    elif product.stock < item.quantity:
        availability = f'Only {product.stock} available'
    else:
        availability = 'In stock'
    
    return {
        'id': item.id,
        'product_id': product.id,
        'product_name': product.name,
        'product_slug': product.slug,
        'product_image': product.image_url,
        'price': money(product.price),
        'discount_price': money(product.discount_price),
        'price_at_addition': money(item.price_at_addition),
        'quantity': item.quantity,
        'subtotal': money(item.subtotal),
        'available_stock': product.stock,
        'in_stock': product.in_stock,
        'product_active': product.active,
        'available': item.is_available,
        'availability_message': availability,
        'added_at': iso(item.added_at),
    }


def order_item_to_dict(item) -> Dict[str, Any]:
    return {
        'id': item.id,
        'product_id': item.product_id,
        'product_name': item.product_name,
        'product_sku': item.product_sku,
        'product_image': item.product_image,
        'quantity': item.quantity,
        'unit_price': money(item.unit_price),
        'discount_amount': money(item.discount_amount),
        'subtotal': money(item.subtotal),
    }


def order_to_dict(order) -> Dict[str, Any]:
    return {
        'id': order.id,
        'order_number': order.order_number,
        'status': enum_value(order.status),
        'payment_status': enum_value(order.payment_status),
        'payment_method': enum_value(order.payment_method),
        'subtotal': money(order.subtotal),
        'discount': money(order.discount),
        'tax': money(order.tax),
        'shipping_cost': money(order.shipping_cost),
        'total_amount': money(order.total_amount),
        'shipping_address': {
            'name': order.shipping_name,
            'email': order.shipping_email,
            'phone': order.shipping_phone,
            'address_line1': order.shipping_address_line1,
            'address_line2': order.shipping_address_line2,
            'city': order.shipping_city,
            'state': order.shipping_state,
            'postal_code': order.shipping_postal_code,
            'country': order.shipping_country,
        },
        'items': [order_item_to_dict(item) for item in order.items],
        'order_notes': order.order_notes,
        'tracking_number': order.tracking_number,
        'cancellation_reason': order.cancellation_reason,
        'created_at': iso(order.created_at),
        'updated_at': iso(order.updated_at),
        'delivered_at': iso(order.delivered_at),
        'cancelled_at': iso(order.cancelled_at),
    }


def payment_to_dict(payment) -> Dict[str, Any]:
    return {
        'id': payment.id,
        'order_id': payment.order_id,
        'order_number': payment.order.order_number if payment.order else None,
        'transaction_id': payment.transaction_id,
        'amount': money(payment.amount),
        'currency': payment.currency,
        'status': enum_value(payment.status),
        'method': enum_value(payment.method),
        'card_last4': payment.card_last4,
        'card_brand': payment.card_brand,
        'receipt_url': payment.receipt_url,
        'failure_message': payment.failure_message,
        'refunded': payment.refunded,
        'refund_amount': money(payment.refund_amount),
        'created_at': iso(payment.created_at),
        'completed_at': iso(payment.completed_at),
    }


def page_to_dict(items, page: int, size: int, total: int) -> Dict[str, Any]:
    pages = (total + size - 1) // size if size else 0
    return {
        'items': items,
        'page': page,
        'size': size,
        'total': total,
        'pages': pages,
    }
