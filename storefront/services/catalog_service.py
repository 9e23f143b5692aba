"""
Catalog service.

Product listing (cached in Redis), product detail, and admin maintenance.
"""
import logging
import re
import unicodedata
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional

from flask import current_app, has_app_context
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from storefront.models import Product
from storefront.exceptions import NotFoundError, ValidationError
from storefront.services.cache_service import get_cache, invalidate_catalog_cache
from storefront.utils.serializers import product_to_dict, page_to_dict

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = ('name', 'description', 'price', 'discount_price', 'stock', 'active', 'sku', 'image_url')


def generate_slug(name: str) -> str:
    """Generate URL-safe slug from product name."""
    slug = unicodedata.normalize('NFKD', name)
    slug = slug.encode('ascii', 'ignore').decode('ascii')
    slug = slug.lower()
    slug = re.sub(r'[^a-z0-9]+', '-', slug)
    slug = slug.strip('-')
    return slug[:80] or 'product'


def _generate_unique_slug(session: Session, name: str, exclude_id: Optional[int] = None) -> str:
    slug = generate_slug(name)
    base_slug = slug
    counter = 1
    while True:
        query = session.query(Product.id).filter(Product.slug == slug)
        if exclude_id is not None:
            query = query.filter(Product.id != exclude_id)
        if not query.first():
            return slug
        slug = f"{base_slug}-{counter}"
        counter += 1


def _parse_decimal(value: Any) -> Optional[Decimal]:
    if value is None or str(value).strip() == '':
        return None
    try:
        return Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(value)


def _validate_product_data(data: Mapping[str, Any], partial: bool = False,
                           current: Optional[Product] = None) -> Dict[str, Any]:
    """Validate product input and return the cleaned fields."""
    errors = []
    cleaned: Dict[str, Any] = {}

    if 'name' in data or not partial:
        name = (data.get('name') or '').strip()
        if not name:
            errors.append('name: is required')
        elif len(name) > 255:
            errors.append('name: must be at most 255 characters')
        cleaned['name'] = name

    if 'price' in data or not partial:
        try:
            price = _parse_decimal(data.get('price'))
            if price is None:
                errors.append('price: is required')
            elif price <= 0:
                errors.append('price: must be greater than 0')
            cleaned['price'] = price
        except ValueError:
            errors.append('price: must be a valid number')

    if 'discount_price' in data:
        try:
            discount_price = _parse_decimal(data.get('discount_price'))
            if discount_price is not None and discount_price <= 0:
                errors.append('discount_price: must be greater than 0')
            cleaned['discount_price'] = discount_price
        except ValueError:
            errors.append('discount_price: must be a valid number')

    if 'stock' in data or not partial:
        try:
            stock = int(data.get('stock') or 0)
            if stock < 0:
                errors.append('stock: must be greater than or equal to 0')
            cleaned['stock'] = stock
        except (TypeError, ValueError):
            errors.append('stock: must be a whole number')

    for field, max_length in (('sku', 50), ('image_url', 500)):
        if field in data:
            value = (data.get(field) or '').strip() or None
            if value and len(value) > max_length:
                errors.append(f'{field}: must be at most {max_length} characters')
            cleaned[field] = value

    if 'description' in data:
        cleaned['description'] = data.get('description') or None

    if 'active' in data:
        cleaned['active'] = bool(data.get('active'))

    # Discount must stay below the (possibly unchanged) price
    price = cleaned.get('price', current.price if current else None)
    discount_price = cleaned.get('discount_price', current.discount_price if current else None)
    if not errors and price is not None and discount_price is not None and discount_price >= price:
        errors.append('discount_price: must be lower than price')

    if errors:
        raise ValidationError(errors)
    return cleaned


def list_products(session: Session, page: int = 0, size: int = 10, search: Optional[str] = None) -> Dict[str, Any]:
    """Page of active products, newest first. Served from cache when possible."""
    search = (search or '').strip()

    def load():
        query = session.query(Product).filter(Product.active.is_(True))
        if search:
            pattern = f'%{search.lower()}%'
            query = query.filter(or_(
                func.lower(Product.name).like(pattern),
                func.lower(Product.sku).like(pattern)
            ))
        total = query.count()
        products = (
            query.order_by(Product.created_at.desc(), Product.id.desc())
            .offset(page * size)
            .limit(size)
            .all()
        )
        return page_to_dict([product_to_dict(p) for p in products], page, size, total)

    ttl = current_app.config.get('CACHE_PRODUCTS_TTL', 60) if has_app_context() else 60
    try:
        cache = get_cache()
    except RuntimeError:
        return load()
    return cache.memoize('products', f'list:{page}:{size}:{search.lower()}', load, ttl=ttl)


def get_product(session: Session, product_id: int, include_inactive: bool = False) -> Product:
    """Product detail; each read counts as a view."""
    product = session.get(Product, product_id)
    if not product or (not product.active and not include_inactive):
        raise NotFoundError('Product not found')

    try:
        product.increment_view_count()
        session.commit()
    except Exception:
        session.rollback()
        raise
    return product


def create_product(session: Session, data: Mapping[str, Any]) -> Product:
    cleaned = _validate_product_data(data)
    try:
        product = Product(**cleaned)
        product.slug = _generate_unique_slug(session, cleaned['name'])
        if product.active is None:
            product.active = True
        session.add(product)
        session.commit()
    except Exception:
        session.rollback()
        raise

    invalidate_catalog_cache()
    logger.info(f"Product {product.id} '{product.name}' created with stock {product.stock}")
    return product


def update_product(session: Session, product_id: int, data: Mapping[str, Any]) -> Product:
    product = session.get(Product, product_id)
    if not product:
        raise NotFoundError('Product not found')

    cleaned = _validate_product_data(data, partial=True, current=product)
    try:
        for field in PRODUCT_FIELDS:
            if field in cleaned:
                setattr(product, field, cleaned[field])
        if 'name' in cleaned:
            product.slug = _generate_unique_slug(session, cleaned['name'], exclude_id=product.id)
        session.commit()
    except Exception:
        session.rollback()
        raise

    invalidate_catalog_cache()
    logger.info(f"Product {product.id} updated: {', '.join(sorted(cleaned))}")
    return product


def list_low_stock_products(session: Session, threshold: Optional[int] = None) -> List[Product]:
    """Active products at or below the low stock threshold."""
    if threshold is None:
        threshold = current_app.config.get('LOW_STOCK_THRESHOLD', 10) if has_app_context() else 10
    return (
        session.query(Product)
        .filter(Product.active.is_(True), Product.stock <= threshold)
        .order_by(Product.stock, Product.id)
        .all()
    )
