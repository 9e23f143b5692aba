"""
Integration tests for the persistent cart.
"""

import pytest
from decimal import Decimal

from storefront.exceptions import (
    BusinessLogicError, InsufficientStockError, NotFoundError, ProductUnavailableError
)
from storefront.models import CartItem
from storefront.services import cart_service


class TestAddToCart:
    
    def test_add_captures_effective_price(self, session, user1, product_b):
        line = cart_service.add_to_cart(session, user1.id, product_b.id, 2)
        
        assert line.quantity == 2
        assert line.price_at_addition == Decimal('15.00')
    
    def test_add_accumulates_quantity(self, session, user1, product_a):
        cart_service.add_to_cart(session, user1.id, product_a.id, 2)
        line = cart_service.add_to_cart(session, user1.id, product_a.id, 3)
        
        assert line.quantity == 5
        assert session.query(CartItem).filter_by(user_id=user1.id).count() == 1
    
    def test_accumulated_quantity_checked_against_stock(self, session, user1, product_a):
        cart_service.add_to_cart(session, user1.id, product_a.id, 4)
        
        with pytest.raises(InsufficientStockError) as exc:
            cart_service.add_to_cart(session, user1.id, product_a.id, 2)
        
        assert exc.value.requested == 6
        assert exc.value.available == 5
    
    def test_inactive_product(self, session, user1, make_product):
        product = make_product(active=False)
        
        with pytest.raises(ProductUnavailableError):
            cart_service.add_to_cart(session, user1.id, product.id, 1)
    
    def test_unknown_product(self, session, user1):
        with pytest.raises(NotFoundError):
            cart_service.add_to_cart(session, user1.id, 424242, 1)
    
    @pytest.mark.parametrize('quantity', [0, -1, 'many'])
    def test_invalid_quantity(self, session, user1, product_a, quantity):
        with pytest.raises(BusinessLogicError):
            cart_service.add_to_cart(session, user1.id, product_a.id, quantity)


class TestUpdateAndRemove:
    
    def test_update_refreshes_price(self, session, user1, product_a, add_line):
        add_line(user1, product_a, 1)
        product_a.discount_price = Decimal('8.00')
        session.commit()
        
        line = cart_service.update_cart_item(session, user1.id, product_a.id, 3)
        
        assert line.quantity == 3
        assert line.price_at_addition == Decimal('8.00')
    
    def test_update_missing_line(self, session, user1, product_a):
        with pytest.raises(NotFoundError):
            cart_service.update_cart_item(session, user1.id, product_a.id, 1)
    
    def test_remove_and_clear(self, session, user1, product_a, product_b, add_line):
        add_line(user1, product_a, 1)
        add_line(user1, product_b, 1)
        
        cart_service.remove_from_cart(session, user1.id, product_a.id)
        assert cart_service.count_cart_items(session, user1.id) == 1
        
        with pytest.raises(NotFoundError):
            cart_service.remove_from_cart(session, user1.id, product_a.id)
        
        cart_service.clear_cart(session, user1.id)
        assert cart_service.count_cart_items(session, user1.id) == 0


class TestCartViews:
    
    def test_snapshot_reader_is_newest_first(self, session, user1, product_a, product_b, add_line):
        add_line(user1, product_a, 1)
        add_line(user1, product_b, 1)
        
        lines = cart_service.get_cart_lines(session, user1.id)
        
        assert [line.product_id for line in lines] == [product_b.id, product_a.id]
        assert all(line.product is not None for line in lines)
    
    def test_summary_matches_checkout_rules(self, session, user1, product_a, product_b, add_line):
        add_line(user1, product_a, 2)
        add_line(user1, product_b, 1)
        
        cart = cart_service.get_cart(session, user1.id)
        summary = cart['summary']
        
        assert summary['total_items'] == 2
        assert summary['total_quantity'] == 3
        assert summary['subtotal'] == '35.00'
        assert summary['discount'] == '5.00'
        assert summary['total'] == '35.00'
        assert summary['has_unavailable_items'] is False
        assert cart['messages'] == []
    
    def test_validate_reports_errors_and_price_drift(self, session, user1, product_a, product_b, add_line):
        add_line(user1, product_a, 3)
        add_line(user1, product_b, 1)
        product_a.stock = 2
        product_b.discount_price = Decimal('12.00')
        session.commit()
        
        result = cart_service.validate_cart(session, user1.id)
        
        assert result['valid'] is False
        assert any('Product A' in error for error in result['errors'])
        assert any('Product B' in warning for warning in result['warnings'])
        
        cart = cart_service.get_cart(session, user1.id)
        assert cart['summary']['has_unavailable_items'] is True
        assert len(cart['messages']) == 1
