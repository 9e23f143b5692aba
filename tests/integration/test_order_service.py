"""
Integration tests for order placement, stock consistency and the order lifecycle.
"""

import pytest
from datetime import datetime
from decimal import Decimal
from sqlalchemy.orm.exc import StaleDataError

from storefront.exceptions import (
    EmptyCartError, InsufficientStockError, ProductUnavailableError, InvalidOperationError,
    InvalidArgumentError, AccessDeniedError, NotFoundError, ValidationError,
    ConcurrentModificationError
)
from storefront.models import CartItem, Order, OrderItem, Product, OrderStatus, PaymentStatus, PaymentMethod
from storefront.services import order_service
from storefront.services.pricing_service import ConfiguredCharges


def _place(session, user, shipping_address, **kwargs):
    return order_service.create_order(session, user.id, shipping_address, **kwargs)


class TestCreateOrder:
    
    def test_discounted_cart_scenario(self, session, user1, product_a, product_b, add_line, shipping_address):
        """A (10.00) x2 plus B (20.00 discounted to 15.00) x1."""
        b_stock = product_b.stock
        add_line(user1, product_a, 2)
        add_line(user1, product_b, 1)
        
        order = _place(session, user1, shipping_address)
        
        assert order.subtotal == Decimal('35.00')
        assert order.discount == Decimal('5.00')
        assert order.tax == Decimal('0.00')
        assert order.shipping_cost == Decimal('0.00')
        assert order.total_amount == Decimal('35.00')
        assert order.total_amount == order.gross_subtotal - order.discount + order.tax + order.shipping_cost
        assert order.expected_total() == order.total_amount
        
        assert product_a.stock == 3
        assert product_a.sold_count == 2
        assert product_b.stock == b_stock - 1
        assert product_b.sold_count == 1
    
    def test_lines_are_snapshots(self, session, user1, product_a, product_b, add_line, shipping_address):
        add_line(user1, product_a, 2)
        add_line(user1, product_b, 1)
        
        order = _place(session, user1, shipping_address)
        items = {item.product_id: item for item in order.items}
        
        line_b = items[product_b.id]
        assert line_b.product_name == 'Product B'
        assert line_b.product_sku == product_b.sku
        assert line_b.unit_price == Decimal('20.00')
        assert line_b.discount_amount == Decimal('5.00')
        assert line_b.subtotal == Decimal('15.00')
        assert line_b.calculate_subtotal() == line_b.subtotal
        
        line_a = items[product_a.id]
        assert line_a.unit_price == Decimal('10.00')
        assert line_a.discount_amount == Decimal('0.00')
        assert line_a.subtotal == Decimal('20.00')
        
        # Later catalog edits don't touch the order
        product_b.name = 'Renamed'
        product_b.price = Decimal('99.00')
        session.commit()
        session.refresh(line_b)
        assert line_b.product_name == 'Product B'
        assert line_b.unit_price == Decimal('20.00')
    
    def test_order_header_fields(self, session, user1, product_a, add_line, shipping_address):
        add_line(user1, product_a, 1)
        
        order = _place(
            session, user1, shipping_address,
            payment_method='paypal', payment_transaction_id='tx-1', order_notes='Leave at door'
        )
        
        assert order.status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.PENDING
        assert order.payment_method == PaymentMethod.PAYPAL
        assert order.payment_transaction_id == 'tx-1'
        assert order.order_notes == 'Leave at door'
        assert order.shipping_name == 'Jane Buyer'
        assert order.shipping_city == 'Springfield'
        assert order.order_number.startswith('ORD-')
        assert len(order.order_number.split('-')[1]) == 14
        assert len(order.order_number.split('-')[2]) == 4
    
    def test_unknown_payment_method_falls_back_to_cash_on_delivery(self, session, user1, product_a, add_line, shipping_address):
        add_line(user1, product_a, 1)
        
        order = _place(session, user1, shipping_address, payment_method='BITCOIN')
        
        assert order.payment_method == PaymentMethod.CASH_ON_DELIVERY
    
    def test_cart_is_cleared(self, session, user1, user2, product_a, add_line, shipping_address):
        add_line(user1, product_a, 1)
        add_line(user2, product_a, 1)
        
        _place(session, user1, shipping_address)
        
        assert session.query(CartItem).filter_by(user_id=user1.id).count() == 0
        assert session.query(CartItem).filter_by(user_id=user2.id).count() == 1
    
    def test_charges_hook_is_applied(self, session, user1, product_a, add_line, shipping_address):
        add_line(user1, product_a, 2)
        charges = ConfiguredCharges(tax_rate='0.10', shipping_fee='5.00')
        
        order = _place(session, user1, shipping_address, charges=charges)
        
        assert order.subtotal == Decimal('20.00')
        assert order.tax == Decimal('2.00')
        assert order.shipping_cost == Decimal('5.00')
        assert order.total_amount == Decimal('27.00')
        assert order.total_amount == order.gross_subtotal - order.discount + order.tax + order.shipping_cost
    
    def test_empty_cart_fails_without_mutation(self, session, user1, product_a, shipping_address):
        with pytest.raises(EmptyCartError):
            _place(session, user1, shipping_address)
        
        assert session.query(Order).count() == 0
        assert product_a.stock == 5
        assert product_a.sold_count == 0
    
    def test_insufficient_stock_is_all_or_nothing(self, session, user1, product_a, product_b, add_line, shipping_address):
        add_line(user1, product_b, 1)
        add_line(user1, product_a, 2)
        product_a.stock = 1  # drops below the cart quantity after it was added
        session.commit()
        
        with pytest.raises(InsufficientStockError) as exc:
            _place(session, user1, shipping_address)
        
        assert exc.value.product_name == 'Product A'
        assert exc.value.requested == 2
        assert exc.value.available == 1
        assert session.query(Order).count() == 0
        assert session.query(OrderItem).count() == 0
        assert session.query(CartItem).filter_by(user_id=user1.id).count() == 2
        assert session.get(Product, product_a.id).stock == 1
        assert session.get(Product, product_b.id).stock == 8
        assert session.get(Product, product_b.id).sold_count == 0
    
    def test_inactive_product_is_rejected(self, session, user1, product_a, add_line, shipping_address):
        add_line(user1, product_a, 1)
        product_a.active = False
        session.commit()
        
        with pytest.raises(ProductUnavailableError):
            _place(session, user1, shipping_address)
        
        assert session.query(Order).count() == 0
    
    def test_missing_shipping_fields(self, session, user1, product_a, add_line, shipping_address):
        add_line(user1, product_a, 1)
        del shipping_address['city']
        shipping_address['email'] = 'not-an-email'
        
        with pytest.raises(ValidationError) as exc:
            _place(session, user1, shipping_address)
        
        assert 'city: is required' in exc.value.errors
        assert 'email: invalid email format' in exc.value.errors
    
    def test_unknown_user(self, session, shipping_address):
        with pytest.raises(NotFoundError):
            order_service.create_order(session, 999, shipping_address)
    
    def test_retries_stale_data_then_succeeds(self, session, user1, product_a, add_line, shipping_address, monkeypatch):
        add_line(user1, product_a, 1)
        real_place = order_service._place_order
        calls = []
        
        def flaky_place(*args, **kwargs):
            calls.append(1)
            if len(calls) == 1:
                raise StaleDataError('concurrent update')
            return real_place(*args, **kwargs)
        
        monkeypatch.setattr(order_service, '_place_order', flaky_place)
        
        order = _place(session, user1, shipping_address)
        
        assert len(calls) == 2
        assert order.id is not None
        assert product_a.stock == 4
    
    def test_gives_up_after_repeated_conflicts(self, session, user1, product_a, add_line, shipping_address, monkeypatch):
        add_line(user1, product_a, 1)
        
        def always_stale(*args, **kwargs):
            raise StaleDataError('concurrent update')
        
        monkeypatch.setattr(order_service, '_place_order', always_stale)
        
        with pytest.raises(ConcurrentModificationError):
            _place(session, user1, shipping_address)
    
    def test_order_number_rerolls_on_collision(self, session, user1, product_a, add_line, shipping_address, monkeypatch):
        add_line(user1, product_a, 1)
        first = _place(session, user1, shipping_address)
        suffix = int(first.order_number.rsplit('-', 1)[1])
        rolls = iter([suffix, (suffix + 1) % 10000])
        monkeypatch.setattr(order_service.random, 'randint', lambda a, b: next(rolls))
        placed_at = datetime.strptime(first.order_number.split('-')[1], '%Y%m%d%H%M%S')
        
        number = order_service.generate_order_number(session, now=placed_at)
        
        assert number != first.order_number
        assert number.rsplit('-', 1)[0] == first.order_number.rsplit('-', 1)[0]


class TestCancelOrder:
    
    @pytest.fixture
    def placed_order(self, session, user1, product_a, product_b, add_line, shipping_address):
        add_line(user1, product_a, 2)
        add_line(user1, product_b, 1)
        return _place(session, user1, shipping_address)
    
    def test_cancel_restores_stock_exactly(self, session, user1, product_a, product_b, placed_order):
        order = order_service.cancel_order(session, user1.id, placed_order.id, reason='Changed my mind')
        
        assert order.status == OrderStatus.CANCELLED
        assert order.cancellation_reason == 'Changed my mind'
        assert order.cancelled_at is not None
        assert (product_a.stock, product_a.sold_count) == (5, 0)
        assert (product_b.stock, product_b.sold_count) == (8, 0)
    
    def test_cancel_paid_order_marks_refund(self, session, user1, placed_order):
        order_service.update_payment_status(session, placed_order.id, 'PAID')
        
        order = order_service.cancel_order(session, user1.id, placed_order.id)
        
        assert order.status == OrderStatus.CANCELLED
        assert order.payment_status == PaymentStatus.REFUNDED
        assert order.cancellation_reason == 'Cancelled by user'
    
    def test_cancel_twice_fails(self, session, user1, product_a, placed_order):
        order_service.cancel_order(session, user1.id, placed_order.id)
        
        with pytest.raises(InvalidOperationError) as exc:
            order_service.cancel_order(session, user1.id, placed_order.id)
        
        assert exc.value.current_status == 'CANCELLED'
        assert product_a.stock == 5
    
    def test_cancel_delivered_order_fails(self, session, user1, product_a, placed_order):
        order_service.update_order_status(session, placed_order.id, 'DELIVERED')
        
        with pytest.raises(InvalidOperationError) as exc:
            order_service.cancel_order(session, user1.id, placed_order.id)
        
        assert exc.value.current_status == 'DELIVERED'
        assert product_a.stock == 3
    
    def test_other_user_cannot_cancel(self, session, user2, placed_order):
        with pytest.raises(AccessDeniedError):
            order_service.cancel_order(session, user2.id, placed_order.id)
        
        assert session.get(Order, placed_order.id).status == OrderStatus.PENDING
    
    def test_admin_can_cancel_any_order(self, session, admin_user, placed_order):
        order = order_service.cancel_order(session, admin_user.id, placed_order.id, is_admin=True)
        
        assert order.status == OrderStatus.CANCELLED


class TestAdminLifecycle:
    
    @pytest.fixture
    def placed_order(self, session, user1, product_a, add_line, shipping_address):
        add_line(user1, product_a, 2)
        return _place(session, user1, shipping_address)
    
    def test_status_update_and_delivery_stamp(self, session, placed_order):
        order = order_service.update_order_status(session, placed_order.id, 'processing')
        assert order.status == OrderStatus.PROCESSING
        assert order.delivered_at is None
        
        order = order_service.update_order_status(session, placed_order.id, 'DELIVERED')
        assert order.status == OrderStatus.DELIVERED
        assert order.delivered_at is not None
    
    def test_unknown_status_is_invalid_argument(self, session, placed_order):
        with pytest.raises(InvalidArgumentError):
            order_service.update_order_status(session, placed_order.id, 'LOST')
        
        with pytest.raises(InvalidArgumentError):
            order_service.update_payment_status(session, placed_order.id, 'MAYBE')
    
    def test_admin_cancel_restores_stock(self, session, product_a, placed_order):
        order = order_service.update_order_status(session, placed_order.id, 'CANCELLED')
        
        assert order.status == OrderStatus.CANCELLED
        assert order.cancellation_reason == 'Cancelled by administrator'
        assert product_a.stock == 5
        assert product_a.sold_count == 0
    
    def test_terminal_orders_cannot_change(self, session, placed_order):
        order_service.update_order_status(session, placed_order.id, 'CANCELLED')
        
        with pytest.raises(InvalidOperationError):
            order_service.update_order_status(session, placed_order.id, 'PENDING')
    
    def test_refund_marks_paid_payment_refunded(self, session, product_a, placed_order):
        order_service.update_payment_status(session, placed_order.id, 'PAID')
        
        order = order_service.update_order_status(session, placed_order.id, 'REFUNDED')
        
        assert order.status == OrderStatus.REFUNDED
        assert order.payment_status == PaymentStatus.REFUNDED
        assert product_a.stock == 3
    
    def test_payment_paid_confirms_pending_order(self, session, placed_order):
        order = order_service.update_payment_status(session, placed_order.id, 'paid')
        
        assert order.payment_status == PaymentStatus.PAID
        assert order.status == OrderStatus.CONFIRMED
    
    def test_payment_paid_does_not_regress_shipped_order(self, session, placed_order):
        order_service.add_tracking_number(session, placed_order.id, 'TRK-1')
        
        order = order_service.update_payment_status(session, placed_order.id, 'PAID')
        
        assert order.status == OrderStatus.SHIPPED
    
    def test_payment_failed_keeps_status(self, session, placed_order):
        order = order_service.update_payment_status(session, placed_order.id, 'FAILED')
        
        assert order.payment_status == PaymentStatus.FAILED
        assert order.status == OrderStatus.PENDING
    
    def test_tracking_number_ships_order(self, session, placed_order):
        order = order_service.add_tracking_number(session, placed_order.id, '  TRK-123  ')
        
        assert order.tracking_number == 'TRK-123'
        assert order.status == OrderStatus.SHIPPED
    
    def test_tracking_number_required(self, session, placed_order):
        with pytest.raises(InvalidArgumentError):
            order_service.add_tracking_number(session, placed_order.id, '   ')
    
    def test_tracking_rejected_for_cancelled_order(self, session, placed_order):
        order_service.update_order_status(session, placed_order.id, 'CANCELLED')
        
        with pytest.raises(InvalidOperationError):
            order_service.add_tracking_number(session, placed_order.id, 'TRK-1')
    
    def test_tracking_does_not_move_delivered_order_back(self, session, placed_order):
        order_service.update_order_status(session, placed_order.id, 'DELIVERED')
        
        with pytest.raises(InvalidOperationError) as exc:
            order_service.add_tracking_number(session, placed_order.id, 'TRK-2')
        
        assert exc.value.current_status == 'DELIVERED'
        assert session.get(Order, placed_order.id).status == OrderStatus.DELIVERED
    
    def test_missing_order(self, session):
        with pytest.raises(NotFoundError):
            order_service.update_order_status(session, 12345, 'SHIPPED')


class TestOrderQueries:
    
    def test_history_is_paged_newest_first(self, session, user1, user2, make_product, add_line, shipping_address):
        product = make_product(stock=50)
        numbers = []
        for _ in range(3):
            add_line(user1, product, 1)
            numbers.append(_place(session, user1, shipping_address).order_number)
        add_line(user2, product, 1)
        _place(session, user2, shipping_address)
        
        orders, total = order_service.get_order_history(session, user1.id, page=0, size=2)
        
        assert total == 3
        assert [o.order_number for o in orders] == [numbers[2], numbers[1]]
        
        orders, _ = order_service.get_order_history(session, user1.id, page=1, size=2)
        assert [o.order_number for o in orders] == [numbers[0]]
        
        assert len(order_service.get_recent_orders(session, user1.id)) == 3
    
    def test_get_order_enforces_ownership(self, session, user1, user2, product_a, add_line, shipping_address):
        add_line(user1, product_a, 1)
        order = _place(session, user1, shipping_address)
        
        assert order_service.get_order(session, user1.id, order.id).id == order.id
        assert order_service.get_order_by_number(session, user1.id, order.order_number).id == order.id
        with pytest.raises(AccessDeniedError):
            order_service.get_order(session, user2.id, order.id)
        with pytest.raises(AccessDeniedError):
            order_service.get_order_by_number(session, user2.id, order.order_number)
        assert order_service.get_order(session, user2.id, order.id, is_admin=True).id == order.id
        with pytest.raises(NotFoundError):
            order_service.get_order_by_number(session, user1.id, 'ORD-NOPE')
    
    def test_statistics_count_only_paid_spend(self, session, user1, make_product, add_line, shipping_address):
        product = make_product(price='10.00', stock=20)
        add_line(user1, product, 2)
        paid = _place(session, user1, shipping_address)
        add_line(user1, product, 1)
        _place(session, user1, shipping_address)
        order_service.update_payment_status(session, paid.id, 'PAID')
        
        stats = order_service.get_user_order_statistics(session, user1.id)
        
        assert stats['total_orders'] == 2
        assert stats['total_spent'] == Decimal('20.00')
        assert stats['average_order_value'] == Decimal('10.00')
    
    def test_admin_list_filters_by_status(self, session, user1, user2, product_a, add_line, shipping_address):
        add_line(user1, product_a, 1)
        first = _place(session, user1, shipping_address)
        add_line(user2, product_a, 1)
        _place(session, user2, shipping_address)
        order_service.update_order_status(session, first.id, 'SHIPPED')
        
        orders, total = order_service.list_orders(session, status='shipped')
        assert total == 1
        assert orders[0].id == first.id
        
        _, total = order_service.list_orders(session)
        assert total == 2
        
        with pytest.raises(InvalidArgumentError):
            order_service.list_orders(session, status='nope')
