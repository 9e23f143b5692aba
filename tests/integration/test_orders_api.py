"""
Integration tests for the order endpoints.
"""

import pytest

from storefront.models import Order, Product


@pytest.fixture
def cart_ready(user1, product_a, product_b, add_line):
    """user1's cart: A x2 and discounted B x1. Returns the product ids."""
    add_line(user1, product_a, 2)
    add_line(user1, product_b, 1)
    return product_a.id, product_b.id


def _checkout(client, shipping_address, **extra):
    return client.post('/api/orders', json=dict(shipping_address=shipping_address, **extra))


class TestCheckout:
    
    def test_create_order(self, authenticated_client, session, cart_ready, shipping_address):
        a_id, b_id = cart_ready
        
        response = _checkout(authenticated_client, shipping_address, payment_method='CREDIT_CARD')
        
        assert response.status_code == 201
        body = response.json
        assert body['status'] == 'PENDING'
        assert body['payment_method'] == 'CREDIT_CARD'
        assert body['subtotal'] == '35.00'
        assert body['discount'] == '5.00'
        assert body['total_amount'] == '35.00'
        assert body['shipping_address']['city'] == 'Springfield'
        assert len(body['items']) == 2
        
        assert session.get(Product, a_id).stock == 3
        assert session.get(Product, b_id).stock == 7
        assert authenticated_client.get('/api/cart/count').json == {'count': 0}
    
    def test_empty_cart(self, authenticated_client, shipping_address):
        response = _checkout(authenticated_client, shipping_address)
        
        assert response.status_code == 400
        assert response.json['error'] == 'Empty Cart'
        assert response.json['path'] == '/api/orders'
    
    def test_insufficient_stock_leaves_everything_untouched(self, authenticated_client, session, cart_ready, shipping_address):
        a_id, b_id = cart_ready
        session.get(Product, a_id).stock = 1
        session.commit()
        
        response = _checkout(authenticated_client, shipping_address)
        
        assert response.status_code == 409
        assert response.json['product'] == 'Product A'
        assert response.json['available'] == 1
        assert session.query(Order).count() == 0
        assert session.get(Product, b_id).stock == 8
        assert authenticated_client.get('/api/cart/count').json == {'count': 2}
    
    def test_invalid_shipping(self, authenticated_client, cart_ready):
        response = _checkout(authenticated_client, {'name': 'Only Name'})
        
        assert response.status_code == 400
        assert 'city: is required' in response.json['errors']
    
    def test_list_body_is_a_validation_error(self, authenticated_client, session, cart_ready):
        response = authenticated_client.post('/api/orders', json=[1, 2])
        
        assert response.status_code == 400
        assert response.json['error'] == 'Validation Failed'
        assert 'name: is required' in response.json['errors']
        assert session.query(Order).count() == 0
    
    def test_string_shipping_address_is_rejected(self, authenticated_client, session, cart_ready):
        response = _checkout(authenticated_client, 'street 1')
        
        assert response.status_code == 400
        assert response.json['errors'] == ['shipping_address: must be an object']
        assert session.query(Order).count() == 0
    
    def test_non_string_order_notes_are_rejected(self, authenticated_client, session, cart_ready, shipping_address):
        response = _checkout(authenticated_client, shipping_address, order_notes=5)
        
        assert response.status_code == 400
        assert response.json['errors'] == ['order_notes: must be a string']
        assert session.query(Order).count() == 0
        assert authenticated_client.get('/api/cart/count').json == {'count': 2}
    
    def test_non_string_transaction_id_is_rejected(self, authenticated_client, cart_ready, shipping_address):
        response = _checkout(authenticated_client, shipping_address, payment_transaction_id=12345)
        
        assert response.status_code == 400
        assert response.json['errors'] == ['payment_transaction_id: must be a string']


class TestOrderAccess:
    
    def test_history_detail_and_number(self, authenticated_client, cart_ready, shipping_address):
        created = _checkout(authenticated_client, shipping_address).json
        
        history = authenticated_client.get('/api/orders').json
        assert history['total'] == 1
        assert history['items'][0]['order_number'] == created['order_number']
        
        detail = authenticated_client.get(f"/api/orders/{created['id']}")
        assert detail.status_code == 200
        
        by_number = authenticated_client.get(f"/api/orders/number/{created['order_number']}")
        assert by_number.json['id'] == created['id']
        
        assert len(authenticated_client.get('/api/orders/recent').json) == 1
        stats = authenticated_client.get('/api/orders/statistics').json
        assert stats == {'total_orders': 1, 'total_spent': '0.00', 'average_order_value': '0.00'}
    
    def test_other_user_gets_403(self, app, authenticated_client, user2, cart_ready, shipping_address):
        user2_id = user2.id
        created = _checkout(authenticated_client, shipping_address).json
        
        other = app.test_client()
        with other.session_transaction() as sess:
            sess['user_id'] = user2_id
        
        response = other.get(f"/api/orders/{created['id']}")
        assert response.status_code == 403
        
        response = other.post(f"/api/orders/{created['id']}/cancel")
        assert response.status_code == 403
    
    def test_missing_order(self, authenticated_client):
        response = authenticated_client.get('/api/orders/999')
        
        assert response.status_code == 404
        assert response.json['message'] == 'Order not found'


class TestLifecycleEndpoints:
    
    def test_user_cancel_restores_stock(self, authenticated_client, session, cart_ready, shipping_address):
        a_id, _ = cart_ready
        created = _checkout(authenticated_client, shipping_address).json
        
        response = authenticated_client.post(f"/api/orders/{created['id']}/cancel", json={'reason': 'Too slow'})
        
        assert response.status_code == 200
        assert response.json['status'] == 'CANCELLED'
        assert response.json['cancellation_reason'] == 'Too slow'
        assert session.get(Product, a_id).stock == 5
        assert session.get(Product, a_id).sold_count == 0
    
    def test_admin_flow(self, authenticated_client, admin_client, cart_ready, shipping_address):
        order_id = _checkout(authenticated_client, shipping_address).json['id']
        
        response = admin_client.put(f'/api/orders/{order_id}/payment-status', json={'payment_status': 'PAID'})
        assert response.json['status'] == 'CONFIRMED'
        assert response.json['payment_status'] == 'PAID'
        
        response = admin_client.put(f'/api/orders/{order_id}/tracking', json={'tracking_number': 'TRK-9'})
        assert response.json['status'] == 'SHIPPED'
        assert response.json['tracking_number'] == 'TRK-9'
        
        response = admin_client.put(f'/api/orders/{order_id}/status', json={'status': 'DELIVERED'})
        assert response.json['status'] == 'DELIVERED'
        assert response.json['delivered_at'] is not None
        
        response = authenticated_client.post(f'/api/orders/{order_id}/cancel')
        assert response.status_code == 409
        assert response.json['error'] == 'Invalid Operation'
        assert response.json['current_status'] == 'DELIVERED'
        
        listing = admin_client.get('/api/orders/admin?status=DELIVERED').json
        assert listing['total'] == 1
    
    def test_admin_invalid_status(self, authenticated_client, admin_client, cart_ready, shipping_address):
        order_id = _checkout(authenticated_client, shipping_address).json['id']
        
        response = admin_client.put(f'/api/orders/{order_id}/status', json={'status': 'TELEPORTED'})
        
        assert response.status_code == 400
        assert response.json['error'] == 'Invalid Argument'
    
    def test_shopper_cannot_use_admin_endpoints(self, authenticated_client, cart_ready, shipping_address):
        order_id = _checkout(authenticated_client, shipping_address).json['id']
        
        response = authenticated_client.put(f'/api/orders/{order_id}/status', json={'status': 'SHIPPED'})
        
        assert response.status_code == 403
    
    def test_non_string_tracking_and_reason(self, authenticated_client, admin_client, cart_ready, shipping_address):
        order_id = _checkout(authenticated_client, shipping_address).json['id']
        
        response = admin_client.put(f'/api/orders/{order_id}/tracking', json={'tracking_number': 42})
        assert response.status_code == 400
        assert response.json['error'] == 'Invalid Argument'
        
        response = authenticated_client.post(f'/api/orders/{order_id}/cancel', json={'reason': 7})
        assert response.status_code == 200
        assert response.json['cancellation_reason'] == 'Cancelled by user'
