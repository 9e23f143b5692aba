"""
Integration tests for the catalog endpoints.
"""

from storefront.models import Product


def test_list_and_detail_are_public(client, product_a, product_b):
    product_id = product_a.id
    
    response = client.get('/api/products?size=1')
    assert response.status_code == 200
    assert response.json['total'] == 2
    assert response.json['pages'] == 2
    assert len(response.json['items']) == 1
    
    response = client.get(f'/api/products/{product_id}')
    assert response.status_code == 200
    assert response.json['price'] == '10.00'
    assert response.json['view_count'] == 1


def test_page_size_is_capped(app, client, product_a):
    response = client.get('/api/products?size=100000')
    
    assert response.json['size'] == app.config['MAX_PAGE_SIZE']


def test_admin_creates_and_updates_product(admin_client, session):
    response = admin_client.post('/api/products', json={
        'name': 'Desk Lamp', 'price': '20.00', 'discount_price': '18.00', 'stock': 4, 'sku': 'LAMP-1'
    })
    assert response.status_code == 201
    product_id = response.json['id']
    assert response.json['slug'] == 'desk-lamp'
    assert response.json['discount_percentage'] == 10
    
    response = admin_client.put(f'/api/products/{product_id}', json={'stock': 7, 'active': False})
    assert response.status_code == 200
    assert response.json['stock'] == 7
    assert session.get(Product, product_id).active is False


def test_shopper_cannot_create_product(authenticated_client):
    response = authenticated_client.post('/api/products', json={'name': 'X', 'price': '1.00'})
    
    assert response.status_code == 403


def test_low_stock_listing(admin_client, product_a, make_product):
    make_product(name='Plenty', stock=100)
    
    response = admin_client.get('/api/products/low-stock')
    
    assert response.status_code == 200
    assert [p['name'] for p in response.json] == ['Product A']


def test_health_endpoints(client):
    assert client.get('/health').json['status'] == 'healthy'
    assert client.get('/health/cache').json['status'] == 'degraded'
    
    metrics = client.get('/metrics')
    assert metrics.status_code == 200
    assert b'http_requests_total' in metrics.data
