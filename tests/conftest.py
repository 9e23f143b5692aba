import pytest
import uuid
from decimal import Decimal

from storefront import create_app
from storefront.database import get_session, create_schema, drop_schema
from storefront.models import AppUser, UserRole, Product, CartItem


SHIPPING_ADDRESS = {
    'name': 'Jane Buyer',
    'email': 'jane@example.com',
    'phone': '+1 555 0100',
    'address_line1': '12 Market Street',
    'address_line2': 'Apt 4',
    'city': 'Springfield',
    'state': 'IL',
    'postal_code': '62701',
    'country': 'US',
}


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing."""
    return create_app('config.TestConfig')


@pytest.fixture(scope='function', autouse=True)
def database(app):
    """Fresh schema for every test, inside an application context."""
    ctx = app.app_context()
    ctx.push()
    create_schema()
    yield
    get_session().remove()
    drop_schema()
    ctx.pop()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session():
    """Database session for testing."""
    session = get_session()
    yield session
    session.rollback()


@pytest.fixture
def shipping_address():
    return dict(SHIPPING_ADDRESS)


def _create_user(session, role=UserRole.USER, prefix='user'):
    suffix = str(uuid.uuid4())[:8]
    user = AppUser(
        email=f'{prefix}-{suffix}@test.com',
        full_name=f'{prefix.title()} {suffix}',
        role=role,
        active=True
    )
    user.set_password('password123')
    session.add(user)
    session.commit()
    return user


@pytest.fixture(scope='function')
def user1(session):
    """Regular shopper."""
    return _create_user(session, prefix='user1')


@pytest.fixture(scope='function')
def user2(session):
    """Second shopper, for ownership checks."""
    return _create_user(session, prefix='user2')


@pytest.fixture(scope='function')
def admin_user(session):
    return _create_user(session, role=UserRole.ADMIN, prefix='admin')


@pytest.fixture
def make_product(session):
    """Factory creating committed products."""
    def _make(name=None, price='10.00', discount_price=None, stock=10, active=True, sku=None):
        suffix = str(uuid.uuid4())[:8]
        name = name or f'Product {suffix}'
        product = Product(
            name=name,
            slug=f'{name.lower().replace(" ", "-")}-{suffix}',
            sku=sku or f'SKU-{suffix}',
            price=Decimal(price),
            discount_price=Decimal(discount_price) if discount_price is not None else None,
            stock=stock,
            active=active,
        )
        session.add(product)
        session.commit()
        return product
    return _make


@pytest.fixture
def product_a(make_product):
    """Regular-priced product: 10.00, stock 5."""
    return make_product(name='Product A', price='10.00', stock=5)


@pytest.fixture
def product_b(make_product):
    """Discounted product: 20.00 reduced to 15.00, stock 8."""
    return make_product(name='Product B', price='20.00', discount_price='15.00', stock=8)


@pytest.fixture
def add_line(session):
    """Put a line straight into a user's cart at the product's current effective price."""
    def _add(user, product, quantity):
        line = CartItem(
            user_id=user.id,
            product_id=product.id,
            quantity=quantity,
            price_at_addition=product.effective_price
        )
        session.add(line)
        session.commit()
        return line
    return _add


def _login(client, user):
    with client.session_transaction() as sess:
        sess['user_id'] = user.id
    return client


@pytest.fixture(scope='function')
def authenticated_client(client, user1):
    """Test client logged in as user1."""
    return _login(client, user1)


@pytest.fixture(scope='function')
def admin_client(app, admin_user):
    """Separate test client logged in as the administrator."""
    return _login(app.test_client(), admin_user)
