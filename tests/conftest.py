import pytest
from decimal import Decimal
import uuid

from config import TestingConfig
from storefront import create_app
from storefront import database
from storefront.database import get_session, create_all, drop_all
from storefront.exceptions import PaymentRequestFailed, ShippingProviderUnavailable
from storefront.models import Buyer, Product, ProductStock
from storefront.services.mercadopago_service import PaymentHandoff
from storefront.services.shipping_service import ShippingOption


class FakeGateway:
    """Stands in for MercadoPagoService: records preferences, serves canned payments."""

    def __init__(self):
        self.fail = False
        self.preferences = []
        self.payments = {}

    def create_preference(self, order, payer=None):
        if self.fail:
            raise PaymentRequestFailed(order.id)
        self.preferences.append({'order_id': order.id, 'total': order.total, 'payer': payer})
        number = len(self.preferences)
        return PaymentHandoff(
            preference_id=f'pref-{number}',
            redirect_url=f'https://mp.test/checkout/{order.id}?attempt={number}',
        )

    def get_payment(self, payment_id):
        if payment_id not in self.payments:
            raise RuntimeError(f'Failed to fetch payment {payment_id}')
        return self.payments[payment_id]


class FakeShippingClient:
    """Stands in for MelhorEnvioClient."""

    def __init__(self, options=None):
        self.options = options if options is not None else [
            ShippingOption('me_1', 'Correios', 'PAC', Decimal('25.90'), 8),
            ShippingOption('me_2', 'Correios', 'SEDEX', Decimal('45.50'), 3),
        ]
        self.fail = False
        self.calls = []

    def calculate(self, destination_cep, lines):
        self.calls.append((destination_cep, list(lines)))
        if self.fail:
            raise ShippingProviderUnavailable('Tempo esgotado ao consultar o frete')
        return list(self.options)


@pytest.fixture(scope='function')
def gateway():
    return FakeGateway()


@pytest.fixture(scope='function')
def shipping_client():
    return FakeShippingClient()


@pytest.fixture(scope='function')
def app(tmp_path, gateway, shipping_client):
    """Application on a fresh SQLite file per test."""

    class _Config(TestingConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'store.db'}"

    app = create_app(_Config)
    app.extensions['payment_gateway'] = gateway
    app.extensions['shipping_client'] = shipping_client

    with app.app_context():
        create_all()

    yield app

    get_session().remove()
    drop_all()
    database.engine.dispose()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Database session bound to the test database."""
    session = get_session()
    yield session
    session.rollback()


def _make_product(session, name='Camiseta Básica', price='100.00', stock=10,
                 wholesale_min_amount=None, wholesale_discount_percent=None, active=True):
    product = Product(
        sku=f'SKU-{uuid.uuid4().hex[:8]}',
        name=name,
        price=Decimal(price),
        active=active,
        wholesale_min_amount=Decimal(wholesale_min_amount) if wholesale_min_amount else None,
        wholesale_discount_percent=Decimal(wholesale_discount_percent) if wholesale_discount_percent else None,
    )
    session.add(product)
    session.flush()
    session.add(ProductStock(product_id=product.id, quantity=stock))
    session.commit()
    session.refresh(product)
    # Loaded snapshot, detached so later commits and rollbacks never expire it
    product.stock_qty
    session.expunge(product)
    return product


def _stock_of(session, product_id):
    session.expire_all()
    return session.query(ProductStock.quantity).filter(ProductStock.product_id == product_id).scalar()


@pytest.fixture(scope='function')
def make_product(session):
    """Factory: make_product(name=..., price=..., stock=..., wholesale_...)."""
    def factory(**kwargs):
        return _make_product(session, **kwargs)
    return factory


@pytest.fixture(scope='function')
def stock_of(session):
    """Current stock of a product, read fresh from the database."""
    def read(product_id):
        return _stock_of(session, product_id)
    return read


@pytest.fixture(scope='function')
def product(session):
    """R$ 100,00 with 10% off from R$ 1.000,00 per line, 20 units."""
    return _make_product(
        session, name='Camiseta Básica', price='100.00', stock=20,
        wholesale_min_amount='1000.00', wholesale_discount_percent='10',
    )


@pytest.fixture(scope='function')
def last_unit_product(session):
    return _make_product(session, name='Tênis Edição Limitada', price='350.00', stock=1)


@pytest.fixture(scope='function')
def buyer(session):
    buyer = Buyer(id='buyer-1', name='Maria Souza', email='maria@example.com', phone='11988887777')
    session.add(buyer)
    session.commit()
    session.refresh(buyer)
    session.expunge(buyer)
    return buyer


@pytest.fixture(scope='function')
def address():
    return {
        'street': 'Av. Paulista',
        'number': '1000',
        'complement': 'ap 12',
        'neighborhood': 'Bela Vista',
        'city': 'São Paulo',
        'state': 'SP',
        'zip_code': '01310100',
    }


@pytest.fixture(scope='function')
def buyer_client(client, buyer):
    """Client logged in as the buyer."""
    with client.session_transaction() as sess:
        sess['user_id'] = buyer.id
        sess['role'] = 'cliente'
    return client


@pytest.fixture(scope='function')
def operator_client(client):
    """Client logged in as store staff."""
    with client.session_transaction() as sess:
        sess['user_id'] = 'staff-1'
        sess['role'] = 'vendedor'
    return client
