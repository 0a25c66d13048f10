"""
Shared fixtures: a SQLite database file per test, factories for the
ledger's reference data and a TestClient wired to the same database.
"""
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session

from app.database.database import Database
from app.main import create_app
from app.modules.auth.schemas import UserRole
from app.modules.auth.utils import create_context_token
from app.modules.customers.models import Customer
from app.modules.drivers.models import Driver, DriverStatus, DriverType
from app.modules.notifications.events import EventCollector, EventPublisher
from app.modules.products.models import Company, CylinderSize, Product
from app.modules.receivables.models import CustomerReceivable, ReceivableRecord, ReceivableType, ReceivableStatus
from app.modules.sales.models import Sale, SaleType, PaymentType


def _sqlite_engine(path):
    engine = create_engine(f"sqlite:///{path}", connect_args={"check_same_thread": False})

    # pysqlite issues its own BEGIN lazily, which breaks SAVEPOINT; take over.
    # WAL lets the API session write while the test session holds a read.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        dbapi_connection.execute("PRAGMA journal_mode=WAL")

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


@pytest.fixture
def database(tmp_path):
    engine = _sqlite_engine(tmp_path / "ledger.db")
    db = Database(engine=engine)
    db.create_all()
    yield db
    db.drop_all()
    engine.dispose()


@pytest.fixture
def db_session(database):
    """
    Setup and assertion session. Objects stay readable after commit; call
    rollback() before asserting on rows the API changed.
    """
    session = Session(bind=database.engine, autoflush=False, expire_on_commit=False)
    yield session
    session.close()


@pytest.fixture
def tenant_id():
    return uuid4()


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def collector():
    return EventCollector()


@pytest.fixture
def client(database, collector):
    app = create_app(database=database, event_publisher=EventPublisher(collector))
    return TestClient(app)


@pytest.fixture
def auth_headers(tenant_id, user_id):
    """Builds a bearer header; defaults to an admin of the test tenant."""
    def _headers(role=UserRole.ADMIN, tenant=tenant_id, user=user_id):
        token = create_context_token({"sub": user, "tenant_id": tenant, "user_role": role})
        return {"Authorization": f"Bearer {token}"}
    return _headers


# ===== FACTORIES =====

@pytest.fixture
def make_driver(db_session, tenant_id):
    def _make(name="Rahim", status=DriverStatus.ACTIVE, driver_type=DriverType.RETAIL, tenant=None):
        driver = Driver(
            tenant_id=tenant or tenant_id,
            name=name,
            phone="01712345678",
            status=status,
            driver_type=driver_type,
        )
        db_session.add(driver)
        db_session.commit()
        return driver
    return _make


@pytest.fixture
def make_product(db_session, tenant_id):
    companies = {}
    sizes = {}

    def _make(size="12L", price="1200.00", company="Bashundhara", name=None):
        if company not in companies:
            companies[company] = Company(tenant_id=tenant_id, name=company)
            db_session.add(companies[company])
        if size not in sizes:
            sizes[size] = CylinderSize(tenant_id=tenant_id, size=size)
            db_session.add(sizes[size])
        db_session.flush()
        product = Product(
            tenant_id=tenant_id,
            name=name or f"{company} {size}",
            company_id=companies[company].id,
            cylinder_size_id=sizes[size].id,
            current_price=Decimal(price),
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture
def make_sale(db_session, tenant_id):
    def _make(driver, day, sale_type=SaleType.REFILL, quantity=1, unit_price="0", discount="0",
              cash_deposited="0", cylinders_deposited=0, product=None):
        total = Decimal(unit_price) * quantity
        sale = Sale(
            tenant_id=tenant_id,
            driver_id=driver.id,
            product_id=product.id if product else None,
            sale_date=day,
            sale_type=sale_type,
            payment_type=PaymentType.CASH,
            quantity=quantity,
            unit_price=Decimal(unit_price),
            total_value=total,
            discount=Decimal(discount),
            net_value=total - Decimal(discount),
            cash_deposited=Decimal(cash_deposited),
            cylinders_deposited=cylinders_deposited,
        )
        db_session.add(sale)
        db_session.commit()
        return sale
    return _make


@pytest.fixture
def make_record(db_session, tenant_id):
    """Stores a ReceivableRecord exactly as given (no calculation)."""
    def _make(driver, day, cash_change="0", cylinder_change=0, total_cash="0", total_cylinders=0,
              onboarding_cash="0", onboarding_cylinders=0, tenant=None):
        record = ReceivableRecord(
            tenant_id=tenant or tenant_id,
            driver_id=driver.id,
            date=day,
            cash_receivables_change=Decimal(cash_change),
            cylinder_receivables_change=cylinder_change,
            onboarding_cash_receivables=Decimal(onboarding_cash),
            onboarding_cylinder_receivables=onboarding_cylinders,
            total_cash_receivables=Decimal(total_cash),
            total_cylinder_receivables=total_cylinders,
        )
        db_session.add(record)
        db_session.commit()
        return record
    return _make


@pytest.fixture
def make_customer_receivable(db_session, tenant_id):
    def _make(driver, customer_name="Karim Store", receivable_type=ReceivableType.CASH, amount="0",
              quantity=0, size=None, due_date=None, status=ReceivableStatus.CURRENT, phone=None):
        customer = None
        if phone:
            customer = Customer(tenant_id=tenant_id, name=customer_name, phone=phone, driver_id=driver.id)
            db_session.add(customer)
            db_session.flush()
        receivable = CustomerReceivable(
            tenant_id=tenant_id,
            driver_id=driver.id,
            customer_id=customer.id if customer else None,
            customer_name=customer_name,
            receivable_type=receivable_type,
            amount=Decimal(amount),
            quantity=quantity,
            size=size,
            status=status,
            due_date=due_date,
        )
        db_session.add(receivable)
        db_session.commit()
        return receivable
    return _make


@pytest.fixture
def today():
    return date.today()
