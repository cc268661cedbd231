import os
import tempfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from itertools import count

# Settings and logging are configured at import time, so point them at a scratch dir first
_tmp_dir = tempfile.mkdtemp(prefix="storefront-tests-")
os.environ["DATABASE_PATH"] = os.path.join(_tmp_dir, "app.db")
os.environ["STOREFRONT_LOG_DIR"] = os.path.join(_tmp_dir, "logs")
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["DEBUG"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.cache import invalidate_promo_stats
from app.core.database import Base, get_db
from app.core.security import create_access_token
from app.main import app
from app.models import User, Order, PromoCode, DiscountTypeEnum

ADMIN_API_KEY = "test-admin-key"

_sequence = count(1)


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False, "timeout": 20.0},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def clear_stats_cache():
    invalidate_promo_stats()
    yield
    invalidate_promo_stats()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def now():
    return datetime.now(timezone.utc)


@pytest.fixture
def make_user(db):
    def _make_user(**overrides):
        n = next(_sequence)
        user = User(
            email=overrides.pop("email", f"customer{n}@example.com"),
            full_name=overrides.pop("full_name", f"Customer {n}"),
            **overrides,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make_user


@pytest.fixture
def make_order(db):
    def _make_order(user, total="100.00", **overrides):
        n = next(_sequence)
        order = Order(
            order_number=overrides.pop("order_number", f"ORD-{n:05d}"),
            user_id=user.id,
            subtotal=Decimal(str(overrides.pop("subtotal", total))),
            total=Decimal(str(total)),
            **overrides,
        )
        db.add(order)
        db.commit()
        db.refresh(order)
        return order
    return _make_order


@pytest.fixture
def make_promo(db, now):
    def _make_promo(**overrides):
        values = dict(
            code="SAVE20",
            description="20% off",
            discount_type=DiscountTypeEnum.PERCENTAGE,
            discount_value=Decimal("20"),
            min_order_amount=Decimal("0"),
            max_discount=None,
            start_date=now - timedelta(days=1),
            end_date=now + timedelta(days=30),
            usage_limit=None,
            used_count=0,
            per_user_limit=1,
            first_time_only=False,
            is_active=True,
        )
        values.update(overrides)
        promo = PromoCode(**values)
        db.add(promo)
        db.commit()
        db.refresh(promo)
        return promo
    return _make_promo


@pytest.fixture
def auth_headers():
    def _auth_headers(user):
        token = create_access_token({"sub": str(user.id)})
        return {"Authorization": f"Bearer {token}"}
    return _auth_headers


@pytest.fixture
def admin_headers():
    return {"X-Admin-API-Key": ADMIN_API_KEY}
