"""Shared test configuration: SQLite database and common fixtures."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_crm_segmentation.db")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")

import pytest
from datetime import datetime
from decimal import Decimal
from crm_segmentation.db import Base, engine, SessionLocal
from crm_segmentation import models  # noqa: F401  (registers tables)
from crm_segmentation.models import Organization, Customer


NOW = datetime(2024, 1, 15, 12, 0, 0)


@pytest.fixture
def db_session():
    """Create a test database session."""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    yield db
    db.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def organization(db_session):
    org = Organization(name="Acme Outdoor")
    db_session.add(org)
    db_session.commit()
    return org


def make_customer(organization_id, **overrides):
    """Customer with neutral defaults; keyword arguments override fields."""
    values = dict(
        organization_id=organization_id,
        email=None,
        total_spent=Decimal("0.00"),
        order_count=0,
        last_order_at=None,
        loyalty_member=False,
        loyalty_points=0,
        loyalty_tier=None,
        segment_tags=[],
    )
    values.update(overrides)
    return Customer(**values)
