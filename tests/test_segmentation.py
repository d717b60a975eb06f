"""Tests for the segmentation orchestrator and bulk recalculation."""
import pytest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch
from crm_segmentation import segmentation
from crm_segmentation.errors import CustomerNotFoundError, NotFoundError
from crm_segmentation.models import Activity, Customer, Organization
from crm_segmentation.scoring import ChurnRisk
from crm_segmentation.segmentation import (
    calculate_customer_segmentation,
    get_recent_activities,
    recalculate_all_customers,
    update_customer_segmentation,
)
from conftest import NOW, make_customer


@pytest.fixture
def champion(db_session, organization):
    customer = make_customer(
        organization.id,
        email="champ@example.com",
        order_count=25,
        total_spent=Decimal("1500.00"),
        last_order_at=NOW - timedelta(days=10),
    )
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture
def never_ordered(db_session, organization):
    customer = make_customer(organization.id, email="ghost@example.com")
    db_session.add(customer)
    db_session.commit()
    return customer


def test_champion_snapshot(db_session, champion):
    snapshot = calculate_customer_segmentation(db_session, champion.id, NOW)

    assert snapshot.rfm_recency_days == 10
    assert snapshot.rfm_frequency_score == 5
    assert snapshot.rfm_monetary_score == 5
    assert snapshot.rfm_score == "555"
    assert snapshot.predicted_ltv == Decimal("3000")
    assert {"CHAMPION", "HIGH_VALUE", "FREQUENT_BUYER", "RECENT_CUSTOMER"} <= snapshot.segment_tags


def test_never_ordered_snapshot(db_session, never_ordered):
    snapshot = calculate_customer_segmentation(db_session, never_ordered.id, NOW)

    assert snapshot.rfm_recency_days == 999
    assert snapshot.rfm_score == "111"
    assert snapshot.engagement_score == 0
    assert snapshot.churn_risk == ChurnRisk.HIGH
    assert {"LOW_VALUE", "DISENGAGED", "NEW_CUSTOMER", "AT_RISK", "DORMANT"} <= snapshot.segment_tags


def test_missing_customer_raises_not_found(db_session, organization):
    with pytest.raises(CustomerNotFoundError) as exc_info:
        calculate_customer_segmentation(db_session, 4242, NOW)
    assert isinstance(exc_info.value, NotFoundError)
    assert exc_info.value.status_code == 404


def test_only_most_recent_activities_count(db_session, never_ordered):
    # 100 recent email opens followed (older) by 20 purchases that fall outside the window
    for i in range(20):
        db_session.add(Activity(customer_id=never_ordered.id, type="PURCHASE",
                                created_at=NOW - timedelta(days=200 + i)))
    for i in range(100):
        db_session.add(Activity(customer_id=never_ordered.id, type="EMAIL_OPENED",
                                created_at=NOW - timedelta(hours=i)))
    db_session.commit()

    recent = get_recent_activities(db_session, never_ordered.id)
    assert len(recent) == 100
    assert all(a.type == "EMAIL_OPENED" for a in recent)
    assert recent[0].created_at > recent[-1].created_at

    snapshot = calculate_customer_segmentation(db_session, never_ordered.id, NOW)
    assert snapshot.engagement_score == 15


def test_update_persists_full_snapshot(db_session, champion):
    update_customer_segmentation(db_session, champion.id, NOW)
    db_session.expire_all()

    stored = db_session.get(Customer, champion.id)
    assert stored.rfm_recency_days == 10
    assert stored.rfm_frequency_score == 5
    assert stored.rfm_monetary_score == 5
    assert stored.rfm_score == "555"
    assert stored.predicted_ltv == Decimal("3000")
    assert stored.churn_risk == "LOW"
    assert stored.segment_tags == sorted(stored.segment_tags)
    assert "CHAMPION" in stored.segment_tags
    assert stored.segmented_at == NOW


def test_update_replaces_previous_tags(db_session, champion):
    update_customer_segmentation(db_session, champion.id, NOW)

    champion.order_count = 0
    champion.total_spent = Decimal("0")
    champion.last_order_at = None
    db_session.commit()

    update_customer_segmentation(db_session, champion.id, NOW)
    db_session.expire_all()

    stored = db_session.get(Customer, champion.id)
    assert "CHAMPION" not in stored.segment_tags
    assert "HIGH_VALUE" not in stored.segment_tags
    assert stored.rfm_score == "111"
    assert stored.rfm_recency_days == 999
    assert stored.predicted_ltv == Decimal("0")


def test_recalculate_all_customers(db_session, organization, champion, never_ordered):
    result = recalculate_all_customers(db_session, organization.id, NOW)

    assert result.as_dict() == {'processed': 2, 'failed': 0}
    db_session.expire_all()
    assert db_session.get(Customer, champion.id).rfm_score == "555"
    assert db_session.get(Customer, never_ordered.id).churn_risk == "HIGH"


def test_recalculate_scoped_to_organization(db_session, organization, champion):
    other = Organization(name="Other Org")
    db_session.add(other)
    db_session.commit()
    outsider = make_customer(other.id, email="outsider@example.com", order_count=3)
    db_session.add(outsider)
    db_session.commit()

    result = recalculate_all_customers(db_session, organization.id, NOW)

    assert result.processed == 1
    db_session.expire_all()
    assert db_session.get(Customer, outsider.id).rfm_score is None


def test_recalculate_tolerates_failures(db_session, organization):
    customers = [make_customer(organization.id, email=f"c{i}@example.com", order_count=i) for i in range(5)]
    db_session.add_all(customers)
    db_session.commit()
    failing_id = customers[2].id

    original = segmentation.update_customer_segmentation

    def flaky(db, customer_id, now=None):
        if customer_id == failing_id:
            raise RuntimeError("store unavailable")
        return original(db, customer_id, now)

    with patch.object(segmentation, 'update_customer_segmentation', side_effect=flaky):
        result = recalculate_all_customers(db_session, organization.id, NOW)

    assert result.as_dict() == {'processed': 4, 'failed': 1}
    assert result.failed_customer_ids == [failing_id]
    db_session.expire_all()
    assert db_session.get(Customer, customers[4].id).rfm_score is not None
    assert db_session.get(Customer, failing_id).rfm_score is None


def test_recalculate_empty_organization(db_session, organization):
    assert recalculate_all_customers(db_session, organization.id, NOW).as_dict() == {'processed': 0, 'failed': 0}
