"""Per-customer segmentation snapshot and bulk recalculation."""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from crm_segmentation.config import settings
from crm_segmentation.errors import CustomerNotFoundError
from crm_segmentation.logging_config import get_logger
from crm_segmentation.models import Activity, Customer
from crm_segmentation.scoring import (
    ChurnRisk,
    assess_churn_risk,
    calculate_engagement_score,
    calculate_rfm,
    days_since_last_order,
    predict_ltv,
)
from crm_segmentation.tags import generate_segment_tags

logger = get_logger(__name__)


@dataclass(frozen=True)
class SegmentationSnapshot:
    """All computed segmentation fields of one customer."""
    customer_id: int
    rfm_recency_days: int
    rfm_frequency_score: int
    rfm_monetary_score: int
    rfm_score: str
    engagement_score: int
    predicted_ltv: Decimal
    churn_risk: ChurnRisk
    segment_tags: frozenset

    def as_column_values(self) -> dict:
        """Column values for the customers table; tags persist sorted."""
        return {
            'rfm_recency_days': self.rfm_recency_days,
            'rfm_frequency_score': self.rfm_frequency_score,
            'rfm_monetary_score': self.rfm_monetary_score,
            'rfm_score': self.rfm_score,
            'engagement_score': self.engagement_score,
            'predicted_ltv': self.predicted_ltv,
            'churn_risk': self.churn_risk.value,
            'segment_tags': sorted(self.segment_tags),
        }


@dataclass
class RecalculationResult:
    processed: int = 0
    failed: int = 0
    failed_customer_ids: List[int] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {'processed': self.processed, 'failed': self.failed}


def get_recent_activities(db: Session, customer_id: int, limit: Optional[int] = None) -> List[Activity]:
    """Most recent activities of a customer, newest first."""
    if limit is None:
        limit = settings.ACTIVITY_HISTORY_LIMIT
    return db.query(Activity).filter(
        Activity.customer_id == customer_id
    ).order_by(
        Activity.created_at.desc(),
        Activity.id.desc()
    ).limit(limit).all()


def calculate_customer_segmentation(
    db: Session,
    customer_id: int,
    now: Optional[datetime] = None
) -> SegmentationSnapshot:
    """
    Calculate all segmentation metrics for a customer.

    Args:
        db: Database session
        customer_id: Primary key of the customer
        now: Reference time (default: now)

    Returns:
        SegmentationSnapshot (not persisted)

    Raises:
        CustomerNotFoundError: if the customer does not exist
    """
    if now is None:
        now = datetime.now()

    customer = db.get(Customer, customer_id)
    if customer is None:
        raise CustomerNotFoundError(customer_id)

    activities = get_recent_activities(db, customer_id)

    rfm = calculate_rfm(customer, now)
    engagement_score = calculate_engagement_score(customer, activities)
    predicted_ltv = predict_ltv(customer, rfm)
    churn_risk = assess_churn_risk(customer, engagement_score, now)
    segment_tags = generate_segment_tags(customer, rfm, engagement_score, churn_risk)

    return SegmentationSnapshot(
        customer_id=customer.id,
        rfm_recency_days=days_since_last_order(customer.last_order_at, now),
        rfm_frequency_score=rfm.frequency,
        rfm_monetary_score=rfm.monetary,
        rfm_score=rfm.code,
        engagement_score=engagement_score,
        predicted_ltv=predicted_ltv,
        churn_risk=churn_risk,
        segment_tags=segment_tags,
    )


def update_customer_segmentation(
    db: Session,
    customer_id: int,
    now: Optional[datetime] = None
) -> SegmentationSnapshot:
    """Calculate the snapshot and overwrite every segmentation field in one UPDATE."""
    if now is None:
        now = datetime.now()

    snapshot = calculate_customer_segmentation(db, customer_id, now)

    db.execute(
        update(Customer)
        .where(Customer.id == customer_id)
        .values(segmented_at=now, **snapshot.as_column_values())
        .execution_options(synchronize_session="fetch")
    )
    db.commit()

    return snapshot


def recalculate_all_customers(
    db: Session,
    organization_id: int,
    now: Optional[datetime] = None
) -> RecalculationResult:
    """
    Recalculate segmentation for every customer of an organization.

    Customers are processed one at a time. A failing customer is rolled
    back, logged and counted; the run always continues.
    """
    if now is None:
        now = datetime.now()

    customer_ids = [
        row.id for row in db.query(Customer.id).filter(
            Customer.organization_id == organization_id
        ).order_by(Customer.id).all()
    ]

    result = RecalculationResult()
    for customer_id in customer_ids:
        try:
            update_customer_segmentation(db, customer_id, now)
            result.processed += 1
        except Exception:
            db.rollback()
            logger.exception(
                "Failed to segment customer",
                extra={'customer_id': customer_id, 'organization_id': organization_id}
            )
            result.failed += 1
            result.failed_customer_ids.append(customer_id)

    logger.info(
        "Segmentation recalculated",
        extra={
            'organization_id': organization_id,
            'processed': result.processed,
            'failed': result.failed,
        }
    )
    return result
