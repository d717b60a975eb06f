"""AI segment catalog, segment assignment and rule-based segment insight."""
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

import pandas as pd
from sqlalchemy.orm import Session

from crm_segmentation import tags as tag_names
from crm_segmentation.errors import SegmentNotFoundError
from crm_segmentation.logging_config import get_logger
from crm_segmentation.models import Customer, Segment
from crm_segmentation.scoring import ChurnRisk, days_since_last_order

logger = get_logger(__name__)


@dataclass(frozen=True)
class SegmentDefinition:
    """A built-in segment: customers carrying ANY of `tags` are members."""
    name: str
    segment_type: str
    tags: frozenset
    description: str = ""


DEFAULT_SEGMENT_CATALOG = (
    SegmentDefinition(
        name="Champions",
        segment_type="CHAMPION",
        tags=frozenset({tag_names.CHAMPION}),
        description="Best customers - high value, high frequency, recent purchases",
    ),
    SegmentDefinition(
        name="High Value",
        segment_type="HIGH_VALUE",
        tags=frozenset({tag_names.HIGH_VALUE, tag_names.VIP}),
        description="Customers with highest spending",
    ),
    SegmentDefinition(
        name="At Risk",
        segment_type="AT_RISK",
        tags=frozenset({tag_names.AT_RISK, tag_names.DORMANT}),
        description="Customers at risk of churning",
    ),
    SegmentDefinition(
        name="Highly Engaged",
        segment_type="ENGAGED",
        tags=frozenset({tag_names.HIGHLY_ENGAGED}),
        description="Active customers with high engagement",
    ),
    SegmentDefinition(
        name="New Customers",
        segment_type="NEW",
        tags=frozenset({tag_names.NEW_CUSTOMER}),
        description="Recently acquired customers",
    ),
    SegmentDefinition(
        name="Frequent Buyers",
        segment_type="FREQUENT",
        tags=frozenset({tag_names.FREQUENT_BUYER}),
        description="Customers who purchase regularly",
    ),
)


@dataclass(frozen=True)
class SegmentAssignmentResult:
    segment_id: int
    name: str
    segment_type: str
    customer_count: int
    avg_ltv: float
    avg_engagement: float


def matches(definition: SegmentDefinition, customer_tags: Optional[Iterable[str]]) -> bool:
    """True when the customer carries at least one of the definition's tags."""
    return not definition.tags.isdisjoint(customer_tags or ())


def _mean(values: List[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def get_or_create_segment(
    db: Session,
    organization_id: int,
    definition: SegmentDefinition,
    now: datetime
) -> Segment:
    """
    Find the organization's segment of this type, creating it if absent.

    The (organization_id, segment_type) unique constraint rejects a
    concurrent duplicate insert at flush time.
    """
    segment = db.query(Segment).filter(
        Segment.organization_id == organization_id,
        Segment.segment_type == definition.segment_type
    ).first()

    if segment is None:
        segment = Segment(
            organization_id=organization_id,
            name=definition.name,
            description=definition.description,
            segment_type=definition.segment_type,
            is_ai_powered=True,
            auto_update=True,
            customer_count=0,
            avg_lifetime_value=0.0,
            avg_engagement=0.0,
        )
        db.add(segment)
        db.flush()
        logger.info(
            "Created AI segment",
            extra={'organization_id': organization_id, 'segment_type': definition.segment_type}
        )

    segment.last_calculated = now
    return segment


def assign_to_segments(
    db: Session,
    organization_id: int,
    catalog: Sequence[SegmentDefinition] = DEFAULT_SEGMENT_CATALOG,
    now: Optional[datetime] = None
) -> List[SegmentAssignmentResult]:
    """
    Map the tagged customers of an organization onto the segment catalog.

    For every definition the segment row is found or created, its member
    list is replaced by exactly the matching customers and its cached
    statistics are recomputed. Running it twice on unchanged tags gives
    identical results.
    """
    if now is None:
        now = datetime.now()

    customers = db.query(Customer).filter(
        Customer.organization_id == organization_id
    ).order_by(Customer.id).all()

    results = []
    for definition in catalog:
        segment = get_or_create_segment(db, organization_id, definition, now)

        members = [c for c in customers if matches(definition, c.segment_tags)]
        avg_ltv = _mean([float(c.predicted_ltv or 0) for c in members])
        avg_engagement = _mean([float(c.engagement_score or 0) for c in members])

        segment.customers = members
        segment.customer_count = len(members)
        segment.avg_lifetime_value = avg_ltv
        segment.avg_engagement = avg_engagement

        results.append(SegmentAssignmentResult(
            segment_id=segment.id,
            name=segment.name,
            segment_type=segment.segment_type,
            customer_count=segment.customer_count,
            avg_ltv=segment.avg_lifetime_value,
            avg_engagement=segment.avg_engagement,
        ))

    db.commit()

    logger.info(
        "Segments assigned",
        extra={'organization_id': organization_id, 'segments': len(results)}
    )
    return results


def aggregate_customer_stats(customers: Sequence[Customer], now: Optional[datetime] = None) -> dict:
    """
    Aggregate statistics over a group of customers.

    Churn percentages are whole numbers summing to 100; average days since
    last order ignores customers who never ordered and falls back to the
    no-order sentinel when nobody ordered.
    """
    if now is None:
        now = datetime.now()

    df = pd.DataFrame([
        {
            'total_spent': float(c.total_spent or 0),
            'order_count': c.order_count or 0,
            'engagement_score': c.engagement_score or 0,
            'predicted_ltv': float(c.predicted_ltv or 0),
            'churn_risk': c.churn_risk or ChurnRisk.LOW.value,
            'loyalty_tier': c.loyalty_tier or "None",
            'days_since_last_order': (
                days_since_last_order(c.last_order_at, now) if c.last_order_at else None
            ),
        }
        for c in customers
    ], columns=[
        'total_spent', 'order_count', 'engagement_score', 'predicted_ltv',
        'churn_risk', 'loyalty_tier', 'days_since_last_order'
    ])

    n = len(df)
    if n == 0:
        return {
            'customer_count': 0,
            'avg_spend': 0.0,
            'median_spend': 0.0,
            'avg_orders': 0.0,
            'avg_engagement': 0.0,
            'avg_ltv': 0.0,
            'churn_high_pct': 0,
            'churn_medium_pct': 0,
            'churn_low_pct': 100,
            'tier_breakdown': {},
            'avg_days_since_last_order': days_since_last_order(None),
        }

    churn_counts = df['churn_risk'].value_counts()
    churn_high = round(churn_counts.get(ChurnRisk.HIGH.value, 0) / n * 100)
    churn_medium = round(churn_counts.get(ChurnRisk.MEDIUM.value, 0) / n * 100)

    days = df['days_since_last_order'].dropna()
    avg_days = int(round(days.mean())) if len(days) else days_since_last_order(None)

    return {
        'customer_count': n,
        'avg_spend': float(df['total_spent'].mean()),
        'median_spend': float(df['total_spent'].median()),
        'avg_orders': float(df['order_count'].mean()),
        'avg_engagement': float(df['engagement_score'].mean()),
        'avg_ltv': float(df['predicted_ltv'].mean()),
        'churn_high_pct': int(churn_high),
        'churn_medium_pct': int(churn_medium),
        'churn_low_pct': int(100 - churn_high - churn_medium),
        'tier_breakdown': {str(k): int(v) for k, v in df['loyalty_tier'].value_counts().items()},
        'avg_days_since_last_order': avg_days,
    }


def segment_insight(db: Session, segment_id: int, now: Optional[datetime] = None) -> dict:
    """
    Rule-based insight for a segment's current members.

    Raises:
        SegmentNotFoundError: if the segment does not exist
    """
    segment = db.get(Segment, segment_id)
    if segment is None:
        raise SegmentNotFoundError(segment_id)

    stats = aggregate_customer_stats(segment.customers, now)
    high_churn = stats['churn_high_pct'] > 30
    high_value = stats['avg_spend'] > 200

    return {
        'segment_id': segment.id,
        'segment_label': segment.name,
        'description': (
            f"This segment contains {stats['customer_count']} customers with an average spend of "
            f"${stats['avg_spend']:.0f} and {stats['avg_engagement']:.0f}% engagement score."
        ),
        'key_characteristics': [
            f"Average {stats['avg_orders']:.1f} orders per customer",
            "High-value spenders" if high_value else "Standard-value spenders",
            "Elevated churn risk, needs attention" if high_churn else "Healthy retention levels",
        ],
        'recommended_actions': [
            "Launch a win-back email campaign with exclusive offers" if high_churn
            else "Send a loyalty appreciation message",
            "Offer VIP early access to new products" if high_value
            else "Encourage larger baskets with bundle deals",
            "Personalize communications based on purchase history",
        ],
        'estimated_ltv': stats['avg_ltv'],
        'churn_probability': stats['churn_high_pct'] / 100,
        'stats': stats,
    }
