"""Segment tag generation from computed customer metrics."""
from decimal import Decimal
from typing import FrozenSet

from crm_segmentation.scoring import ChurnRisk, RFMScores, to_decimal


HIGH_VALUE = "HIGH_VALUE"
MEDIUM_VALUE = "MEDIUM_VALUE"
LOW_VALUE = "LOW_VALUE"
HIGHLY_ENGAGED = "HIGHLY_ENGAGED"
MODERATELY_ENGAGED = "MODERATELY_ENGAGED"
DISENGAGED = "DISENGAGED"
FREQUENT_BUYER = "FREQUENT_BUYER"
OCCASIONAL_BUYER = "OCCASIONAL_BUYER"
RECENT_CUSTOMER = "RECENT_CUSTOMER"
DORMANT = "DORMANT"
AT_RISK = "AT_RISK"
CHAMPION = "CHAMPION"
NEW_CUSTOMER = "NEW_CUSTOMER"
LOYALTY_MEMBER = "LOYALTY_MEMBER"
VIP = "VIP"

VIP_TIERS = frozenset({"DIAMOND", "PLATINUM"})


def generate_segment_tags(
    customer,
    rfm: RFMScores,
    engagement_score: int,
    churn_risk: ChurnRisk
) -> FrozenSet[str]:
    """
    Derive the set of segment tags for a customer.

    Every rule is evaluated independently; within the value and engagement
    tiers only the first matching band applies, and the middle bands
    (spend 50..500, engagement 20..40) produce no tag.
    """
    tags = set()
    total_spent = to_decimal(customer.total_spent)
    order_count = customer.order_count or 0

    # Value tier
    if total_spent >= Decimal(1000):
        tags.add(HIGH_VALUE)
    elif total_spent >= Decimal(500):
        tags.add(MEDIUM_VALUE)
    elif total_spent < Decimal(50):
        tags.add(LOW_VALUE)

    # Engagement tier
    if engagement_score >= 70:
        tags.add(HIGHLY_ENGAGED)
    elif engagement_score >= 40:
        tags.add(MODERATELY_ENGAGED)
    elif engagement_score < 20:
        tags.add(DISENGAGED)

    if rfm.frequency >= 4:
        tags.add(FREQUENT_BUYER)
    elif rfm.frequency <= 2 and order_count > 0:
        tags.add(OCCASIONAL_BUYER)

    if rfm.recency >= 4:
        tags.add(RECENT_CUSTOMER)
    elif rfm.recency <= 2:
        tags.add(DORMANT)

    if churn_risk == ChurnRisk.HIGH:
        tags.add(AT_RISK)

    if rfm.recency >= 4 and rfm.frequency >= 4 and rfm.monetary >= 4:
        tags.add(CHAMPION)

    if order_count <= 1:
        tags.add(NEW_CUSTOMER)

    if customer.loyalty_member:
        tags.add(LOYALTY_MEMBER)
        if customer.loyalty_tier in VIP_TIERS:
            tags.add(VIP)

    return frozenset(tags)
