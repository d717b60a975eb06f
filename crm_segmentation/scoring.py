"""Per-customer metric calculators: RFM, engagement, predicted LTV, churn risk."""
import enum
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from crm_segmentation.config import settings


# Activity types that contribute to the engagement score
EMAIL_OPENED = "EMAIL_OPENED"
EMAIL_CLICKED = "EMAIL_CLICKED"
SMS_RECEIVED = "SMS_RECEIVED"
PURCHASE = "PURCHASE"
CHAT_STARTED = "CHAT_STARTED"

# (activity type, points per event, maximum contribution)
ENGAGEMENT_WEIGHTS = (
    (EMAIL_OPENED, 2, 15),
    (EMAIL_CLICKED, 5, 10),
    (SMS_RECEIVED, 3, 15),
    (PURCHASE, 6, 30),
    (CHAT_STARTED, 2, 10),
)
MAX_ENGAGEMENT_SCORE = 100

# Upper bounds in days for recency scores 5..2; anything older scores 1
RECENCY_THRESHOLDS = ((30, 5), (90, 4), (180, 3), (365, 2))
# Lower bounds for frequency and monetary scores 5..2
FREQUENCY_THRESHOLDS = ((20, 5), (10, 4), (5, 3), (2, 2))
MONETARY_THRESHOLDS = ((Decimal(1000), 5), (Decimal(500), 4), (Decimal(200), 3), (Decimal(50), 2))


class ChurnRisk(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


@dataclass(frozen=True)
class RFMScores:
    """Recency, frequency and monetary scores, each in 1..5."""
    recency: int
    frequency: int
    monetary: int

    @property
    def code(self) -> str:
        """Three-digit RFM code, e.g. '455'."""
        return f"{self.recency}{self.frequency}{self.monetary}"


def to_decimal(value) -> Decimal:
    """Coerce a money amount (Decimal, int, float or None) to Decimal."""
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def days_since_last_order(last_order_at: Optional[datetime], now: Optional[datetime] = None) -> int:
    """
    Whole days elapsed since the last order.

    Returns NO_ORDER_RECENCY_DAYS (999) when the customer never ordered.
    Orders stamped in the future count as today.
    """
    if last_order_at is None:
        return settings.NO_ORDER_RECENCY_DAYS
    if now is None:
        now = datetime.now()
    return max((now - last_order_at).days, 0)


def calculate_rfm(customer, now: Optional[datetime] = None) -> RFMScores:
    """
    Calculate RFM scores for a customer.

    Thresholds are inclusive and checked from the highest tier down.
    A customer without a last order gets a recency score of 1.
    """
    recency = 1
    if customer.last_order_at is not None:
        days = days_since_last_order(customer.last_order_at, now)
        for max_days, score in RECENCY_THRESHOLDS:
            if days <= max_days:
                recency = score
                break

    frequency = 1
    order_count = customer.order_count or 0
    for min_orders, score in FREQUENCY_THRESHOLDS:
        if order_count >= min_orders:
            frequency = score
            break

    monetary = 1
    total_spent = to_decimal(customer.total_spent)
    for min_spent, score in MONETARY_THRESHOLDS:
        if total_spent >= min_spent:
            monetary = score
            break

    return RFMScores(recency=recency, frequency=frequency, monetary=monetary)


def count_activities(activities: Iterable) -> Counter:
    """Count activities by type."""
    return Counter(activity.type for activity in activities)


def calculate_engagement_score(customer, activities: Iterable) -> int:
    """
    Calculate an engagement score in 0..100.

    Each activity category is capped before summing:
    email opens 15, clicks 10, SMS 15, purchases 30, chats 10.
    Loyalty members get 10 points, plus 5 above 100 points and
    another 5 above 500 points.
    """
    counts = count_activities(activities)
    score = 0

    for activity_type, points, cap in ENGAGEMENT_WEIGHTS:
        score += min(counts[activity_type] * points, cap)

    if customer.loyalty_member:
        score += 10
        loyalty_points = customer.loyalty_points or 0
        if loyalty_points > 100:
            score += 5
        if loyalty_points > 500:
            score += 5

    return min(score, MAX_ENGAGEMENT_SCORE)


def predict_ltv(customer, rfm: RFMScores) -> Decimal:
    """
    Predict customer lifetime value from total spend and RFM.

    ltv = total_spent * (1 + avg(R, F, M) / 5), rounded half up to a whole
    amount. Average order value is not part of the formula.
    """
    total_spent = to_decimal(customer.total_spent)
    rfm_average = Decimal(rfm.recency + rfm.frequency + rfm.monetary) / 3
    growth_factor = 1 + rfm_average / 5
    return (total_spent * growth_factor).quantize(Decimal(1), rounding=ROUND_HALF_UP)


def assess_churn_risk(customer, engagement_score: int, now: Optional[datetime] = None) -> ChurnRisk:
    """Classify churn risk; the HIGH rule is checked before MEDIUM."""
    days = days_since_last_order(customer.last_order_at, now)

    if days > 180 and engagement_score < 20:
        return ChurnRisk.HIGH
    if days > 90 and engagement_score < 40:
        return ChurnRisk.MEDIUM
    return ChurnRisk.LOW
