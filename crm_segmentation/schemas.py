"""Pydantic schemas for API request/response validation."""
from pydantic import BaseModel
from typing import Optional, List, Dict
from datetime import datetime
from decimal import Decimal


class CustomerBase(BaseModel):
    """Base customer schema."""
    organization_id: int
    email: Optional[str] = None
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class SegmentationSnapshotResponse(BaseModel):
    """Computed segmentation fields of one customer."""
    customer_id: int
    rfm_recency_days: int
    rfm_frequency_score: int
    rfm_monetary_score: int
    rfm_score: str
    engagement_score: int
    predicted_ltv: Decimal
    churn_risk: str
    segment_tags: List[str]


class CustomerDetailResponse(CustomerBase):
    """Customer with commerce facts and the stored segmentation snapshot."""
    id: int
    total_spent: Decimal
    order_count: int
    last_order_at: Optional[datetime] = None
    loyalty_member: bool
    loyalty_points: int
    loyalty_tier: Optional[str] = None
    rfm_recency_days: Optional[int] = None
    rfm_frequency_score: Optional[int] = None
    rfm_monetary_score: Optional[int] = None
    rfm_score: Optional[str] = None
    engagement_score: Optional[int] = None
    predicted_ltv: Optional[Decimal] = None
    churn_risk: Optional[str] = None
    segment_tags: List[str] = []
    segmented_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SegmentResponse(BaseModel):
    """Segment with cached statistics."""
    id: int
    organization_id: int
    name: str
    description: Optional[str] = None
    segment_type: str
    is_ai_powered: bool
    auto_update: bool
    customer_count: int
    avg_lifetime_value: float
    avg_engagement: float
    last_calculated: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SegmentListResponse(BaseModel):
    organization_id: int
    segments: List[SegmentResponse]


class SegmentAssignmentStats(BaseModel):
    """Outcome of one segment in an assignment pass."""
    segment_id: int
    name: str
    segment_type: str
    customer_count: int
    avg_ltv: float
    avg_engagement: float


class SegmentAssignmentResponse(BaseModel):
    organization_id: int
    segments: List[SegmentAssignmentStats]


class RecalculationResponse(BaseModel):
    """Schema for the recalculate-and-assign response."""
    organization_id: int
    processed: int
    failed: int
    segments: List[SegmentAssignmentStats]
    message: str


class SegmentStats(BaseModel):
    """Aggregated member statistics used by the segment insight."""
    customer_count: int
    avg_spend: float
    median_spend: float
    avg_orders: float
    avg_engagement: float
    avg_ltv: float
    churn_high_pct: int
    churn_medium_pct: int
    churn_low_pct: int
    tier_breakdown: Dict[str, int]
    avg_days_since_last_order: int


class SegmentInsightResponse(BaseModel):
    segment_id: int
    segment_label: str
    description: str
    key_characteristics: List[str]
    recommended_actions: List[str]
    estimated_ltv: float
    churn_probability: float
    stats: SegmentStats


class OrganizationRunResult(BaseModel):
    organization_id: int
    organization_name: str
    success: bool
    processed: int = 0
    failed: int = 0
    error: Optional[str] = None


class CronRunResponse(BaseModel):
    """Schema for the all-organizations segmentation run."""
    status: str
    organizations_processed: int
    total_customers_processed: int
    total_failed: int
    results: List[OrganizationRunResult]
    timestamp: datetime


class HealthResponse(BaseModel):
    """Schema for health check response."""
    status: str
    database: Optional[str] = None
