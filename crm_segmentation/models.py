"""SQLAlchemy database models."""
from sqlalchemy import (
    Column, Integer, String, Numeric, Float, Boolean, DateTime, JSON, Table,
    ForeignKey, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from datetime import datetime
from crm_segmentation.db import Base


# Many-to-many: segment membership
segment_customers = Table(
    "segment_customers",
    Base.metadata,
    Column("segment_id", Integer, ForeignKey("segments.id", ondelete="CASCADE"), primary_key=True),
    Column("customer_id", Integer, ForeignKey("customers.id", ondelete="CASCADE"), primary_key=True),
)


class Organization(Base):
    """Tenant owning customers and segments."""
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.now, nullable=False)

    customers = relationship("Customer", back_populates="organization", cascade="all, delete-orphan")
    segments = relationship("Segment", back_populates="organization", cascade="all, delete-orphan")


class Customer(Base):
    """Customer model with the computed segmentation snapshot."""
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), index=True, nullable=False)
    email = Column(String, nullable=True, index=True)
    phone = Column(String, nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.now, nullable=False)

    # Commerce facts
    total_spent = Column(Numeric(12, 2), default=0, nullable=False)
    order_count = Column(Integer, default=0, nullable=False)
    last_order_at = Column(DateTime, nullable=True)

    # Loyalty facts
    loyalty_member = Column(Boolean, default=False, nullable=False)
    loyalty_points = Column(Integer, default=0, nullable=False)
    loyalty_tier = Column(String, nullable=True)  # BRONZE ... DIAMOND or org-defined

    # Segmentation snapshot, replaced as a whole on every recalculation
    rfm_recency_days = Column(Integer, nullable=True)
    rfm_frequency_score = Column(Integer, nullable=True)
    rfm_monetary_score = Column(Integer, nullable=True)
    rfm_score = Column(String(3), nullable=True)
    engagement_score = Column(Integer, nullable=True)
    predicted_ltv = Column(Numeric(12, 2), nullable=True)
    churn_risk = Column(String, nullable=True)  # LOW / MEDIUM / HIGH
    segment_tags = Column(JSON, default=list, nullable=False)
    segmented_at = Column(DateTime, nullable=True)

    # Relationships
    organization = relationship("Organization", back_populates="customers")
    activities = relationship("Activity", back_populates="customer", cascade="all, delete-orphan")
    segments = relationship("Segment", secondary=segment_customers, back_populates="customers")

    __table_args__ = (
        Index('idx_customer_org_email', 'organization_id', 'email'),
    )


class Activity(Base):
    """Customer activity event (email opens, purchases, chats, ...)."""
    __tablename__ = "activities"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), index=True, nullable=False)
    type = Column(String, nullable=False)  # e.g. 'EMAIL_OPENED', 'PURCHASE'
    created_at = Column(DateTime, default=datetime.now, nullable=False, index=True)

    customer = relationship("Customer", back_populates="activities")

    __table_args__ = (
        Index('idx_activity_customer_created', 'customer_id', 'created_at'),
    )


class Segment(Base):
    """Named customer segment with cached aggregate statistics."""
    __tablename__ = "segments"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), index=True, nullable=False)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    segment_type = Column(String, nullable=False)
    is_ai_powered = Column(Boolean, default=False, nullable=False)
    auto_update = Column(Boolean, default=False, nullable=False)

    customer_count = Column(Integer, default=0, nullable=False)
    avg_lifetime_value = Column(Float, default=0.0, nullable=False)
    avg_engagement = Column(Float, default=0.0, nullable=False)
    last_calculated = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.now, nullable=False)

    organization = relationship("Organization", back_populates="segments")
    customers = relationship("Customer", secondary=segment_customers, back_populates="segments")

    # Unique constraint: one segment per type per organization
    __table_args__ = (
        UniqueConstraint('organization_id', 'segment_type', name='uq_segment_org_type'),
    )
