import uuid
from sqlalchemy import Column, Integer, Float, String, Text, Boolean, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from niramay.core.database import Base

# Enumerated columns are plain strings: other clients write to these tables directly,
# and out-of-range values must be storable so the integrity scan can report them.


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Profile(Base):
    __tablename__ = "profiles"
    # Same id as the Supabase Auth user
    id = Column(String, primary_key=True, default=_uuid)
    email = Column(String, index=True, nullable=True)
    name = Column(String, nullable=True)
    role = Column(String, default="citizen", index=True)
    phone = Column(String, nullable=True)
    aadhar = Column(String, nullable=True, index=True)
    address = Column(Text, nullable=True)
    ward = Column(String, nullable=True)
    city = Column(String, nullable=True)
    eco_points = Column(Integer, default=0, nullable=False)

    # Subworker fields
    status = Column(String, nullable=True)
    assigned_ward = Column(String, nullable=True)
    current_task_id = Column(String, nullable=True)
    task_completion_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)

    reports = relationship("Report", back_populates="user", foreign_keys="Report.user_id")


class Report(Base):
    __tablename__ = "reports"
    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("profiles.id"), index=True)
    title = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    images = Column(JSON, default=list)  # public storage URLs
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    address = Column(Text, nullable=True)
    ward = Column(String, nullable=True, index=True)
    status = Column(String, default="submitted", index=True)
    priority_level = Column(String, default="medium")
    eco_points = Column(Integer, default=20)
    ai_analysis = Column(JSON, nullable=True)

    assigned_to = Column(String, nullable=True, index=True)
    proof_image = Column(String, nullable=True)
    proof_lat = Column(Float, nullable=True)
    proof_lng = Column(Float, nullable=True)
    rejection_comment = Column(Text, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)

    user = relationship("Profile", back_populates="reports", foreign_keys=[user_id])


class EcoStoreItem(Base):
    __tablename__ = "eco_store_items"
    id = Column(String, primary_key=True, default=_uuid)
    name = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    point_cost = Column(Integer, nullable=False)
    quantity = Column(Integer, default=0, nullable=False)
    image_url = Column(String, nullable=True)
    category = Column(String, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)


class Redemption(Base):
    __tablename__ = "redemptions"
    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("profiles.id"), index=True)
    item_id = Column(String, ForeignKey("eco_store_items.id"), index=True)
    quantity = Column(Integer, nullable=False)
    total_points_spent = Column(Integer, nullable=False)
    status = Column(String, default="pending")
    delivery_address = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)

    item = relationship("EcoStoreItem")


class RewardTransaction(Base):
    __tablename__ = "reward_transactions"
    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("profiles.id"), index=True)
    report_id = Column(String, nullable=True)
    points = Column(Integer, nullable=False)  # positive = earned, negative = spent
    created_at = Column(DateTime(timezone=True), default=_now)


class Notification(Base):
    __tablename__ = "notifications"
    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("profiles.id"), index=True)
    title = Column(String, nullable=True)
    message = Column(Text, nullable=True)
    type = Column(String, default="info")
    related_report_id = Column(String, nullable=True)
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=_now)
