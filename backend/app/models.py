import uuid
from sqlalchemy import JSON, CheckConstraint, Float, String, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from .database import Base

def utc_now():
    return datetime.now(timezone.utc)

def new_id():
    return str(uuid.uuid4())

class Prediction(Base):
    """Indoor/outdoor guesses per device, with the user's verdict once given"""
    __tablename__ = "location_predictions"
    __table_args__ = (
        CheckConstraint("confidence >= 0 AND confidence <= 1", name="ck_confidence_range"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    device_id: Mapped[str] = mapped_column(String(64), index=True)
    prediction: Mapped[str] = mapped_column(String(16))  # indoor/outdoor
    confidence: Mapped[float] = mapped_column(Float)  # 0-1
    sensor_data_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    # Confirmation, all three set together
    user_confirmation: Mapped[str | None] = mapped_column(String(16), nullable=True)  # correct/incorrect
    actual_location: Mapped[str | None] = mapped_column(String(16), nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


Index("ix_prediction_device_ts", Prediction.device_id, Prediction.timestamp)
