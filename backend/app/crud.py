from sqlalchemy.orm import Session
from sqlalchemy import select, desc
from datetime import datetime, timezone
from typing import Any
from .models import Prediction
from .schemas import LocationAnalysis


def create_prediction(db: Session, device_id: str, analysis: LocationAnalysis, snapshot: dict[str, Any]) -> Prediction:
    p = Prediction(
        device_id=device_id,
        prediction=analysis.prediction,
        confidence=min(1.0, max(0.0, analysis.confidence)),
        sensor_data_snapshot=snapshot,
        timestamp=datetime.now(timezone.utc),
    )
    db.add(p)
    db.commit()
    db.refresh(p)
    return p

def get_prediction(db: Session, prediction_id: str) -> Prediction | None:
    return db.get(Prediction, prediction_id)

def list_predictions(db: Session, device_id: str, limit: int | None = None) -> list[Prediction]:
    stmt = select(Prediction).where(Prediction.device_id == device_id).order_by(desc(Prediction.timestamp))
    if limit:
        stmt = stmt.limit(limit)
    return list(db.execute(stmt).scalars().all())

def confirm_prediction(db: Session, prediction_id: str, is_correct: bool, actual_location: str) -> Prediction | None:
    """Record the user's verdict; last write wins. None when the id is unknown."""
    p = get_prediction(db, prediction_id)
    if not p:
        return None

    p.user_confirmation = "correct" if is_correct else "incorrect"
    p.actual_location = actual_location
    p.confirmed_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(p)
    return p
