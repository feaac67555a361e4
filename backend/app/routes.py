import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from typing import List

from .analysis import analyze_location, summarize_readings
from .core import SensorCore
from .database import get_db
from .registry import new_device_id
from .schemas import (
    ConfirmRequest, DeviceCreate, DeviceOut, DeviceStatusUpdate, PredictionOut,
    PredictionResponse, ReadingIn, ReadingOut,
)
from . import crud

logger = logging.getLogger(__name__)

router = APIRouter()


def get_core(request: Request) -> SensorCore:
    return request.app.state.core


def require_device(core: SensorCore, device_id: str):
    device = core.registry.get(device_id)
    if not device:
        raise HTTPException(status_code=404, detail=f"Device not found: {device_id}")
    return device


@router.get("/health")
def health(request: Request):
    core = get_core(request)
    return {
        "ok": True,
        "name": request.app.state.settings.APP_NAME,
        "devices": len(core.registry),
        "connections": len(core.broadcaster.peers),
    }


# Devices
# Mutating routes are async so they run on the event loop that owns the core.

@router.get("/api/devices", response_model=List[DeviceOut])
async def list_devices(core: SensorCore = Depends(get_core)):
    return core.registry.list_all()


@router.post("/api/devices", response_model=DeviceOut)
async def create_device(device: DeviceCreate, core: SensorCore = Depends(get_core)):
    """Create a device, or update the name and user agent of an existing one"""
    device_id = device.id or new_device_id()
    created = core.registry.upsert(device_id, device.name, device.user_agent)
    core.broadcaster.broadcast_device_list()
    return created


@router.get("/api/devices/{device_id}", response_model=DeviceOut)
async def get_device(device_id: str, core: SensorCore = Depends(get_core)):
    return require_device(core, device_id)


@router.patch("/api/devices/{device_id}", response_model=DeviceOut)
async def update_device_status(device_id: str, status: DeviceStatusUpdate, core: SensorCore = Depends(get_core)):
    device = core.registry.update_status(device_id, status.battery_level, status.connection_quality)
    if not device:
        raise HTTPException(status_code=404, detail=f"Device not found: {device_id}")
    core.broadcaster.broadcast_device_list()
    return device


# Readings

@router.get("/api/devices/{device_id}/readings", response_model=List[ReadingOut])
async def recent_readings(
    device_id: str,
    limit: int = Query(50, ge=1, le=1000),
    core: SensorCore = Depends(get_core),
):
    return core.readings.recent(device_id, limit)


@router.get("/api/devices/{device_id}/latest", response_model=ReadingOut)
async def latest_reading(device_id: str, core: SensorCore = Depends(get_core)):
    reading = core.readings.latest(device_id)
    if not reading:
        raise HTTPException(status_code=404, detail="No readings found")
    return reading


@router.post("/api/sensor-readings", response_model=ReadingOut)
async def ingest(payload: ReadingIn, core: SensorCore = Depends(get_core)):
    """One-shot ingestion for devices that cannot hold a stream open"""
    return core.gateway.ingest_request(payload)


# Location predictions

@router.get("/api/devices/{device_id}/predictions", response_model=List[PredictionOut])
def list_predictions(
    device_id: str,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    return crud.list_predictions(db, device_id, limit)


@router.post("/api/devices/{device_id}/predictions/analyze", response_model=PredictionResponse)
async def analyze_device(
    device_id: str,
    request: Request,
    core: SensorCore = Depends(get_core),
    db: Session = Depends(get_db),
):
    require_device(core, device_id)
    window = request.app.state.settings.ANALYSIS_WINDOW
    readings = core.readings.recent(device_id, window)
    # blocking session work stays off the event loop
    past = await run_in_threadpool(crud.list_predictions, db, device_id)

    analysis = await analyze_location(core.analyzer, readings, past)
    latest = ReadingOut.model_validate(readings[0]).model_dump(mode="json", by_alias=True) if readings else None
    snapshot = {
        "readingCount": len(readings),
        "summary": summarize_readings(readings),
        "reasoning": analysis.reasoning,
        "latestReading": latest,
    }
    prediction = await run_in_threadpool(crud.create_prediction, db, device_id, analysis, snapshot)
    logger.info(
        "prediction %s for %s: %s (%.2f)",
        prediction.id, device_id, prediction.prediction, prediction.confidence,
    )
    return PredictionResponse(prediction=PredictionOut.model_validate(prediction), analysis=analysis)


@router.post("/api/predictions/{prediction_id}/confirm", response_model=PredictionOut)
def confirm_prediction(prediction_id: str, body: ConfirmRequest, db: Session = Depends(get_db)):
    prediction = crud.confirm_prediction(db, prediction_id, body.is_correct, body.actual_location)
    if not prediction:
        raise HTTPException(status_code=404, detail=f"Prediction not found: {prediction_id}")
    return prediction


# Real-time stream

@router.websocket("/ws")
async def sensor_stream(websocket: WebSocket):
    core: SensorCore = websocket.app.state.core
    await websocket.accept()
    peer = core.hub.on_connect(websocket)
    writer = peer.start()
    try:
        while not peer.closed:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            text = message.get("text")
            if text is None:
                text = (message.get("bytes") or b"").decode("utf-8", errors="replace")
            core.hub.handle_message(peer, text)
    except WebSocketDisconnect:
        pass
    finally:
        core.hub.on_disconnect(peer)
        await asyncio.gather(writer, return_exceptions=True)
