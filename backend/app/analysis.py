"""
Indoor/outdoor location inference over a device's recent readings.

The analyzer itself is a collaborator behind the ``Analyzer`` protocol:
either the local heuristic or a remote inference endpoint. Callers go
through ``analyze_location`` which always returns a usable result.
"""

import logging
import math
from datetime import datetime
from typing import Optional, Protocol, Sequence

import httpx
from pydantic import ValidationError

from .readings import Reading
from .schemas import LocationAnalysis

logger = logging.getLogger(__name__)

FALLBACK = LocationAnalysis(
    prediction="indoor",
    confidence=0.1,
    reasoning="Unable to analyze sensor data reliably",
)

SYSTEM_PROMPT = """You are an AI that predicts whether someone is indoors or outdoors based on mobile device sensor data.

Key indicators to consider:
- Light Level: Higher values typically indicate outdoor environments
- Air Pressure: Can indicate altitude changes (outdoor movement)
- Accelerometer: Movement patterns differ between indoor/outdoor activities
- Magnetometer: Magnetic field variations can indicate environment changes
- Orientation: Device orientation patterns may vary by location

{learning_context}

Analyze the sensor data and predict indoor vs outdoor with confidence level (0-1).
Respond with JSON in this format:
{{"prediction": "indoor" or "outdoor", "confidence": number between 0 and 1, "reasoning": "brief explanation of key factors"}}"""


class Analyzer(Protocol):
    async def analyze(self, readings: Sequence[Reading], past_predictions: Sequence) -> LocationAnalysis: ...


def _magnitude(v) -> float:
    return math.sqrt(v.x * v.x + v.y * v.y + v.z * v.z)


def _mean(values: list[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def movement_label(intensity: float) -> str:
    if intensity > 5:
        return "High movement"
    if intensity > 2:
        return "Moderate movement"
    return "Low movement"


def summarize_readings(readings: Sequence[Reading]) -> str:
    """Text summary of readings; order does not matter."""
    if not readings:
        return "No sensor data available"

    ordered = sorted(readings, key=lambda r: r.timestamp)
    light = _mean([r.light_level for r in ordered if r.light_level is not None]) or 0.0
    pressures = [r.air_pressure for r in ordered if r.air_pressure is not None][-10:]
    movement = _mean([_magnitude(r.accelerometer) for r in ordered if r.accelerometer]) or 0.0
    span = (ordered[-1].timestamp - ordered[0].timestamp).total_seconds()

    current = pressures[-1] if pressures else 0.0
    low = min(pressures) if pressures else 0.0
    high = max(pressures) if pressures else 0.0
    recent = ", ".join(f"{p:.2f}" for p in pressures[-5:])

    return "\n".join([
        f"Sensor Data Analysis ({len(ordered)} readings over {round(span)} seconds):",
        f"- Average Light Level: {light:.2f} lux",
        f"- Current Air Pressure: {current:.2f} hPa",
        f"- Pressure Range: {low:.2f} - {high:.2f} hPa",
        f"- Recent Pressure Values: {recent} hPa",
        f"- Movement Intensity: {movement:.2f} m/s²",
        f"- Device activity: {movement_label(movement)}",
    ])


def build_learning_context(past_predictions: Sequence) -> str:
    """Counts of predictions users confirmed as correct, by location."""
    confirmed = [
        p for p in past_predictions
        if p.user_confirmation == "correct" and p.actual_location
    ]
    if not confirmed:
        return "No historical learning data available yet."

    indoor = sum(1 for p in confirmed if p.actual_location == "indoor")
    outdoor = sum(1 for p in confirmed if p.actual_location == "outdoor")
    return "\n".join([
        f"Learning Context (based on {len(confirmed)} confirmed predictions):",
        f"- Confirmed Indoor: {indoor} cases",
        f"- Confirmed Outdoor: {outdoor} cases",
        "- Use this historical data to improve accuracy for similar sensor patterns",
    ])


class HeuristicAnalyzer:
    """Rule of thumb on ambient light, nudged by movement."""

    OUTDOOR_LUX = 1000.0
    INDOOR_LUX = 300.0

    async def analyze(self, readings, past_predictions=()) -> LocationAnalysis:
        light = _mean([r.light_level for r in readings if r.light_level is not None])
        if light is None:
            return FALLBACK

        movement = _mean([_magnitude(r.accelerometer) for r in readings if r.accelerometer]) or 0.0
        if light >= self.OUTDOOR_LUX:
            prediction = "outdoor"
            confidence = min(0.95, 0.6 + (light - self.OUTDOOR_LUX) / 20000)
        elif light <= self.INDOOR_LUX:
            prediction = "indoor"
            confidence = min(0.9, 0.6 + (self.INDOOR_LUX - light) / 1000)
        else:
            prediction = "indoor"
            confidence = 0.5
        if prediction == "outdoor" and movement > 5:
            confidence = min(0.95, confidence + 0.05)

        return LocationAnalysis(
            prediction=prediction,
            confidence=round(confidence, 3),
            reasoning=f"Average light {light:.0f} lux, {movement_label(movement).lower()}",
        )


class RemoteAnalyzer:
    """Asks an HTTP inference endpoint for a JSON ``LocationAnalysis``."""

    def __init__(self, url: str, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def analyze(self, readings, past_predictions=()) -> LocationAnalysis:
        payload = {
            "system": SYSTEM_PROMPT.format(learning_context=build_learning_context(past_predictions)),
            "contents": f"Recent sensor data summary:\n{summarize_readings(readings)}",
            "requested_at": datetime.now().isoformat(timespec="seconds"),
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            r = await client.post(self.url, json=payload)
            r.raise_for_status()
            return LocationAnalysis.model_validate_json(r.content)


async def analyze_location(analyzer: Analyzer, readings: Sequence[Reading], past_predictions: Sequence = ()) -> LocationAnalysis:
    """Run ``analyzer``; any failure becomes the low-confidence fallback."""
    try:
        result = await analyzer.analyze(readings, past_predictions)
    except (httpx.HTTPError, ValidationError, ValueError) as exc:
        logger.warning("location analysis failed: %s", exc)
        return FALLBACK
    except Exception:
        logger.exception("location analysis crashed")
        return FALLBACK

    if not isinstance(result, LocationAnalysis):
        logger.warning("analyzer returned %r, using fallback", type(result).__name__)
        return FALLBACK
    confidence = min(1.0, max(0.0, result.confidence))
    return result.model_copy(update={"confidence": confidence})


def build_analyzer(url: Optional[str], timeout: float = 10.0) -> Analyzer:
    if url:
        logger.info("using remote location analyzer at %s", url)
        return RemoteAnalyzer(url, timeout)
    return HeuristicAnalyzer()
