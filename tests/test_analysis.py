import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import httpx
import pytest

from app.analysis import (
    FALLBACK, HeuristicAnalyzer, RemoteAnalyzer, analyze_location,
    build_analyzer, build_learning_context, summarize_readings,
)
from app.readings import Reading
from app.schemas import LocationAnalysis, Vector3


T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def reading(i, light=None, pressure=None, acc=None):
    return Reading(
        id=str(i),
        device_id="A",
        timestamp=T0 + timedelta(seconds=i),
        light_level=light,
        air_pressure=pressure,
        accelerometer=acc,
    )


def prediction(confirmation, actual):
    return SimpleNamespace(user_confirmation=confirmation, actual_location=actual)


def test_summary_without_readings():
    assert summarize_readings([]) == "No sensor data available"


def test_summary_reports_light_pressure_and_movement():
    readings = [
        reading(0, light=100, pressure=1010.0, acc=Vector3(x=0, y=3, z=4)),
        reading(30, light=300, pressure=1012.5, acc=Vector3(x=0, y=6, z=8)),
    ]

    summary = summarize_readings(readings)

    assert "2 readings over 30 seconds" in summary
    assert "Average Light Level: 200.00 lux" in summary
    assert "Pressure Range: 1010.00 - 1012.50 hPa" in summary
    assert "Movement Intensity: 7.50" in summary
    assert "High movement" in summary


def test_learning_context_counts_confirmed_correct_only():
    past = [
        prediction("correct", "indoor"),
        prediction("correct", "outdoor"),
        prediction("correct", "outdoor"),
        prediction("incorrect", "indoor"),
        prediction(None, None),
    ]

    context = build_learning_context(past)

    assert "based on 3 confirmed predictions" in context
    assert "Confirmed Indoor: 1 cases" in context
    assert "Confirmed Outdoor: 2 cases" in context
    assert build_learning_context([]) == "No historical learning data available yet."


@pytest.mark.anyio
async def test_heuristic_bright_light_is_outdoor():
    result = await HeuristicAnalyzer().analyze([reading(i, light=20000) for i in range(3)])

    assert result.prediction == "outdoor"
    assert 0.6 <= result.confidence <= 1


@pytest.mark.anyio
async def test_heuristic_dim_light_is_indoor():
    result = await HeuristicAnalyzer().analyze([reading(0, light=80)])

    assert result.prediction == "indoor"
    assert 0.6 <= result.confidence <= 1


@pytest.mark.anyio
async def test_heuristic_without_light_falls_back():
    assert await HeuristicAnalyzer().analyze([reading(0, pressure=1000.0)]) == FALLBACK


@pytest.mark.anyio
async def test_remote_analyzer_posts_context_and_parses_reply():
    seen = {}

    def handler(request):
        seen.update(json.loads(request.content))
        return httpx.Response(200, json={"prediction": "outdoor", "confidence": 0.8, "reasoning": "sunny"})

    analyzer = RemoteAnalyzer("http://infer.test/analyze", transport=httpx.MockTransport(handler))

    result = await analyze_location(analyzer, [reading(0, light=5000)], [prediction("correct", "outdoor")])

    assert result == LocationAnalysis(prediction="outdoor", confidence=0.8, reasoning="sunny")
    assert "Average Light Level: 5000.00 lux" in seen["contents"]
    assert "Confirmed Outdoor: 1 cases" in seen["system"]


@pytest.mark.anyio
@pytest.mark.parametrize("response", [
    httpx.Response(503, text="overloaded"),
    httpx.Response(200, text="not json"),
    httpx.Response(200, json={"prediction": "underwater", "confidence": 0.9, "reasoning": "?"}),
    httpx.Response(200, json={"prediction": "indoor", "confidence": 1.7, "reasoning": "?"}),
])
async def test_remote_failures_become_fallback(response):
    analyzer = RemoteAnalyzer("http://infer.test/analyze", transport=httpx.MockTransport(lambda r: response))

    assert await analyze_location(analyzer, [reading(0, light=10)]) == FALLBACK


@pytest.mark.anyio
async def test_unreachable_analyzer_becomes_fallback():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    analyzer = RemoteAnalyzer("http://infer.test/analyze", transport=httpx.MockTransport(handler))

    assert await analyze_location(analyzer, []) == FALLBACK


@pytest.mark.anyio
async def test_crashing_analyzer_becomes_fallback():
    class Broken:
        async def analyze(self, readings, past_predictions=()):
            raise RuntimeError("boom")

    assert await analyze_location(Broken(), []) == FALLBACK


def test_build_analyzer_picks_remote_when_url_set():
    assert isinstance(build_analyzer("http://infer.test"), RemoteAnalyzer)
    assert isinstance(build_analyzer(None), HeuristicAnalyzer)
