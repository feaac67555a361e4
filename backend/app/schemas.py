from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Annotated, Any, List, Literal, Optional, Union

Location = Literal["indoor", "outdoor"]


class CamelModel(BaseModel):
    """Wire models: camelCase on the wire, snake_case in Python"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        allow_inf_nan=False,
    )


class Vector3(CamelModel):
    model_config = ConfigDict(frozen=True)

    x: float
    y: float
    z: float


class Orientation(CamelModel):
    model_config = ConfigDict(frozen=True)

    alpha: float
    beta: float
    gamma: float


class SamplePayload(CamelModel):
    """Sensor values of one sample; every sensor is optional"""
    model_config = ConfigDict(extra="ignore")

    accelerometer: Optional[Vector3] = None
    magnetometer: Optional[Vector3] = None
    orientation: Optional[Orientation] = None
    light_level: Optional[float] = Field(None, examples=[450.0])
    air_pressure: Optional[float] = Field(None, examples=[1013.2])


class ReadingIn(SamplePayload):
    """Fallback one-shot ingestion body"""
    device_id: str = Field(..., min_length=1, examples=["DEV-1A2B3C"])


class ReadingOut(CamelModel):
    id: str
    device_id: str
    timestamp: datetime
    accelerometer: Optional[Vector3] = None
    magnetometer: Optional[Vector3] = None
    orientation: Optional[Orientation] = None
    light_level: Optional[float] = None
    air_pressure: Optional[float] = None


# Devices

class DeviceCreate(CamelModel):
    """Create-or-update a device; the server picks an id when none is given"""
    id: Optional[str] = Field(None, min_length=1)
    name: str = Field(..., min_length=1)
    user_agent: Optional[str] = None


class DeviceStatusUpdate(CamelModel):
    battery_level: Optional[float] = Field(None, ge=0, le=100)
    connection_quality: Optional[str] = None


class DeviceOut(CamelModel):
    id: str
    name: str
    user_agent: Optional[str] = None
    last_seen: datetime
    is_active: bool
    battery_level: Optional[float] = None
    connection_quality: str


# Predictions

class LocationAnalysis(CamelModel):
    prediction: Location
    confidence: float = Field(..., ge=0, le=1)
    reasoning: str


class PredictionOut(CamelModel):
    id: str
    device_id: str
    prediction: Location
    confidence: float
    sensor_data_snapshot: Optional[dict[str, Any]] = None
    timestamp: datetime
    user_confirmation: Optional[Literal["correct", "incorrect"]] = None
    actual_location: Optional[Location] = None
    confirmed_at: Optional[datetime] = None


class PredictionResponse(CamelModel):
    prediction: PredictionOut
    analysis: LocationAnalysis


class ConfirmRequest(CamelModel):
    is_correct: bool
    actual_location: Location


# Inbound stream events

class RegisterEvent(CamelModel):
    type: Literal["register"]
    device_id: str = Field(..., min_length=1)
    name: Optional[str] = None
    user_agent: Optional[str] = None


class SampleEvent(CamelModel):
    """A sample, either nested under ``data`` or given as flat fields"""
    type: Literal["sample", "sensor-data"]
    data: SamplePayload

    @model_validator(mode="before")
    @classmethod
    def _flat_payload(cls, value: Any) -> Any:
        if isinstance(value, dict) and "data" not in value:
            fields = {k: v for k, v in value.items() if k != "type"}
            return {"type": value.get("type"), "data": fields}
        return value


class StatusEvent(DeviceStatusUpdate):
    type: Literal["status"]


InboundEvent = Annotated[
    Union[RegisterEvent, SampleEvent, StatusEvent],
    Field(discriminator="type"),
]
inbound_adapter = TypeAdapter(InboundEvent)


# Outbound stream messages

class DeviceListMessage(CamelModel):
    type: Literal["device-list"] = "device-list"
    devices: List[DeviceOut]


class SampleUpdateMessage(CamelModel):
    type: Literal["sample-update"] = "sample-update"
    device_id: str
    reading: ReadingOut


class RegisterResponseMessage(CamelModel):
    type: Literal["register-response"] = "register-response"
    device_id: str


class ErrorMessage(CamelModel):
    type: Literal["error"] = "error"
    detail: Any
