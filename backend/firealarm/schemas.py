"""Pydantic request and response models for the HTTP API."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class SensorPeaks(BaseModel):
    flame: Optional[float] = None
    smoke: Optional[float] = None
    temperature: Optional[float] = None
    gas: Optional[float] = None


class VerifyIncidentInput(BaseModel):
    """Input model for an operator verification."""
    device_id: Optional[str] = None
    timestamp: Optional[datetime] = None
    alert_level: Optional[int] = None
    sensor_peaks: SensorPeaks = Field(default_factory=SensorPeaks)
    notes: Optional[str] = None


class OfficialIncidentInput(BaseModel):
    """Case details supplied when filing an official incident."""
    verified_incident_id: int
    incident_type: Optional[str] = None
    establishment_type: Optional[str] = None
    probable_cause: Optional[str] = None
    barangay: Optional[str] = None
    city: Optional[str] = None
    estimated_damage: Optional[float] = None
    injured: Optional[int] = 0
    fatalities: Optional[int] = 0
    remarks: Optional[str] = None


class AlertWindowResponse(BaseModel):
    id: int
    device_id: str
    window_start: str
    last_seen: Optional[str] = None
    flame_peak: Optional[float] = None
    flame_avg: Optional[float] = None
    smoke_peak: Optional[float] = None
    smoke_avg: Optional[float] = None
    temperature_peak: Optional[float] = None
    temperature_avg: Optional[float] = None
    gas_peak: Optional[float] = None
    gas_avg: Optional[float] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    alert_level: int


class PendingIncidentResponse(AlertWindowResponse):
    severity: str


class VerifiedIncidentResponse(BaseModel):
    id: int
    device_id: str
    timestamp: str
    alert_level: int
    flame: Optional[float] = None
    smoke: Optional[float] = None
    temperature: Optional[float] = None
    gas: Optional[float] = None
    notes: Optional[str] = None
    verified_by: int
    verified_by_name: Optional[str] = None
    verified_at: str


class OfficialIncidentResponse(BaseModel):
    id: int
    verified_incident_id: int
    device_id: str
    incident_timestamp: str
    alert_level: int
    incident_type: Optional[str] = None
    establishment_type: Optional[str] = None
    probable_cause: Optional[str] = None
    barangay: Optional[str] = None
    city: Optional[str] = None
    estimated_damage: Optional[float] = None
    injured: Optional[int] = None
    fatalities: Optional[int] = None
    remarks: Optional[str] = None
    verified_by: Optional[str] = None
    verified_at: str
    generated_by: Optional[str] = None
    generated_at: str


class AnalyticsResponse(BaseModel):
    rows: List[AlertWindowResponse]


class DevicesResponse(BaseModel):
    devices: List[str]


class MessageInput(BaseModel):
    message: Optional[str] = None
    type: str = "text"


class TypingInput(BaseModel):
    isTyping: bool = False


class MessageResponse(BaseModel):
    id: int
    user_id: int
    message: str
    message_type: str
    created_at: str
    username: Optional[str] = None
    role: Optional[str] = None
    is_own_message: bool


class OnlineUser(BaseModel):
    userId: int
    username: str


class OnlineResponse(BaseModel):
    count: int
    users: List[OnlineUser]


class SuccessResponse(BaseModel):
    success: bool = True
