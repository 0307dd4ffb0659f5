"""SQLAlchemy models for alert windows, incidents, users and chat messages."""

from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

from .timeutil import isoformat_utc, utcnow

Base = declarative_base()

MESSAGE_MAX_LENGTH = 1000


class User(Base):
    """Account resolved by the upstream session layer."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    username = Column(String(100), nullable=False, unique=True)
    email = Column(String(255), nullable=True, unique=True)
    role = Column(String(20), nullable=False, default="user")  # "admin" or "user"
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": isoformat_utc(self.created_at),
        }


class AlertWindow(Base):
    """
    Time-bucketed sensor aggregate for one device.

    Written by the upstream aggregation job; read-only here.
    """

    __tablename__ = "incident_alerts"

    id = Column(Integer, primary_key=True)
    device_id = Column(String, nullable=False)
    window_start = Column(DateTime, nullable=False)
    last_seen = Column(DateTime, nullable=True)
    flame_peak = Column(Float, nullable=True)
    flame_avg = Column(Float, nullable=True)
    smoke_peak = Column(Float, nullable=True)
    smoke_avg = Column(Float, nullable=True)
    temperature_peak = Column(Float, nullable=True)
    temperature_avg = Column(Float, nullable=True)
    gas_peak = Column(Float, nullable=True)
    gas_avg = Column(Float, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    alert_level = Column(Integer, nullable=False, default=0)  # 0 normal, 2 warning, >=3 critical

    __table_args__ = (
        Index("ix_incident_alerts_device_start", "device_id", "window_start"),
        Index("ix_incident_alerts_level", "alert_level"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "device_id": self.device_id,
            "window_start": isoformat_utc(self.window_start),
            "last_seen": isoformat_utc(self.last_seen),
            "flame_peak": self.flame_peak,
            "flame_avg": self.flame_avg,
            "smoke_peak": self.smoke_peak,
            "smoke_avg": self.smoke_avg,
            "temperature_peak": self.temperature_peak,
            "temperature_avg": self.temperature_avg,
            "gas_peak": self.gas_peak,
            "gas_avg": self.gas_avg,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "alert_level": self.alert_level,
        }


class VerifiedIncident(Base):
    """Operator confirmation of an alert window."""

    __tablename__ = "verified_incidents"

    id = Column(Integer, primary_key=True)
    device_id = Column(String, nullable=False)
    timestamp = Column(DateTime, nullable=False)
    alert_level = Column(Integer, nullable=False)
    flame = Column(Float, nullable=True)
    smoke = Column(Float, nullable=True)
    temperature = Column(Float, nullable=True)
    gas = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)
    verified_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    verified_at = Column(DateTime, nullable=False, default=utcnow)

    verifier = relationship("User", foreign_keys=[verified_by])

    __table_args__ = (
        Index("ix_verified_incidents_device_ts", "device_id", "timestamp"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "device_id": self.device_id,
            "timestamp": isoformat_utc(self.timestamp),
            "alert_level": self.alert_level,
            "flame": self.flame,
            "smoke": self.smoke,
            "temperature": self.temperature,
            "gas": self.gas,
            "notes": self.notes,
            "verified_by": self.verified_by,
            "verified_by_name": self.verifier.username if self.verifier else None,
            "verified_at": isoformat_utc(self.verified_at),
        }


class OfficialIncident(Base):
    """Filed case record derived from one verified incident."""

    __tablename__ = "official_incidents"

    id = Column(Integer, primary_key=True)
    verified_incident_id = Column(Integer, ForeignKey("verified_incidents.id"), nullable=False, index=True)
    device_id = Column(String, nullable=False)
    incident_timestamp = Column(DateTime, nullable=False)
    alert_level = Column(Integer, nullable=False)
    incident_type = Column(String(100), nullable=True)
    establishment_type = Column(String(100), nullable=True)
    probable_cause = Column(Text, nullable=True)
    barangay = Column(String(100), nullable=True)
    city = Column(String(100), nullable=True)
    estimated_damage = Column(Float, nullable=True)
    injured = Column(Integer, nullable=True, default=0)
    fatalities = Column(Integer, nullable=True, default=0)
    remarks = Column(Text, nullable=True)
    verified_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    verified_at = Column(DateTime, nullable=False)
    generated_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    generated_at = Column(DateTime, nullable=False, default=utcnow)

    verifier = relationship("User", foreign_keys=[verified_by])
    generator = relationship("User", foreign_keys=[generated_by])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "verified_incident_id": self.verified_incident_id,
            "device_id": self.device_id,
            "incident_timestamp": isoformat_utc(self.incident_timestamp),
            "alert_level": self.alert_level,
            "incident_type": self.incident_type,
            "establishment_type": self.establishment_type,
            "probable_cause": self.probable_cause,
            "barangay": self.barangay,
            "city": self.city,
            "estimated_damage": self.estimated_damage,
            "injured": self.injured,
            "fatalities": self.fatalities,
            "remarks": self.remarks,
            "verified_by": self.verifier.username if self.verifier else None,
            "verified_at": isoformat_utc(self.verified_at),
            "generated_by": self.generator.username if self.generator else None,
            "generated_at": isoformat_utc(self.generated_at),
        }


class Message(Base):
    """Chat message; deletion removes the row."""

    __tablename__ = "messages"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    message = Column(String(MESSAGE_MAX_LENGTH), nullable=False)
    message_type = Column(String(20), nullable=False, default="text")  # "text" or "system"
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    author = relationship("User")

    def to_dict(self, viewer_id: Optional[int] = None) -> dict:
        """Serialize with author details; ``is_own_message`` is relative to ``viewer_id``."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "message": self.message,
            "message_type": self.message_type,
            "created_at": isoformat_utc(self.created_at),
            "username": self.author.username if self.author else None,
            "role": self.author.role if self.author else None,
            "is_own_message": viewer_id is not None and self.user_id == viewer_id,
        }
