"""
Database Models for the Check-in Backend
=========================================
SQLAlchemy ORM models for event attendance.

Tables:
- communities: Events that people can attend
- people: One attendance record per registrant within one community

The store never hands ORM instances to callers. It converts rows into the
immutable CommunityRecord / PersonRecord snapshots defined here.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utc_now() -> datetime:
    """Current time as naive UTC (the form stored in the database)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class PersonState(str, Enum):
    """Attendance state derived from the check-in/check-out dates."""
    UNREGISTERED = "UNREGISTERED"
    PRESENT = "PRESENT"
    DEPARTED = "DEPARTED"


class Community(Base):
    """
    Events table.
    Immutable after creation.
    """
    __tablename__ = 'communities'

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)

    def to_record(self) -> "CommunityRecord":
        return CommunityRecord(id=self.id, name=self.name)

    def __repr__(self):
        return f"<Community(id={self.id}, name={self.name})>"


class Person(Base):
    """
    Attendance records table.
    Created by provisioning with both dates null; only the store's
    conditional update may change check_in_date / check_out_date.
    """
    __tablename__ = 'people'

    id = Column(String(64), primary_key=True, index=True)
    community_id = Column(String(64), ForeignKey('communities.id'), nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    company_name = Column(String(200), nullable=True)
    title = Column(String(200), nullable=True)
    check_in_date = Column(DateTime, nullable=True)
    check_out_date = Column(DateTime, nullable=True)

    def to_record(self) -> "PersonRecord":
        return PersonRecord(
            id=self.id,
            community_id=self.community_id,
            first_name=self.first_name,
            last_name=self.last_name,
            company_name=self.company_name,
            title=self.title,
            check_in_date=self.check_in_date,
            check_out_date=self.check_out_date
        )

    def __repr__(self):
        return f"<Person(id={self.id}, community={self.community_id}, in={self.check_in_date}, out={self.check_out_date})>"


# Columns that may be patched by AttendanceStore.conditional_update
MUTABLE_PERSON_FIELDS = frozenset({"check_in_date", "check_out_date"})


@dataclass(frozen=True)
class CommunityRecord:
    id: str
    name: str

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {"id": self.id, "name": self.name}


@dataclass(frozen=True)
class PersonRecord:
    id: str
    community_id: str
    first_name: str
    last_name: str
    company_name: Optional[str] = None
    title: Optional[str] = None
    check_in_date: Optional[datetime] = None
    check_out_date: Optional[datetime] = None

    @property
    def state(self) -> PersonState:
        if self.check_out_date is not None:
            return PersonState.DEPARTED
        if self.check_in_date is not None:
            return PersonState.PRESENT
        return PersonState.UNREGISTERED

    @property
    def is_present(self) -> bool:
        return self.check_in_date is not None and self.check_out_date is None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> dict:
        """Convert to dictionary for API response (camelCase wire form)."""
        return {
            "id": self.id,
            "communityId": self.community_id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "companyName": self.company_name,
            "title": self.title,
            "checkInDate": _iso(self.check_in_date),
            "checkOutDate": _iso(self.check_out_date)
        }
