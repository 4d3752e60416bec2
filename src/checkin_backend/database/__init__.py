"""
Database Module for the Check-in Backend
=========================================
Provides SQLAlchemy-based attendance tracking with:
- Community / person records
- Predicate-guarded check-in and check-out
- Change notifications for live queries
"""

from .models import Community, Person, CommunityRecord, PersonRecord, PersonState, utc_now
from .db_manager import DatabaseManager
from .attendance_store import AttendanceStore, ChangeEvent, COMMUNITIES, PEOPLE
from .transition_service import TransitionService, TransitionResult, summarize_people

__all__ = [
    'Community',
    'Person',
    'CommunityRecord',
    'PersonRecord',
    'PersonState',
    'utc_now',
    'DatabaseManager',
    'AttendanceStore',
    'ChangeEvent',
    'COMMUNITIES',
    'PEOPLE',
    'TransitionService',
    'TransitionResult',
    'summarize_people'
]
