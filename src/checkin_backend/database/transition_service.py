"""
Transition Service for the Check-in Backend
============================================
Core business logic for check-in and check-out.

Features:
- Attendance state machine (UNREGISTERED -> PRESENT -> DEPARTED)
- Predicate-guarded writes: concurrent check-outs cannot both succeed
- Optional re-entry guard and check-out cooldown
- Per-community attendance summary
"""

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from sqlalchemy import and_

from ..errors import ConcurrencyConflict, InvalidArgument, InvalidState, NotFound
from .attendance_store import AttendanceStore
from .models import Person, PersonRecord, utc_now

# Configure logging
logger = logging.getLogger(__name__)

NO_COMPANY = "No company"


class TransitionResult:
    """
    Result of a successful transition.
    Provides a structured response for API endpoints.
    """

    def __init__(self, success: bool, timestamp: datetime, person_id: str, message: str):
        self.success = success
        self.timestamp = timestamp
        self.person_id = person_id
        self.message = message

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "success": self.success,
            "timestamp": self.timestamp.isoformat(),
            "message": self.message
        }


def _unregistered():
    return and_(Person.check_in_date.is_(None), Person.check_out_date.is_(None))


def _present_since_at_most(bound: datetime):
    return and_(
        Person.check_in_date.isnot(None),
        Person.check_in_date <= bound,
        Person.check_out_date.is_(None)
    )


def summarize_people(people: Iterable[PersonRecord]) -> dict:
    """
    Attendance figures for a list of people.

    Returns:
        Dictionary with present/not-checked-in/departed counts and the
        present people grouped by company
    """
    people = list(people)
    present = [p for p in people if p.is_present]
    companies = Counter(p.company_name or NO_COMPANY for p in present)

    return {
        "total": len(people),
        "present": len(present),
        "notCheckedIn": sum(1 for p in people if p.check_in_date is None),
        "departed": sum(1 for p in people if p.check_out_date is not None),
        "companiesPresent": dict(sorted(companies.items()))
    }


class TransitionService:
    """
    Check-in / check-out operations over an AttendanceStore.

    Usage:
        service = TransitionService(store)
        result = service.check_in("P1")
        result = service.check_out("P1")
    """

    def __init__(
        self,
        store: AttendanceStore,
        allow_reentry: bool = True,
        checkout_cooldown_seconds: int = 0,
        clock: Callable[[], datetime] = utc_now
    ):
        """
        Initialize transition service.

        Args:
            store: Record store used for all reads and writes
            allow_reentry: If True, check-in on a present or departed person
                           starts a new session; if False it is rejected
            checkout_cooldown_seconds: Minimum time between check-in and check-out
            clock: Source of naive-UTC timestamps (patched in tests)
        """
        self.store = store
        self.allow_reentry = allow_reentry
        self.checkout_cooldown = timedelta(seconds=max(0, int(checkout_cooldown_seconds)))
        self.clock = clock

    @staticmethod
    def _validate_person_id(person_id) -> str:
        if not isinstance(person_id, str):
            raise InvalidArgument("Person id must be a string")
        if not person_id.strip():
            raise InvalidArgument("Person id must not be empty")
        return person_id

    def check_in(self, person_id: str) -> TransitionResult:
        """
        Mark a person as present.

        Raises:
            InvalidArgument: person_id is not a non-empty string
            NotFound: no person with this id
            InvalidState: already checked in (only when re-entry is disabled)
        """
        self._validate_person_id(person_id)
        timestamp = self.clock()

        updated = self.store.conditional_update(
            person_id,
            expected=None if self.allow_reentry else _unregistered(),
            patch={"check_in_date": timestamp, "check_out_date": None}
        )
        if updated == 0:
            if self.allow_reentry or self.store.get(person_id) is None:
                logger.warning(f"[CHECKIN] Person not found: {person_id}")
                raise NotFound(f"Person not found: {person_id}")
            logger.warning(f"[CHECKIN] Re-entry rejected for {person_id}")
            raise InvalidState("already-checked-in", "This person has already checked in")

        logger.info(f"[CHECKIN] {person_id} checked in at {timestamp.isoformat()}")
        return TransitionResult(True, timestamp, person_id, "Check-in successful")

    def check_out(self, person_id: str) -> TransitionResult:
        """
        Mark a present person as departed.

        Raises:
            InvalidArgument: person_id is not a non-empty string
            NotFound: no person with this id
            InvalidState: not checked in, already checked out, or inside the cooldown
            ConcurrencyConflict: the guarded write matched no row (another writer
                                 got there first, or the clock is behind check-in)
        """
        self._validate_person_id(person_id)

        person = self.store.get(person_id)
        if person is None:
            logger.warning(f"[CHECKOUT] Person not found: {person_id}")
            raise NotFound(f"Person not found: {person_id}")
        if person.check_in_date is None:
            raise InvalidState("not-checked-in", "Cannot check out without checking in first")
        if person.check_out_date is not None:
            raise InvalidState("already-checked-out", "This person has already checked out")

        timestamp = self.clock()
        latest_check_in = timestamp - self.checkout_cooldown
        if self.checkout_cooldown and person.check_in_date <= timestamp < person.check_in_date + self.checkout_cooldown:
            remaining = (person.check_in_date - latest_check_in).total_seconds()
            raise InvalidState(
                "checkout-too-soon",
                f"Check-out allowed {remaining:.0f}s after check-in"
            )

        # A clock behind the stored check-in fails the predicate below
        updated = self.store.conditional_update(
            person_id,
            expected=_present_since_at_most(latest_check_in),
            patch={"check_out_date": timestamp}
        )
        if updated == 0:
            logger.warning(f"[CHECKOUT] Conflict: {person_id} changed before check-out was written")
            raise ConcurrencyConflict(f"Person {person_id} was modified concurrently; check-out not applied")

        logger.info(f"[CHECKOUT] {person_id} checked out at {timestamp.isoformat()}")
        return TransitionResult(True, timestamp, person_id, "Check-out successful")

    def summarize_community(self, community_id: str) -> Optional[dict]:
        """Attendance summary for one community, or None if it does not exist."""
        if self.store.get_community(community_id) is None:
            return None
        return summarize_people(self.store.find_by_community(community_id))
