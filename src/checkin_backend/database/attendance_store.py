"""
Attendance Store for the Check-in Backend
==========================================
Durable keyed record store for communities and people, and the only
component that writes persisted state.

Features:
- Immutable record snapshots for reads
- Predicate-guarded conditional updates (the only way to change
  check-in/check-out dates)
- Change notifications {collection, id, before, after} after every write
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import InternalError, InvalidArgument
from .db_manager import DatabaseManager
from .models import (
    Community, CommunityRecord, Person, PersonRecord, MUTABLE_PERSON_FIELDS
)

logger = logging.getLogger(__name__)

COMMUNITIES = "communities"
PEOPLE = "people"

Record = Union[CommunityRecord, PersonRecord]


@dataclass(frozen=True)
class ChangeEvent:
    """A committed write: before is None for inserts, after is None for deletes."""
    collection: str
    id: str
    before: Optional[Record]
    after: Optional[Record]


ChangeListener = Callable[[ChangeEvent], None]


class AttendanceStore:
    """
    Record store backed by a DatabaseManager.

    Writes to the same record are serialized through a striped lock so that
    the before/after snapshots of a change event are coherent and events for
    one record are published in write order. The guard predicate of
    conditional_update is part of the UPDATE statement itself, so the
    database enforces it even against writers in other processes.

    Usage:
        store = AttendanceStore(db_manager)
        store.add_listener(print)
        updated = store.conditional_update(
            "P1",
            expected=Person.check_out_date.is_(None),
            patch={"check_out_date": utc_now()}
        )
    """

    LOCK_STRIPES = 64

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager
        self._stripes = [threading.Lock() for _ in range(self.LOCK_STRIPES)]
        self._listeners: List[ChangeListener] = []
        self._listeners_lock = threading.Lock()

    def _lock_for(self, record_id: str) -> threading.Lock:
        return self._stripes[hash(record_id) % self.LOCK_STRIPES]

    @contextmanager
    def _storage_errors(self, operation: str):
        try:
            yield
        except IntegrityError as e:
            raise InvalidArgument(f"{operation} rejected by the database: {e.orig}") from e
        except SQLAlchemyError as e:
            logger.error(f"[STORE] {operation} failed: {e}")
            raise InternalError(f"Storage failure during {operation}") from e

    # ============== Change notifications ==============

    def add_listener(self, listener: ChangeListener):
        with self._listeners_lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener):
        with self._listeners_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _publish(self, change: ChangeEvent):
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(change)
            except Exception:
                # The write is already committed; one bad listener must not hide it from the rest
                logger.exception(f"[STORE] Change listener failed for {change.collection}/{change.id}")

    # ============== Reads ==============

    def get(self, person_id: str) -> Optional[PersonRecord]:
        """Return the person with this id, or None."""
        with self._storage_errors("get"):
            with self.db.get_session() as session:
                person = session.get(Person, person_id)
                return person.to_record() if person else None

    def get_community(self, community_id: str) -> Optional[CommunityRecord]:
        with self._storage_errors("get_community"):
            with self.db.get_session() as session:
                community = session.get(Community, community_id)
                return community.to_record() if community else None

    def find_by_community(self, community_id: str) -> List[PersonRecord]:
        """All people of one community, ordered by last name, first name, id."""
        with self._storage_errors("find_by_community"):
            with self.db.get_session() as session:
                rows = session.query(Person).filter(
                    Person.community_id == community_id
                ).order_by(Person.last_name, Person.first_name, Person.id).all()
                return [row.to_record() for row in rows]

    def list_communities(self) -> List[CommunityRecord]:
        with self._storage_errors("list_communities"):
            with self.db.get_session() as session:
                rows = session.query(Community).order_by(Community.name, Community.id).all()
                return [row.to_record() for row in rows]

    # ============== Writes ==============

    def conditional_update(self, person_id: str, expected=None, patch: Optional[dict] = None) -> int:
        """
        Apply patch to a person only if expected holds at the instant of the write.

        Args:
            person_id: Person to update
            expected: SQLAlchemy boolean clause over Person columns, or None
                      to require only that the record exists
            patch: New values keyed by column name (check_in_date / check_out_date)

        Returns:
            1 if the record was updated, 0 if it is absent or the predicate failed
        """
        patch = dict(patch or {})
        unknown = set(patch) - MUTABLE_PERSON_FIELDS
        if not patch or unknown:
            raise ValueError(f"conditional_update may only patch {sorted(MUTABLE_PERSON_FIELDS)}, got {sorted(patch)}")

        criteria = [Person.id == person_id]
        if expected is not None:
            criteria.append(expected)

        with self._lock_for(person_id):
            with self._storage_errors("conditional_update"):
                with self.db.get_session() as session:
                    current = session.get(Person, person_id)
                    if current is None:
                        return 0
                    before = current.to_record()

                    result = session.execute(
                        update(Person).where(*criteria).values(**patch).execution_options(
                            synchronize_session=False
                        )
                    )
                    if result.rowcount != 1:
                        session.rollback()
                        logger.debug(f"[STORE] Conditional update skipped for {person_id}: predicate failed")
                        return 0

                    session.refresh(current)
                    after = current.to_record()
                    session.commit()

            self._publish(ChangeEvent(PEOPLE, person_id, before, after))
        return 1

    def insert_community(self, community_id: str, name: str) -> CommunityRecord:
        """Create a community (provisioning)."""
        with self._lock_for(community_id):
            with self._storage_errors("insert_community"):
                with self.db.get_session() as session:
                    community = Community(id=community_id, name=name)
                    session.add(community)
                    session.commit()
                    record = community.to_record()

            logger.info(f"[STORE] Created community: {name} ({community_id})")
            self._publish(ChangeEvent(COMMUNITIES, community_id, None, record))
        return record

    def insert_person(
        self,
        person_id: str,
        community_id: str,
        first_name: str,
        last_name: str,
        company_name: Optional[str] = None,
        title: Optional[str] = None
    ) -> PersonRecord:
        """Create a person with both attendance dates null (provisioning)."""
        with self._lock_for(person_id):
            with self._storage_errors("insert_person"):
                with self.db.get_session() as session:
                    person = Person(
                        id=person_id,
                        community_id=community_id,
                        first_name=first_name,
                        last_name=last_name,
                        company_name=company_name,
                        title=title
                    )
                    session.add(person)
                    session.commit()
                    record = person.to_record()

            logger.info(f"[STORE] Created person: {record.full_name} ({person_id}) in {community_id}")
            self._publish(ChangeEvent(PEOPLE, person_id, None, record))
        return record

    def delete_person(self, person_id: str) -> bool:
        """Remove a person. Returns False if no such person exists."""
        with self._lock_for(person_id):
            with self._storage_errors("delete_person"):
                with self.db.get_session() as session:
                    person = session.get(Person, person_id)
                    if person is None:
                        return False
                    before = person.to_record()
                    session.delete(person)
                    session.commit()

            logger.info(f"[STORE] Deleted person: {person_id}")
            self._publish(ChangeEvent(PEOPLE, person_id, before, None))
        return True
