import copy
import logging
from typing import Dict, List, Optional

from arovia.domain import IHealthRecordRepository, IUserRepository, HealthRecord, User


logger = logging.getLogger(__name__)


class InMemoryHealthRecordRepository(IHealthRecordRepository):
    """In-memory, append-only implementation of the health record store."""

    def __init__(self):
        self._storage: List[HealthRecord] = []

    def append(self, record: HealthRecord) -> HealthRecord:
        """Append a copy of the record so later caller mutations can't leak in."""
        stored = copy.deepcopy(record)
        self._storage.append(stored)
        logger.info(f"Record {stored.record_id} stored for user {stored.user_id} (source={stored.source})")
        return stored

    def find_by_user(self, user_id: str, limit: Optional[int] = None) -> List[HealthRecord]:
        """Get a user's records, newest first."""
        records = [r for r in reversed(self._storage) if r.user_id == user_id]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[:limit] if limit is not None else records

    def latest_by_source(self, user_id: str, source: str) -> Optional[HealthRecord]:
        """Get the newest record of a user with the given source label."""
        for record in self.find_by_user(user_id):
            if record.source == source:
                return record
        return None

    def get_all(self) -> List[HealthRecord]:
        """Get all records in insertion order."""
        return self._storage.copy()


class InMemoryUserRepository(IUserRepository):
    """In-memory implementation of the user repository."""

    def __init__(self):
        self._storage: Dict[str, User] = {}

    def save(self, user: User) -> User:
        self._storage[user.username] = user
        logger.info(f"User {user.username} saved")
        return user

    def get_by_username(self, username: str) -> Optional[User]:
        return self._storage.get(username)
