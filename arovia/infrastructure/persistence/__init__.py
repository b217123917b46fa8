from .record_repository import InMemoryHealthRecordRepository, InMemoryUserRepository

__all__ = [
    "InMemoryHealthRecordRepository",
    "InMemoryUserRepository",
]
