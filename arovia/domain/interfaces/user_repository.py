from abc import ABC, abstractmethod
from typing import Optional
from arovia.domain.entities import User


class IUserRepository(ABC):
    """Interface for user persistence."""

    @abstractmethod
    def save(self, user: User) -> User:
        pass

    @abstractmethod
    def get_by_username(self, username: str) -> Optional[User]:
        pass
