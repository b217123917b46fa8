from abc import ABC, abstractmethod
from arovia.domain.entities import AuthenticatedUser, User


class ITokenService(ABC):
    """Interface for password hashing and bearer token handling."""

    @abstractmethod
    def hash_password(self, password: str) -> str:
        pass

    @abstractmethod
    def verify_password(self, password: str, password_hash: str) -> bool:
        pass

    @abstractmethod
    def issue_token(self, user: User) -> str:
        """Create a signed bearer token for the user."""
        pass

    @abstractmethod
    def verify_token(self, token: str) -> AuthenticatedUser:
        """Decode a bearer token, raising AuthenticationError if invalid."""
        pass
