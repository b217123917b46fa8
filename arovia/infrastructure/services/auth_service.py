import logging
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt

from arovia.domain import ITokenService, AuthenticatedUser, User
from arovia.domain.errors import AuthenticationError
from arovia.infrastructure.config import Settings


logger = logging.getLogger(__name__)


class JWTTokenService(ITokenService):
    """bcrypt password hashing and HS256 bearer tokens."""

    def __init__(self, settings: Settings):
        self._secret = settings.jwt_secret
        self._algorithm = settings.jwt_algorithm
        self._expires = timedelta(days=settings.jwt_expires_days)

    def hash_password(self, password: str) -> str:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")

    def verify_password(self, password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            logger.warning("Stored password hash is not a valid bcrypt hash")
            return False

    def issue_token(self, user: User) -> str:
        payload = {
            "sub": user.user_id,
            "username": user.username,
            "exp": datetime.now(timezone.utc) + self._expires,
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def verify_token(self, token: str) -> AuthenticatedUser:
        try:
            data = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except jwt.PyJWTError as e:
            raise AuthenticationError("invalid token") from e

        if not data.get("sub"):
            raise AuthenticationError("invalid token")
        return AuthenticatedUser(user_id=data["sub"], username=data.get("username", ""))
