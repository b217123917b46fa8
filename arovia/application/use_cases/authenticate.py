import logging

from arovia.domain import IUserRepository, ITokenService, AuthenticatedUser, User
from arovia.domain.errors import AuthenticationError


logger = logging.getLogger(__name__)


class LoginUseCase:
    """Use case for exchanging username and password for a bearer token."""

    def __init__(
        self,
        user_repository: IUserRepository,
        token_service: ITokenService,
        auto_register: bool = True,
    ):
        self._user_repository = user_repository
        self._token_service = token_service
        self._auto_register = auto_register

    def execute(self, username: str, password: str) -> str:
        """
        Verify credentials and issue a token.

        With auto_register enabled an unknown username is registered with
        the given password on first login.
        """
        if not username or not password:
            raise AuthenticationError("username/password required")

        user = self._user_repository.get_by_username(username)
        if user is None:
            if not self._auto_register:
                raise AuthenticationError("invalid credentials")
            user = self._user_repository.save(
                User(
                    username=username,
                    password_hash=self._token_service.hash_password(password),
                    display_name=username,
                )
            )
            logger.info(f"Registered new user {username} on first login")

        if not self._token_service.verify_password(password, user.password_hash):
            logger.warning(f"Failed login for user {username}")
            raise AuthenticationError("invalid credentials")

        return self._token_service.issue_token(user)


class VerifyTokenUseCase:
    """Use case for resolving a bearer token to the calling user."""

    def __init__(self, token_service: ITokenService):
        self._token_service = token_service

    def execute(self, token: str) -> AuthenticatedUser:
        return self._token_service.verify_token(token)
