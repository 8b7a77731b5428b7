from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import UUID

import jwt

from daily_match.application.interfaces import AbstractTokenService
from daily_match.config import config
from daily_match.domain.exceptions import InvalidCredentialError
from daily_match.domain.value_objects import Credential


class JWTTokenService(AbstractTokenService):
    """ Самодостаточные токены доступа: проверка без хранилища сессий """

    def __init__(
            self,
            secret: str = None,
            ttl: timedelta = None,
            algorithm: str = None,
            clock: Optional[Callable[[], datetime]] = None
    ):
        self.secret = secret or config.jwt.secret
        self.ttl = ttl or config.jwt.ttl
        self.algorithm = algorithm or config.jwt.algorithm
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    def issue(self, user_id: UUID) -> Credential:
        issued_at = self._clock()
        expires_at = issued_at + self.ttl
        payload = {
            'user_id': str(user_id),
            'iat': int(issued_at.timestamp()),
            'exp': int(expires_at.timestamp()),
        }
        token = jwt.encode(payload, self.secret, algorithm=self.algorithm)
        return Credential(token=token, user_id=user_id, expires_at=expires_at)

    def verify(self, token: str) -> UUID:
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={'require': ['exp', 'user_id']}
            )
        except jwt.ExpiredSignatureError:
            raise InvalidCredentialError("Token expired")
        except jwt.InvalidTokenError:
            raise InvalidCredentialError("Invalid token")

        try:
            return UUID(str(payload['user_id']))
        except ValueError:
            raise InvalidCredentialError("Invalid token claims")
