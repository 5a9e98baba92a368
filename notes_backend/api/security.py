from datetime import datetime, timedelta, timezone
from typing import NamedTuple, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

ALGORITHM = "HS256"


class TokenUser(NamedTuple):
    """Identity carried inside a bearer token."""
    id: int
    username: str


# PUBLIC_INTERFACE
class AuthManager:
    """
    Password hashing (bcrypt via passlib) and signed bearer tokens (HS256 JWT).
    """

    def __init__(self, secret_key: str, expire_minutes: int = 60 * 24, bcrypt_rounds: int = 10):
        self.secret_key = secret_key
        self.expire_minutes = expire_minutes
        self.pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=bcrypt_rounds)

    @classmethod
    def from_settings(cls, settings):
        return cls(
            settings.secret_key,
            expire_minutes=settings.access_token_expire_minutes,
            bcrypt_rounds=settings.bcrypt_rounds,
        )

    def verify_password(self, plain_password, hashed_password):
        return self.pwd_context.verify(plain_password, hashed_password)

    def get_password_hash(self, password):
        return self.pwd_context.hash(password)

    def create_access_token(self, user_id: int, username: str, expires_delta: Optional[timedelta] = None):
        """Generates a JWT carrying the user's id and username."""
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta if expires_delta is not None else timedelta(minutes=self.expire_minutes))
        to_encode = {"id": user_id, "username": username, "iat": now, "exp": expire}
        return jwt.encode(to_encode, self.secret_key, algorithm=ALGORITHM)

    def decode_access_token(self, token: str) -> TokenUser:
        """
        Verifies signature and expiry. Raises JWTError if the token is invalid,
        expired, or missing its identity claims.
        """
        payload = jwt.decode(token, self.secret_key, algorithms=[ALGORITHM])
        user_id = payload.get("id")
        username = payload.get("username")
        if not isinstance(user_id, int) or not isinstance(username, str):
            raise JWTError("Token is missing identity claims")
        return TokenUser(user_id, username)
