import secrets
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Optional

import bcrypt
import jwt

from config import settings
from database import now_utc
from errors import AuthError


def hash_secret(plain: str, rounds: Optional[int] = None) -> str:
    salt = bcrypt.gensalt(rounds=rounds or settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_secret(plain: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # malformed stored hash, or a secret over the 72-byte bcrypt limit
        return False


def create_token(payload: dict, ttl: Optional[timedelta] = None) -> str:
    exp = now_utc() + (ttl or timedelta(days=settings.jwt_ttl_days))
    to_encode = {**payload, "exp": exp}
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algo)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algo])
    except jwt.ExpiredSignatureError:
        raise AuthError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthError("Invalid token")


class AdminAuthenticator(ABC):
    """Policy deciding who may open an admin panel session."""

    @abstractmethod
    def authenticate(self, email: str, password: str) -> Optional[dict]:
        ...


class StaticAdminAuthenticator(AdminAuthenticator):
    """Single admin identity taken from configuration.

    An empty configured email or password disables admin login entirely.
    """

    def __init__(self, email: str, password: str):
        self.email = (email or "").strip().lower()
        self.password = password or ""

    def authenticate(self, email: str, password: str) -> Optional[dict]:
        if not self.email or not self.password:
            return None
        email_ok = secrets.compare_digest((email or "").strip().lower().encode(), self.email.encode())
        password_ok = secrets.compare_digest((password or "").encode(), self.password.encode())
        if email_ok and password_ok:
            return {"email": self.email, "role": "admin"}
        return None


def get_admin_authenticator() -> AdminAuthenticator:
    return StaticAdminAuthenticator(settings.admin_email, settings.admin_password)
