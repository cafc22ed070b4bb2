"""
Password + email OTP sign-in.

A password check never yields a token on its own: signup and login only
open an OTP challenge, and ``verify_otp`` is the single place a session
token is issued.
"""
import math
from typing import Optional

import structlog
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import settings
from database import create_document, now_utc, serialize_doc, to_object_id
from errors import AuthError, ConflictError, ExpiredError, InvalidCodeError, NotFoundError, RateLimitError, ValidationError
from mailer import send_otp_email
from otp import OtpStore
from schemas import User as UserSchema
from security import create_token, hash_secret, verify_secret

logger = structlog.get_logger(__name__)

# bcrypt only accepts secrets up to 72 bytes
MAX_PASSWORD_BYTES = 72


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def public_user(user: dict) -> dict:
    data = serialize_doc(user)
    data.pop("password_hash", None)
    return data


def register(db: Database, mailer, first_name: str, last_name: str, email: str, password: str, confirm_password: str) -> dict:
    first_name = (first_name or "").strip()
    last_name = (last_name or "").strip()
    email = normalize_email(email)
    if not first_name or not last_name or not email or not password:
        raise ValidationError("All fields are required")
    if password != confirm_password:
        raise ValidationError("Passwords do not match")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")

    if db["user"].find_one({"email": email}):
        raise ConflictError("Email already registered")

    user = UserSchema(
        first_name=first_name,
        last_name=last_name,
        email=email,
        password_hash=hash_secret(password),
    )
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise ConflictError("Email already registered")
    logger.info("user_registered", user_id=user_id, email=email)

    code = OtpStore(db).issue(email, user_id)
    logger.info("otp_issued", email=email, reason="signup")
    if not send_otp_email(mailer, email, code):
        return {
            "message": "Account created. Email sending failed - please try resending OTP.",
            "email_error": True,
        }
    return {"message": "Signup successful, OTP sent to email", "email_error": False}


def login(db: Database, mailer, email: str, password: str) -> dict:
    email = normalize_email(email)
    if not email or not password:
        raise ValidationError("Email and password required")

    user = db["user"].find_one({"email": email})
    if not user or not verify_secret(password, user.get("password_hash", "")):
        raise AuthError("Invalid email or password")

    code = OtpStore(db).issue(email, str(user["_id"]))
    logger.info("otp_issued", email=email, reason="login")
    if not send_otp_email(mailer, email, code):
        return {
            "message": "Credentials accepted but email failed. Please try resending OTP.",
            "email_error": True,
        }
    return {"message": "OTP sent to your email", "email_error": False}


def resend_otp(db: Database, mailer, email: str) -> dict:
    email = normalize_email(email)
    if not email:
        raise ValidationError("Email is required")

    store = OtpStore(db)
    cooldown = settings.otp_resend_cooldown_seconds
    last = store.last_resend(email)
    if last is not None:
        elapsed = (now_utc() - last).total_seconds()
        if elapsed < cooldown:
            remaining = max(1, math.ceil(cooldown - elapsed))
            raise RateLimitError(
                f"Please wait {remaining} seconds before requesting another OTP",
                retry_after=remaining,
            )

    code = store.refresh(email)
    if code is None:
        raise NotFoundError("No pending verification. Please login or signup first.")
    store.mark_resend(email)
    logger.info("otp_issued", email=email, reason="resend")

    sent = send_otp_email(mailer, email, code)
    return {"message": "New OTP sent to your email", "cooldown": cooldown, "email_error": not sent}


def verify_otp(db: Database, email: str, code: str) -> dict:
    email = normalize_email(email)
    code = (code or "").strip()
    if not email or not code:
        raise ValidationError("Email and OTP required")

    store = OtpStore(db)
    challenge = store.get(email)
    if challenge is None:
        raise NotFoundError("No OTP found. Please request a new one")
    if store.is_expired(challenge):
        store.delete(email)
        raise ExpiredError("OTP expired. Please request a new one")
    if not store.matches(challenge, code):
        raise InvalidCodeError("Invalid OTP")
    if not store.consume(challenge):
        raise NotFoundError("No OTP found. Please request a new one")
    store.clear_resend(email)

    user_oid = to_object_id(challenge["user_id"])
    user = db["user"].find_one({"_id": user_oid})
    if not user:
        raise NotFoundError("User not found")
    if not user.get("email_verified_at"):
        verified_at = now_utc()
        db["user"].update_one({"_id": user_oid}, {"$set": {"email_verified_at": verified_at}})
        user["email_verified_at"] = verified_at

    token = create_token({"id": str(user["_id"]), "email": user["email"], "role": user.get("role", "user")})
    logger.info("user_logged_in", user_id=str(user["_id"]))
    return {"token": token, "user": public_user(user)}


def get_profile(db: Database, user_id: str) -> dict:
    user = db["user"].find_one({"_id": to_object_id(user_id)})
    if not user:
        raise NotFoundError("User not found")
    return public_user(user)


def update_profile(db: Database, user_id: str, first_name: Optional[str] = None, last_name: Optional[str] = None) -> dict:
    update = {}
    if first_name is not None:
        if not first_name.strip():
            raise ValidationError("First name cannot be empty")
        update["first_name"] = first_name.strip()
    if last_name is not None:
        if not last_name.strip():
            raise ValidationError("Last name cannot be empty")
        update["last_name"] = last_name.strip()
    if not update:
        raise ValidationError("No fields to update")
    update["updated_at"] = now_utc()
    res = db["user"].update_one({"_id": to_object_id(user_id)}, {"$set": update})
    if res.matched_count == 0:
        raise NotFoundError("User not found")
    return get_profile(db, user_id)
