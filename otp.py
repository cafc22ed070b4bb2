"""
One-time-password challenges, kept in MongoDB so every app instance sees
the same pending challenge.

``otp_challenge``: one document per lowercased email holding the bcrypt
hash of the current code, its absolute expiry and the pending user id.
``otp_resend``: last resend time per email, for the resend cooldown.
"""
import secrets
from datetime import datetime, timedelta
from typing import Optional

from pymongo import ReturnDocument
from pymongo.database import Database

from config import settings
from database import as_utc, now_utc
from security import hash_secret, verify_secret


def generate_otp(length: int = None) -> str:
    length = length or settings.otp_length
    return f"{secrets.randbelow(10 ** length):0{length}d}"


class OtpStore:
    def __init__(self, database: Database):
        self.challenges = database["otp_challenge"]
        self.resends = database["otp_resend"]

    def issue(self, email: str, user_id: str) -> str:
        """Start (or replace) the challenge for email, bound to user_id."""
        code = generate_otp()
        now = now_utc()
        self.challenges.update_one(
            {"email": email},
            {
                "$set": {
                    "email": email,
                    "user_id": user_id,
                    "code_hash": hash_secret(code),
                    "expires_at": now + timedelta(minutes=settings.otp_ttl_minutes),
                    "updated_at": now,
                },
                "$setOnInsert": {"created_at": now},
            },
            upsert=True,
        )
        return code

    def refresh(self, email: str) -> Optional[str]:
        """New code and expiry for an existing challenge, keeping its user binding."""
        code = generate_otp()
        now = now_utc()
        doc = self.challenges.find_one_and_update(
            {"email": email},
            {
                "$set": {
                    "code_hash": hash_secret(code),
                    "expires_at": now + timedelta(minutes=settings.otp_ttl_minutes),
                    "updated_at": now,
                }
            },
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            return None
        return code

    def get(self, email: str) -> Optional[dict]:
        return self.challenges.find_one({"email": email})

    def delete(self, email: str) -> None:
        self.challenges.delete_one({"email": email})

    def consume(self, challenge: dict) -> bool:
        """Delete exactly this challenge; False if another request got there first."""
        return self.challenges.find_one_and_delete({"_id": challenge["_id"]}) is not None

    @staticmethod
    def is_expired(challenge: dict, now: datetime = None) -> bool:
        return (now or now_utc()) > as_utc(challenge["expires_at"])

    @staticmethod
    def matches(challenge: dict, code: str) -> bool:
        return verify_secret(code, challenge.get("code_hash", ""))

    def last_resend(self, email: str) -> Optional[datetime]:
        doc = self.resends.find_one({"email": email})
        if not doc:
            return None
        return as_utc(doc["last_sent_at"])

    def mark_resend(self, email: str) -> None:
        self.resends.update_one(
            {"email": email},
            {"$set": {"email": email, "last_sent_at": now_utc()}},
            upsert=True,
        )

    def clear_resend(self, email: str) -> None:
        self.resends.delete_one({"email": email})
