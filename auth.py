"""
Accounts and the bearer-session gate.

Tokens are opaque random strings stored in the "session" collection; a request
presents one as `Authorization: Bearer <token>` and resolves to a user document.
"""

import os
import hmac
import hashlib
import logging
import secrets
from datetime import timedelta, timezone
from typing import Optional

from fastapi import Depends, Header
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, utcnow
from errors import AuthError, ConflictError, ForbiddenError
from schemas import User

logger = logging.getLogger(__name__)

SESSION_TTL_HOURS = int(os.getenv("SESSION_TTL_HOURS", "168"))
PASSWORD_HASH_ITERATIONS = int(os.getenv("PASSWORD_HASH_ITERATIONS", "260000"))


# Passwords

def hash_password(password: str) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PASSWORD_HASH_ITERATIONS)
    return f"pbkdf2_sha256${PASSWORD_HASH_ITERATIONS}${salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        _, iterations, salt, expected = stored.split("$")
    except (AttributeError, ValueError):
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), int(iterations))
    return hmac.compare_digest(digest.hex(), expected)


def public_user(doc: Optional[dict]) -> Optional[dict]:
    """Minimal projection safe to embed in responses."""
    if not doc:
        return None
    return {"id": str(doc["_id"]), "email": doc.get("email"), "display_name": doc.get("display_name")}


# Accounts

def register_user(database, email: str, password: str, display_name: str, phone: Optional[str] = None) -> dict:
    if database["user"].find_one({"email": email}):
        raise ConflictError("Email already in use")
    if database["user"].find_one({"display_name": display_name}):
        raise ConflictError("Username already in use")

    user = User(email=email, display_name=display_name, phone=phone, password_hash=hash_password(password))
    try:
        user_id = create_document(database, "user", user)
    except DuplicateKeyError:
        raise ConflictError("Email or username already in use")
    logger.info("Registered user %s", user_id)
    return public_user(database["user"].find_one({"email": email}))


def issue_session(database, user: dict) -> str:
    token = secrets.token_urlsafe(32)
    now = utcnow()
    database["session"].insert_one({
        "token": token,
        "user_id": user["_id"],
        "created_at": now,
        "expires_at": now + timedelta(hours=SESSION_TTL_HOURS),
    })
    return token


def login(database, email: Optional[str], password: Optional[str]) -> dict:
    if not email or not password:
        raise AuthError("Email and password required")
    user = database["user"].find_one({"email": email.strip().lower()})
    if not user or not verify_password(password, user.get("password_hash", "")):
        logger.warning("Failed login for %s", email)
        raise AuthError("Email or password incorrect")
    return {"token": issue_session(database, user), "user": public_user(user)}


def logout(database, token: str) -> None:
    database["session"].delete_one({"token": token})


def resolve_token(database, token: Optional[str]) -> dict:
    if not token:
        raise AuthError("Unauthorized, token missing")
    session = database["session"].find_one({"token": token})
    if not session:
        raise AuthError("Invalid or expired token")
    expires_at = session.get("expires_at")
    if expires_at is not None:
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at <= utcnow():
            database["session"].delete_one({"_id": session["_id"]})
            raise AuthError("Invalid or expired token")
    user = database["user"].find_one({"_id": session["user_id"]}, {"password_hash": 0})
    if not user:
        raise AuthError("User not found for the provided token")
    return user


# FastAPI dependencies

def bearer_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return None


def current_user(token: Optional[str] = Depends(bearer_token), database=Depends(get_db)) -> dict:
    return resolve_token(database, token)


def is_admin(user: dict) -> bool:
    return user.get("role") == "admin"


def admin_user(user: dict = Depends(current_user)) -> dict:
    if not is_admin(user):
        raise ForbiddenError()
    return user
