import logging
import os
import secrets
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional
from urllib.parse import urlencode

import requests
from fastapi import Depends, Request, Response
from jose import JWTError, jwt
from passlib.context import CryptContext

import audit
from database import create_document, get_db, serialize, to_object_id
from errors import LastAdminProtected, NotFound, Unauthorized
from schemas import User, UserRole

logger = logging.getLogger(__name__)

JWT_SECRET = os.getenv("JWT_SECRET")
if not JWT_SECRET:
    logger.warning("JWT_SECRET is not set; using the development secret")
    JWT_SECRET = "dev-secret-change-me"
JWT_ALG = "HS256"
SESSION_COOKIE = "gl_token"
SESSION_MAX_AGE = 60 * 60 * 24 * 7
COOKIE_SECURE = os.getenv("COOKIE_SECURE", "false").lower() in ("1", "true", "yes")

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
GOOGLE_STATE_COOKIE = "gl_google_state"
GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
HTTP_TIMEOUT = 10

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class RoleChangeResult(str, Enum):
    applied = "APPLIED"
    rejected_last_admin = "REJECTED_LAST_ADMIN"


class OAuthError(Exception):
    """Carries the reason shown on the login page after a failed Google sign-in."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


# ---------- Passwords & sessions ----------

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except (ValueError, TypeError):
        return False


def issue_session(user_id: str, email: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(seconds=SESSION_MAX_AGE))
    role = role.value if isinstance(role, UserRole) else role
    return jwt.encode({"sub": user_id, "email": email, "role": role, "exp": expire}, JWT_SECRET, algorithm=JWT_ALG)


def decode_session(token: Optional[str]) -> Optional[dict]:
    if not token:
        return None
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except JWTError:
        return None
    if not payload.get("sub"):
        return None
    return payload


def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=SESSION_MAX_AGE,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="lax",
        path="/",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE, path="/")


def public_user(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user["email"],
        "role": user.get("role", UserRole.user.value),
    }


def resolve_current_user(request: Request, db) -> Optional[dict]:
    payload = decode_session(request.cookies.get(SESSION_COOKIE))
    if payload is None:
        return None
    oid = to_object_id(payload["sub"])
    if oid is None:
        return None
    return db["user"].find_one({"_id": oid})


# FastAPI dependencies

def get_optional_user(request: Request, db=Depends(get_db)) -> Optional[dict]:
    return resolve_current_user(request, db)


def get_current_user(request: Request, db=Depends(get_db)) -> dict:
    user = resolve_current_user(request, db)
    if user is None:
        raise Unauthorized("No autenticado")
    return user


def require_admin(request: Request, db=Depends(get_db)) -> dict:
    user = resolve_current_user(request, db)
    if user is None or user.get("role") != UserRole.admin.value:
        raise Unauthorized()
    return user


# ---------- Accounts ----------

def register_user(db, email: str, password: str, name: Optional[str] = None) -> Optional[dict]:
    """Create a customer account. Returns None when the email is already taken."""
    email = email.strip().lower()
    if db["user"].find_one({"email": email}):
        return None
    doc = User(email=email, password_hash=hash_password(password), name=name, role=UserRole.user).model_dump(mode="json")
    user_id = create_document(db, "user", doc)
    return db["user"].find_one({"_id": to_object_id(user_id)})


def authenticate(db, email: str, password: str) -> Optional[dict]:
    user = db["user"].find_one({"email": email.strip().lower()})
    if not user or not verify_password(password, user.get("password_hash", "")):
        return None
    audit.record(db, "LOGIN", user_id=str(user["_id"]), entity="user", entity_id=str(user["_id"]), details={"email": user["email"]})
    return user


def check_role_change(db, user: dict, new_role: UserRole) -> RoleChangeResult:
    """Refuse to demote the only remaining admin, whoever asks for it."""
    if user.get("role") == UserRole.admin.value and new_role != UserRole.admin:
        if db["user"].count_documents({"role": UserRole.admin.value}) <= 1:
            return RoleChangeResult.rejected_last_admin
    return RoleChangeResult.applied


def change_user(db, user_id: str, role: Optional[UserRole] = None, name: Optional[str] = None) -> dict:
    oid = to_object_id(user_id)
    existing = db["user"].find_one({"_id": oid}) if oid else None
    if not existing:
        raise NotFound("Usuario no encontrado")

    update = {}
    if role is not None:
        if check_role_change(db, existing, role) is RoleChangeResult.rejected_last_admin:
            raise LastAdminProtected()
        update["role"] = role.value
    if name is not None:
        update["name"] = name
    if update:
        update["updated_at"] = datetime.now(timezone.utc)
        db["user"].update_one({"_id": oid}, {"$set": update})
    user = db["user"].find_one({"_id": oid})
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user["email"],
        "role": user.get("role"),
        "created_at": user.get("created_at"),
    }


# ---------- Google OAuth ----------

def google_configured() -> bool:
    return bool(GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET)


def google_authorization_url(redirect_uri: str, state: str) -> str:
    params = {
        "client_id": GOOGLE_CLIENT_ID,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": "openid email profile",
        "state": state,
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


def new_oauth_state() -> str:
    return secrets.token_hex(24)


def fetch_google_profile(code: str, redirect_uri: str) -> dict:
    try:
        token_res = requests.post(
            GOOGLE_TOKEN_URL,
            data={
                "code": code,
                "client_id": GOOGLE_CLIENT_ID,
                "client_secret": GOOGLE_CLIENT_SECRET,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
            },
            timeout=HTTP_TIMEOUT,
        )
    except requests.RequestException:
        logger.exception("Google token exchange failed")
        raise OAuthError("google_token")
    if not token_res.ok:
        logger.error("Google token error: %s %s", token_res.status_code, token_res.text[:200])
        raise OAuthError("google_token")
    try:
        access_token = token_res.json().get("access_token")
    except ValueError:
        raise OAuthError("google_token")
    if not access_token:
        raise OAuthError("google_token")

    try:
        info_res = requests.get(GOOGLE_USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"}, timeout=HTTP_TIMEOUT)
    except requests.RequestException:
        logger.exception("Google userinfo request failed")
        raise OAuthError("google_userinfo")
    if not info_res.ok:
        raise OAuthError("google_userinfo")
    try:
        return info_res.json()
    except ValueError:
        raise OAuthError("google_userinfo")


def login_with_google(db, profile: dict) -> dict:
    email = (profile.get("email") or "").strip().lower()
    name = (profile.get("name") or "").strip() or None
    if not email:
        raise OAuthError("no_email")

    user = db["user"].find_one({"email": email})
    if user is None:
        doc = User(email=email, name=name, password_hash=hash_password(secrets.token_hex(32)), role=UserRole.user).model_dump(mode="json")
        user_id = create_document(db, "user", doc)
        user = db["user"].find_one({"_id": to_object_id(user_id)})
    elif name and not user.get("name"):
        db["user"].update_one({"_id": user["_id"]}, {"$set": {"name": name, "updated_at": datetime.now(timezone.utc)}})
        user["name"] = name
    return user


def list_users(db) -> list:
    counts = {row["_id"]: row["count"] for row in db["order"].aggregate([
        {"$match": {"user_id": {"$ne": None}}},
        {"$group": {"_id": "$user_id", "count": {"$sum": 1}}},
    ])}
    users = []
    for user in db["user"].find({}, {"password_hash": 0}).sort("created_at", -1):
        user = serialize(user)
        user["orders_count"] = counts.get(user["id"], 0)
        users.append(user)
    return users
