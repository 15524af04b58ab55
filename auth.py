"""
Session-token authentication.

Clients send ``Authorization: Bearer <token>``; tokens live in the "session"
collection with a fixed expiry. ``get_current_user`` resolves the principal
and ``authorize`` restricts a route to roles.
"""
import hashlib
import hmac
import logging
import secrets
from datetime import timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Request, Response, UploadFile

from config import Settings, get_settings
from database import SESSION, USER, Database, create_unique_document, get_db, object_id, to_dict, utcnow
from errors import AuthenticationError, AuthorizationError, NotFoundError, ValidationError
from ratelimit import change_password_limiter, login_limiter, upload_limiter
from schemas import (
    AuthResponse,
    ChangePasswordPayload,
    LoginPayload,
    RegisterPayload,
    UpdateDetailsPayload,
    User,
)
import storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

_DEF_HASH_ITER = 100_000
MIN_PASSWORD_LENGTH = 8


def hash_password(password: str, salt: str) -> str:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), _DEF_HASH_ITER).hex()


def password_fields(password: str) -> Dict[str, str]:
    salt = secrets.token_hex(16)
    return {"passwordSalt": salt, "passwordHash": hash_password(password, salt)}


def verify_password(user: Dict[str, Any], password: str) -> bool:
    salt = user.get("passwordSalt")
    if not salt:
        return False
    return hmac.compare_digest(hash_password(password, salt), user.get("passwordHash", ""))


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    d = to_dict(user)
    d.pop("passwordHash", None)
    d.pop("passwordSalt", None)
    return d


def create_session(db: Database, user_id, ttl_days: int = 7) -> str:
    token = secrets.token_urlsafe(32)
    now = utcnow()
    db[SESSION].insert_one({
        "userId": user_id,
        "token": token,
        "createdAt": now,
        "expiresAt": now + timedelta(days=ttl_days),
    })
    return token


def _token_from(request: Request) -> Optional[str]:
    """
    Expect Authorization: Bearer <token>; the login cookie is accepted too.
    """
    header = request.headers.get("authorization")
    if header:
        try:
            scheme, token = header.split(" ", 1)
        except ValueError:
            return None
        if scheme.lower() != "bearer":
            return None
        return token.strip() or None
    return request.cookies.get("token") or None


def authenticate(request: Request, db: Database) -> Dict[str, Any]:
    token = _token_from(request)
    if not token:
        raise AuthenticationError()
    sess = db[SESSION].find_one({"token": token})
    if not sess:
        raise AuthenticationError()
    expires = sess.get("expiresAt")
    if expires is not None:
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        if expires < utcnow():
            raise AuthenticationError("Session expired")
    user = db[USER].find_one({"_id": sess["userId"]})
    if not user:
        raise AuthenticationError()
    request.state.token = token
    return user


def get_current_user(request: Request, db: Database = Depends(get_db)) -> Dict[str, Any]:
    return authenticate(request, db)


def authorize(*roles: str):
    def dependency(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if user.get("role") not in roles:
            raise AuthorizationError(
                f"User role {user.get('role')} is not authorized to access this route"
            )
        return user

    return dependency


require_admin = authorize("admin")


def _token_response(response: Response, db: Database, user: Dict[str, Any], settings: Settings) -> Dict[str, Any]:
    token = create_session(db, user["_id"], settings.SESSION_TTL_DAYS)
    response.set_cookie(
        "token",
        token,
        max_age=settings.SESSION_TTL_DAYS * 24 * 60 * 60,
        httponly=True,
        samesite="lax",
        secure=settings.ENV.lower() in ("prod", "production"),
    )
    u = public_user(user)
    return {
        "success": True,
        "token": token,
        "user": {
            "id": u["id"],
            "firstName": u.get("firstName", ""),
            "lastName": u.get("lastName", ""),
            "email": u["email"],
            "role": u.get("role", "user"),
            "photo": u.get("photo"),
        },
    }


@router.post("/register", response_model=AuthResponse)
def register(
    payload: RegisterPayload,
    response: Response,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    if db[USER].find_one({"email": payload.email}):
        raise ValidationError("Email already registered")
    # self-registration never grants admin
    user = User(first_name=payload.first_name, last_name=payload.last_name, email=payload.email, role="user")
    user_doc = {
        **user.model_dump(by_alias=True),
        **password_fields(payload.password),
    }
    user_doc["_id"] = create_unique_document(db, USER, user_doc, "Email already registered")
    return _token_response(response, db, user_doc, settings)


@router.post("/login", response_model=AuthResponse, dependencies=[Depends(login_limiter)])
def login(
    payload: LoginPayload,
    response: Response,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = db[USER].find_one({"email": payload.email})
    if not user or not verify_password(user, payload.password):
        logger.info("Failed login attempt")
        raise AuthenticationError("Invalid credentials")
    return _token_response(response, db, user, settings)


@router.get("/me")
def me(user: Dict[str, Any] = Depends(get_current_user)):
    return {"success": True, "data": public_user(user)}


@router.api_route("/logout", methods=["GET", "POST"])
def logout(
    request: Request,
    response: Response,
    user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    db[SESSION].delete_one({"token": request.state.token})
    response.delete_cookie("token")
    return {"success": True, "data": {}}


@router.put("/updatedetails")
def update_details(
    payload: UpdateDetailsPayload,
    user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    updates = payload.model_dump(by_alias=True, exclude_none=True)
    if "email" in updates:
        other = db[USER].find_one({"email": updates["email"], "_id": {"$ne": user["_id"]}})
        if other:
            raise ValidationError("Another user already uses that email")
    updates["updatedAt"] = utcnow()
    db[USER].update_one({"_id": user["_id"]}, {"$set": updates})
    return {"success": True, "data": public_user(db[USER].find_one({"_id": user["_id"]}))}


@router.post("/change-password", dependencies=[Depends(change_password_limiter)])
def change_password(
    payload: ChangePasswordPayload,
    user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    if not payload.current_password or not payload.new_password or not payload.confirm_password:
        raise ValidationError("Current password and new password (and confirmation) are required")
    if payload.new_password != payload.confirm_password:
        raise ValidationError("New password and confirmation do not match")
    if len(payload.new_password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"New password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not verify_password(user, payload.current_password):
        raise AuthenticationError("Current password is incorrect")

    db[USER].update_one(
        {"_id": user["_id"]},
        {"$set": {**password_fields(payload.new_password), "updatedAt": utcnow()}},
    )
    return {"success": True, "message": "Password changed successfully"}


@router.put("/{user_id}/photo", dependencies=[Depends(upload_limiter)])
async def user_photo_upload(
    user_id: str,
    file: UploadFile = File(...),
    user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    oid = object_id(user_id, "user id")
    target = db[USER].find_one({"_id": oid})
    if not target:
        raise NotFoundError(f"User not found with id of {user_id}")
    if user["_id"] != oid and user.get("role") != "admin":
        raise AuthorizationError("Not authorized to upload a photo for this user")

    filename = await storage.save_image(file, f"photo_{oid}", settings)
    if target.get("photo") and target["photo"] != filename:
        storage.remove_file(settings, target["photo"])
    db[USER].update_one({"_id": oid}, {"$set": {"photo": filename, "updatedAt": utcnow()}})
    return {"success": True, "data": filename}
