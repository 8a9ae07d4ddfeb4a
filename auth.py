import hashlib
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import get_db, guarded, now, serialize, to_obj_id
from errors import AuthRequired, Forbidden, NotFound, ValidationFailure
from schemas import Profile

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
JWT_TTL_DAYS = int(os.getenv("JWT_TTL_DAYS", "7"))
security = HTTPBearer(auto_error=False)

PROFILE_FIELDS = ("first_name", "last_name", "avatar_url")


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode()).hexdigest()


def create_token(payload: dict) -> str:
    exp = datetime.now(timezone.utc) + timedelta(days=JWT_TTL_DAYS)
    to_encode = {**payload, "exp": exp}
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise AuthRequired("Your session has expired, please sign in again")
    except jwt.InvalidTokenError:
        raise AuthRequired("Invalid session token")


def public_user(doc: dict) -> dict:
    user = serialize(doc)
    user.pop("password_hash", None)
    return user


def token_for(user: dict) -> str:
    return create_token({"id": user["id"], "email": user["email"], "role": user.get("role", "customer")})


@guarded("load profile")
def load_user(db: Database, user_id: str) -> dict:
    doc = db["profiles"].find_one({"_id": to_obj_id(user_id, "User")})
    if not doc:
        raise NotFound("User not found")
    return public_user(doc)


@guarded("sign up")
def signup(db: Database, email: str, password: str, first_name: Optional[str] = None,
           last_name: Optional[str] = None) -> dict:
    if len(password) < 6:
        raise ValidationFailure("Password must be at least 6 characters")
    profile = Profile(email=email, password_hash=hash_password(password), role="customer",
                      first_name=first_name, last_name=last_name)
    if db["profiles"].find_one({"email": profile.email}):
        raise ValidationFailure("Email already registered")
    doc = profile.model_dump()
    doc["created_at"] = doc["updated_at"] = now()
    try:
        user_id = str(db["profiles"].insert_one(doc).inserted_id)
    except DuplicateKeyError:
        raise ValidationFailure("Email already registered")
    user = load_user(db, user_id)
    return {"token": token_for(user), "user": user}


@guarded("sign in")
def login(db: Database, email: str, password: str) -> dict:
    doc = db["profiles"].find_one({"email": email})
    if not doc or doc.get("password_hash") != hash_password(password):
        raise AuthRequired("Invalid credentials")
    user = public_user(doc)
    return {"token": token_for(user), "user": user}


@guarded("update profile")
def update_profile(db: Database, user_id: str, fields: dict) -> dict:
    update = {k: v for k, v in fields.items() if k in PROFILE_FIELDS}
    if update:
        update["updated_at"] = now()
        db["profiles"].update_one({"_id": to_obj_id(user_id, "User")}, {"$set": update})
    return load_user(db, user_id)


def _user_from(credentials: Optional[HTTPAuthorizationCredentials], db: Database) -> Optional[dict]:
    if credentials is None:
        return None
    payload = decode_token(credentials.credentials)
    user_id = payload.get("id")
    if not user_id:
        raise AuthRequired("Invalid token payload")
    try:
        return load_user(db, user_id)
    except NotFound:
        raise AuthRequired("User not found")


def get_optional_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
                      db: Database = Depends(get_db)) -> Optional[dict]:
    return _user_from(credentials, db)


def get_current_user(request: Request,
                     credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
                     db: Database = Depends(get_db)) -> dict:
    user = _user_from(credentials, db)
    if user is None:
        raise AuthRequired(redirect_to=request.url.path)
    return user


def require_role(*roles: str):
    def dependency(user: dict = Depends(get_current_user)) -> dict:
        if user.get("role") not in roles:
            raise Forbidden(f"{' or '.join(r.capitalize() for r in roles)} only")
        return user
    return dependency
