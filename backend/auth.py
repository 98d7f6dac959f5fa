"""
Bearer-token sessions.

Tokens only carry the user id (``sub``); the role is looked up from the
``user`` collection on every request.
"""
import hashlib
import logging
import os
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from database import get_db, serialize_doc, to_object_id

logger = logging.getLogger(__name__)

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
TOKEN_TTL_DAYS = int(os.getenv("TOKEN_TTL_DAYS", "7"))

# missing header must be a 401, HTTPBearer's own error is a 403
bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(pw: str) -> str:
    return hashlib.sha256(pw.encode()).hexdigest()


def issue_token(user_id: str) -> str:
    issued = datetime.now(timezone.utc)
    claims = {"sub": user_id, "iat": issued, "exp": issued + timedelta(days=TOKEN_TTL_DAYS)}
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGO)


def token_subject(token: str) -> str:
    try:
        claims = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO], options={"require": ["sub", "exp"]})
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")
    return claims["sub"]


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme), db=Depends(get_db)):
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    user_id = token_subject(credentials.credentials)
    try:
        oid = to_object_id(user_id, "User")
    except HTTPException:
        raise HTTPException(status_code=401, detail="Invalid token")
    user = db["user"].find_one({"_id": oid})
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return serialize_doc(user)


def require_admin(user=Depends(get_current_user)):
    if user.get("role") != "admin":
        logger.warning("Non-admin %s denied admin route", user.get("email"))
        raise HTTPException(status_code=403, detail="Admin only")
    return user
