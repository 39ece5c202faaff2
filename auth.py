import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext

import schemas
from database import get_storage
from storage import Storage

# --- Configuration ---
JWT_SECRET = os.getenv("JWT_SECRET", "storefront-dev-secret-change-me-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
TOKEN_EXPIRE_DAYS = int(os.getenv("TOKEN_EXPIRE_DAYS", "7"))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)

# auto_error=False so a missing header is a 401 rather than FastAPI's default
security = HTTPBearer(auto_error=False)


# --- Passwords ---
def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


# --- Tokens ---
def create_token(user_id: int) -> str:
    expires_at = datetime.now(timezone.utc) + timedelta(days=TOKEN_EXPIRE_DAYS)
    return jwt.encode({"sub": str(user_id), "exp": expires_at}, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


# --- Dependencies ---
def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    storage: Storage = Depends(get_storage),
) -> schemas.UserInDB:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    payload = decode_token(credentials.credentials)
    user_id = payload.get("sub")
    if not user_id or not user_id.isdigit():
        raise HTTPException(status_code=401, detail="Invalid token payload")
    user = storage.get_user(int(user_id))
    if user is None:
        logger.warning(f"Token presented for missing user {user_id}")
        raise HTTPException(status_code=401, detail="User not found")
    return user


def get_current_admin(user: schemas.UserInDB = Depends(get_current_user)) -> schemas.UserInDB:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Forbidden")
    return user
