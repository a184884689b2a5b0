import hashlib
import hmac
import secrets
from datetime import datetime, timedelta

from passlib.context import CryptContext
from jose import jwt, JWTError

from insighthub.core.config import settings
from insighthub.core.constants import API_KEY_PREFIX

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.BCRYPT_ROUNDS)


def hash_password(p: str) -> str: return pwd_context.hash(p)
def verify_password(p: str, hashed: str) -> bool: return pwd_context.verify(p, hashed)


def create_token(sub: str, expires_minutes=None, **claims) -> str:
    minutes = expires_minutes if expires_minutes is not None else settings.ACCESS_TOKEN_MINUTES
    to_encode = {"sub": sub, "exp": datetime.utcnow() + timedelta(minutes=minutes), **claims}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str):
    """Return the token claims, or None for a bad or expired token."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None


def generate_token(length: int = 32) -> str:
    return secrets.token_hex(length)


def hash_api_key(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def generate_api_key():
    """Return ``(key, key_hash)``; only the hash is persisted."""
    key = f"{API_KEY_PREFIX}{generate_token(24)}"
    return key, hash_api_key(key)


def sign_payload(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes, signature: str, secret: str) -> bool:
    return hmac.compare_digest(sign_payload(payload, secret), signature or "")
