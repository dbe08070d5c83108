"""Security utilities: password hashing, API key secrets, and session tokens."""

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone

from jose import jwt
from passlib.context import CryptContext

from tenantgate.core.config import get_settings

settings = get_settings()

# ── Password hashing (Argon2) ────────────────────────────────

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def dummy_verify_password() -> None:
    """Spend one argon2 verify when there is no user, so misses take as long as hits."""
    pwd_context.dummy_verify()


# ── API key secrets (salted HMAC-SHA256) ─────────────────────

def generate_key_id() -> str:
    """Public, unique identifier half of an API key (24 hex chars)."""
    return secrets.token_hex(12)


def generate_key_secret() -> str:
    """Private half of an API key: 192 bits of entropy."""
    return secrets.token_hex(24)


def hash_key_secret(secret: str, salt: str | None = None) -> str:
    """One-way salted hash of an API key secret, stored as ``salt$digest``.

    The key is looked up by its public key_id, so the secret hash does not
    need to be deterministic; a per-key salt keeps equal secrets from
    producing equal rows.
    """
    salt = salt or secrets.token_hex(16)
    digest = hmac.new(salt.encode(), secret.encode(), hashlib.sha256).hexdigest()
    return f"{salt}${digest}"


def verify_key_secret(secret: str, stored_hash: str) -> bool:
    """Constant-time comparison of a presented secret against its stored hash."""
    salt, sep, _ = stored_hash.partition("$")
    if not sep:
        return False
    candidate = hash_key_secret(secret, salt)
    return hmac.compare_digest(candidate.encode(), stored_hash.encode())


# ── JWT (session tokens) ─────────────────────────────────────

def create_jwt(subject: str, expires_delta: timedelta | None = None) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.jwt_expire_minutes)
    )
    payload = {
        "sub": subject,
        "exp": expire,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_jwt(token: str) -> dict:
    """Decode and verify a JWT. Raises jose.JWTError on failure."""
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
