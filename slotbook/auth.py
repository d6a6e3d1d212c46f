import hashlib
import logging
import secrets

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .database import get_db
from .models import User

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

API_KEY_PREFIX = "sb_"


def hash_api_key(api_key: str) -> str:
    """Keys are stored as sha256 hex digests, never in plain text"""
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def generate_api_key() -> tuple[str, str]:
    """Return (plain key to hand to the owner once, hash to store)"""
    api_key = f"{API_KEY_PREFIX}{secrets.token_urlsafe(32)}"
    return api_key, hash_api_key(api_key)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Get the owner identified by the Bearer API key"""

    if not credentials:
        logger.error("❌ No credentials provided")
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Please provide a valid Bearer token in the Authorization header.",
        )

    token = credentials.credentials
    if not token.startswith(API_KEY_PREFIX):
        logger.warning(f"⚠️ Malformed API key received, length: {len(token)}")
        raise HTTPException(status_code=401, detail="Invalid API key format")

    user = db.query(User).filter(User.api_key_hash == hash_api_key(token)).first()
    if not user:
        logger.warning("⚠️ Unknown API key")
        raise HTTPException(status_code=401, detail="Invalid API key")

    return user
