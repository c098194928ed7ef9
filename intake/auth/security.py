import time
import jwt
import logging
from typing import Optional

from intake.core.config import SESSION_ALGORITHM, SESSION_SECRET

# Sessions are issued by the external passwordless provider; this module only
# verifies them (and signs short-lived document links with the same key).
SESSION_EXPIRE_SEC = 24 * 3600

logger = logging.getLogger("intake.auth")


def create_token(payload: dict, *, expires_in: int = SESSION_EXPIRE_SEC, secret: str = SESSION_SECRET) -> str:
    now = int(time.time())
    to_encode = {**payload, "iat": now, "exp": now + int(expires_in)}
    return jwt.encode(to_encode, secret, algorithm=SESSION_ALGORITHM)


def verify_token(token: str, *, secret: str = SESSION_SECRET) -> Optional[dict]:
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=[SESSION_ALGORITHM],
            options={"verify_aud": False},
        )
    except jwt.PyJWTError as e:
        logger.warning("Token verification failed: %s", e)
        return None
