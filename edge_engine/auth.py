"""
API key guard for the edge engine API.

Each caller presents an ``X-API-Key`` header. Keys are configured as
API_KEY_USER1..API_KEY_USER5 and resolve to ``user1``..``user5``. Users listed
in EDGE_ADMIN_USERS (default ``user1``) may run catalog syncs and parlay
generation; everyone else gets the read-only endpoints.

Keys are read on every request so a rotated key takes effect without a
restart.
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, FrozenSet, Mapping, Optional

from dotenv import load_dotenv
from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

load_dotenv()

logger = logging.getLogger(__name__)

API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)
MAX_KEYED_USERS = 5
DEV_API_KEY = "dev-key-insecure"


@dataclass(frozen=True)
class KeyRing:
    """Configured API keys and which of their users are admins."""

    users_by_key: Dict[str, str]
    admins: FrozenSet[str]

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "KeyRing":
        env = os.environ if env is None else env
        users_by_key = {}
        for i in range(1, MAX_KEYED_USERS + 1):
            key = env.get(f"API_KEY_USER{i}")
            if key:
                users_by_key[key] = f"user{i}"

        admins = frozenset(
            u.strip() for u in env.get("EDGE_ADMIN_USERS", "user1").split(",") if u.strip()
        )
        if not users_by_key and env.get("ENVIRONMENT") == "development":
            users_by_key[DEV_API_KEY] = "user1"
        return cls(users_by_key=users_by_key, admins=admins)

    def resolve(self, api_key: str) -> Optional[str]:
        return self.users_by_key.get(api_key)

    def is_admin(self, user: str) -> bool:
        return user in self.admins


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "ApiKey"},
    )


async def verify_api_key(api_key: str = Security(API_KEY_HEADER)) -> str:
    """Resolve the ``X-API-Key`` header to a user id (401 / 503 on failure)."""
    if not api_key:
        raise _unauthorized("API key required. Include 'X-API-Key' header.")

    ring = KeyRing.from_env()
    if not ring.users_by_key:
        logger.error("No API keys configured; set API_KEY_USER1")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication not configured",
        )
    user = ring.resolve(api_key)
    if user is None:
        raise _unauthorized("Invalid API key")
    return user


async def verify_admin_api_key(user: str = Security(verify_api_key)) -> str:
    """Sync and parlay-generation routes."""
    if not KeyRing.from_env().is_admin(user):
        logger.warning("Rejected admin request from %s", user)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user
