import time, jwt
from dataclasses import dataclass
from typing import Dict, Iterable, Optional
from common.settings import settings

ALGO = "HS256"

@dataclass(frozen=True)
class Caller:
    """Authenticated identity handed to the ledger by the HTTP boundary"""
    user_id: str
    is_owner: bool = False

def mint_user_jwt(sub: str, claims: Optional[Dict] = None, ttl_seconds: Optional[int] = None) -> str:
    now = int(time.time())
    payload = {
        "iss": settings.jwt_issuer,
        "sub": sub,
        "iat": now,
        "exp": now + (ttl_seconds if ttl_seconds is not None else settings.jwt_ttl_seconds),
        **(claims or {}),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGO)

def verify_token(token: str) -> Dict:
    options = {"require": ["exp", "iat", "iss", "sub"]}
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[ALGO],
        options=options,
        issuer=settings.jwt_issuer,
    )

def caller_from_token(token: str, owner_user_ids: Iterable[str]) -> Caller:
    """Decode a bearer token into a Caller; raises jwt.PyJWTError when invalid"""
    claims = verify_token(token)
    user_id = str(claims["sub"])
    return Caller(user_id=user_id, is_owner=user_id in set(owner_user_ids))
