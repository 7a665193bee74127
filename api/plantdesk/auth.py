from typing import Any, Dict, Optional

import httpx
from fastapi import Depends, HTTPException, Request
from jose import jwt
from jose.exceptions import JWTError

from .config import settings
from .errors import InvalidArgument
from .rbac import Actor, actor_from_claims

_jwks_cache: Optional[Dict[str, Any]] = None


async def _get_jwks() -> Dict[str, Any]:
    global _jwks_cache
    if _jwks_cache:
        return _jwks_cache
    async with httpx.AsyncClient(timeout=10) as client:
        try:
            r = await client.get(settings.jwks_url)
            r.raise_for_status()
        except httpx.HTTPError as e:
            raise HTTPException(status_code=503, detail=f"Identity provider unavailable: {e}")
        _jwks_cache = r.json()
        return _jwks_cache


async def verify_bearer_token(request: Request) -> Dict[str, Any]:
    auth = request.headers.get("authorization")
    if not auth or not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")

    token = auth.split(" ", 1)[1].strip()
    jwks = await _get_jwks()

    try:
        return jwt.decode(
            token,
            jwks,
            algorithms=["RS256"],
            audience=settings.api_audience,
            issuer=settings.token_issuer,
            options={"verify_at_hash": False},
        )
    except JWTError as e:
        raise HTTPException(status_code=401, detail=f"Invalid token: {str(e)}")


async def current_actor(claims: dict = Depends(verify_bearer_token)) -> Actor:
    try:
        return actor_from_claims(claims)
    except InvalidArgument as e:
        raise HTTPException(status_code=401, detail=e.message)
