from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import jwt
from fastapi import HTTPException, Request

from zhinao_geo.core.settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: str


class TokenVerifier:
    """Verifies Supabase access tokens.

    With ``SUPABASE_JWT_SECRET`` set, tokens are checked as HS256 against the
    project secret. Otherwise the signing key is resolved from the project's
    JWKS endpoint (ES256 / RS256).
    """

    def __init__(
        self,
        *,
        supabase_url: str | None,
        jwt_secret: str | None = None,
        audience: str | None = "authenticated",
        issuer: str | None = None,
    ) -> None:
        self._supabase_url = (supabase_url or "").strip().rstrip("/")
        self._jwt_secret = jwt_secret
        self._audience = audience or "authenticated"
        self._issuer = issuer or (f"{self._supabase_url}/auth/v1" if self._supabase_url else None)
        self._jwks_client: jwt.PyJWKClient | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenVerifier":
        return cls(
            supabase_url=settings.supabase_url,
            jwt_secret=settings.supabase_jwt_secret,
            audience=settings.supabase_jwt_audience,
            issuer=settings.supabase_jwt_issuer,
        )

    def _jwks(self) -> jwt.PyJWKClient:
        if not self._supabase_url:
            raise HTTPException(status_code=500, detail="SUPABASE_URL is not configured")
        if self._jwks_client is None:
            self._jwks_client = jwt.PyJWKClient(f"{self._supabase_url}/auth/v1/.well-known/jwks.json")
        return self._jwks_client

    def decode(self, token: str) -> dict[str, Any]:
        options = {"require": ["exp", "sub"]}
        kwargs: dict[str, Any] = {"audience": self._audience, "options": options}
        if self._issuer:
            kwargs["issuer"] = self._issuer
        try:
            if self._jwt_secret:
                payload = jwt.decode(token, self._jwt_secret, algorithms=["HS256"], **kwargs)
            else:
                signing_key = self._jwks().get_signing_key_from_jwt(token).key
                payload = jwt.decode(token, signing_key, algorithms=["ES256", "RS256"], **kwargs)
            return dict(payload)
        except jwt.PyJWTError as exc:
            logger.info("security.decode.rejected reason=%s", type(exc).__name__)
            raise HTTPException(status_code=401, detail="Unauthorized")

    def verify(self, token: str) -> CurrentUser:
        claims = self.decode(token)
        user_id = str(claims.get("sub") or "").strip()
        if not user_id:
            raise HTTPException(status_code=401, detail="Unauthorized")
        email = str(claims.get("email") or "").strip()
        return CurrentUser(id=user_id, email=email)


def get_bearer_token(request: Request) -> str:
    auth = request.headers.get("authorization") or ""
    if not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized")
    token = auth.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return token


def get_current_user(request: Request) -> CurrentUser:
    token = get_bearer_token(request)
    verifier: TokenVerifier = request.app.state.token_verifier
    return verifier.verify(token)
