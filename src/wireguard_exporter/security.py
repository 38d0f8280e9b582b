from __future__ import annotations

from fastapi import Header, HTTPException, status


def _extract_token(x_scrape_token: str | None, authorization: str | None) -> str | None:
    if x_scrape_token:
        token = x_scrape_token.strip()
        if token:
            return token
    if authorization:
        scheme, _, value = authorization.partition(" ")
        if scheme.lower() == "bearer":
            return value.strip() or None
    return None


def require_scrape_token(expected: str):
    """
    Build a dependency guarding the metrics endpoint. Accepts either:
    - `x-scrape-token: <token>`
    - `Authorization: Bearer <token>`

    An empty `expected` token leaves the endpoint open.
    """
    expected = (expected or "").strip()

    async def _dependency(
        x_scrape_token: str | None = Header(default=None),
        authorization: str | None = Header(default=None),
    ) -> None:
        if not expected:
            return
        token = _extract_token(x_scrape_token, authorization)
        if not token:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing scrape token")
        if token != expected:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid scrape token")

    return _dependency
