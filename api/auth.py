"""
Authentication dependencies.

The operator of every import run is the signed-in agent. Sessions come from
Supabase auth: the `sb-access-token` cookie set by the web app, or a Bearer
token for scripted clients.
"""

from typing import Optional
from dataclasses import dataclass

from fastapi import Request, HTTPException

from agency_import.supabase_client import get_supabase_client

COOKIE_NAME = "sb-access-token"


@dataclass(frozen=True)
class CurrentUser:
    """The signed-in agent."""
    id: str
    email: str
    name: str = ""


def access_token_from_request(request: Request) -> Optional[str]:
    """Session cookie first, then an Authorization: Bearer header."""
    token = request.cookies.get(COOKIE_NAME)
    if token:
        return token
    scheme, _, credentials = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


async def get_current_user(request: Request) -> CurrentUser:
    """
    Resolve the agent behind the request's session token.

    Raises HTTPException 401 when there is no token or Supabase rejects it.
    """
    token = access_token_from_request(request)
    if not token:
        raise _unauthorized("Not authenticated")

    try:
        response = get_supabase_client().auth.get_user(token)
    except Exception as e:
        raise _unauthorized(f"Authentication error: {e}")

    agent = getattr(response, "user", None)
    if agent is None:
        raise _unauthorized("Invalid or expired token")

    metadata = agent.user_metadata or {}
    return CurrentUser(
        id=agent.id,
        email=agent.email or "",
        name=metadata.get("full_name") or metadata.get("name") or "",
    )
