"""Identity helpers for FastAPI endpoints.

Tokens are verified by the upstream auth layer, which forwards the verified
identity as ``X-User-Id`` / ``X-User-Role`` headers. This dependency only
turn those headers into an ``AuthenticatedUser``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, status

DEFAULT_ROLE = "ATTENDEE"


@dataclass(slots=True, frozen=True)
class AuthenticatedUser:
	id: str
	role: str = DEFAULT_ROLE
	email: Optional[str] = None


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	x_user_role: Optional[str] = Header(default=None, alias="X-User-Role"),
	x_user_email: Optional[str] = Header(default=None, alias="X-User-Email"),
) -> AuthenticatedUser:
	user_id = (x_user_id or "").strip()
	if not user_id:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
	role = (x_user_role or DEFAULT_ROLE).strip().upper() or DEFAULT_ROLE
	return AuthenticatedUser(id=user_id, role=role, email=x_user_email)
