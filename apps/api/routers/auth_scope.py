"""Bearer-token user resolution shared by the scan and billing routers."""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.user import User
from services.credits import CreditLedger, LedgerUnavailableError
from services.session_token import decode_session_token

logger = logging.getLogger(__name__)

auth_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    user_id: str
    email: Optional[str] = None


def ensure_user_scope(auth_user_id: str, supplied_user_id: Optional[str]) -> str:
    """Callers may only act on their own account."""
    if supplied_user_id and supplied_user_id != auth_user_id:
        raise HTTPException(status_code=403, detail="user_id does not match authenticated session.")
    return auth_user_id


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
) -> AuthContext:
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Missing Bearer session token.")

    try:
        payload = decode_session_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    return AuthContext(
        user_id=str(payload["sub"]),
        email=str(payload.get("email", "")) or None,
    )


async def _load_user(db: AsyncSession, user_id: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def ensure_user(db: AsyncSession, auth: AuthContext) -> User:
    """Create the local user row on first contact, granting any welcome bonus in the same transaction."""
    user = await _load_user(db, auth.user_id)
    if user:
        return user

    user = User(id=auth.user_id, email=auth.email or f"{auth.user_id}@local.invalid")
    db.add(user)
    welcome = int(settings.WELCOME_BONUS_CREDITS or 0)
    try:
        await db.flush()
        if welcome > 0:
            await CreditLedger(db).add_bonus_credits(auth.user_id, welcome, "welcome", commit=False)
        await db.commit()
    except IntegrityError:
        # A concurrent first request registered this user (and its bonus) already.
        await db.rollback()
        user = await _load_user(db, auth.user_id)
        if user is None:
            raise
        return user
    except (SQLAlchemyError, LedgerUnavailableError) as exc:
        await db.rollback()
        logger.error("Registering user %s failed: %s", auth.user_id, exc)
        raise HTTPException(status_code=503, detail="Account setup is temporarily unavailable.") from exc

    logger.info("Registered user %s", auth.user_id)
    return user
