# services/supabase_auth.py
import logging

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from config.settings import get_settings
from database import get_db
from models.user import User

logger = logging.getLogger(__name__)


def _get_bearer_token(request: Request) -> str:
    auth = request.headers.get("Authorization")
    if not auth or not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    return auth.split(" ", 1)[1].strip()


def decode_supabase_token(token: str) -> dict:
    settings = get_settings()
    if not settings.supabase_jwt_secret:
        logger.error("SUPABASE_JWT_SECRET is not configured; rejecting authenticated request")
        raise HTTPException(status_code=503, detail="Authentication is not configured")

    try:
        return jwt.decode(
            token,
            settings.supabase_jwt_secret,  # HS256 uses shared secret
            algorithms=["HS256"],
            audience=settings.supabase_jwt_aud,
            issuer=f"{settings.supabase_project_url}/auth/v1",
        )
    except JWTError as e:
        logger.warning("jwt rejected: %s", e.__class__.__name__)
        raise HTTPException(status_code=401, detail="Invalid or expired token")


async def get_current_supabase_user(request: Request) -> dict:
    return decode_supabase_token(_get_bearer_token(request))


def get_current_db_user(
    db: Session = Depends(get_db),
    payload: dict = Depends(get_current_supabase_user),
) -> User:
    supabase_user_id = payload.get("sub")
    if not supabase_user_id:
        raise HTTPException(status_code=401, detail="Invalid auth token")

    user = (
        db.query(User)
        .filter(User.supabase_user_id == str(supabase_user_id))
        .first()
    )
    if user:
        return user

    # auto-create local user on first login; email location depends on Supabase config
    email = payload.get("email") or (payload.get("user_metadata") or {}).get("email")

    user = User(email=email, supabase_user_id=str(supabase_user_id))
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("local user created user_id=%s", user.id)
    return user
