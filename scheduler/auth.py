import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from jose import jwt as jose_jwt
from sqlalchemy import func
from sqlalchemy.orm import Session

from .config import ADMIN_EMAILS, JWT_AUDIENCE, SUPABASE_JWT_SECRET
from .database import get_db
from .models import AdminUser, PartnerUser, Provider

logger = logging.getLogger(__name__)

security = HTTPBearer()

ALGORITHM = "HS256"


@dataclass
class AuthUser:
    """Identity taken from a verified access token"""

    id: str
    email: Optional[str] = None
    role: Optional[str] = None


def verify_access_token(token: str) -> dict:
    """Verify an HS256 access token issued by the hosted auth service"""
    if len(token.split(".")) != 3:
        logger.warning(f"⚠️ Malformed token received, length: {len(token)}")
        raise HTTPException(
            status_code=401, detail="Invalid token format. Expected a valid JWT token."
        )
    try:
        return jose_jwt.decode(
            token, SUPABASE_JWT_SECRET, algorithms=[ALGORITHM], audience=JWT_AUDIENCE
        )
    except JWTError as e:
        logger.warning(f"⚠️ Token verification failed: {e}")
        raise HTTPException(status_code=401, detail="Invalid or expired token") from e


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> AuthUser:
    """Get the authenticated user from the bearer token"""
    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Please provide a valid Bearer token in the Authorization header.",
        )

    claims = verify_access_token(credentials.credentials)
    user_id = claims.get("sub")
    if not user_id:
        logger.error(f"❌ Token missing sub claim. Available claims: {list(claims.keys())}")
        raise HTTPException(status_code=401, detail="Invalid token claims")

    email = claims.get("email")
    return AuthUser(id=user_id, email=email.lower() if email else None, role=claims.get("role"))


def is_admin(user: AuthUser, db: Session) -> bool:
    if user.email and user.email in ADMIN_EMAILS:
        return True
    query = db.query(AdminUser).filter(AdminUser.is_active.is_(True))
    if user.email:
        query = query.filter(
            (AdminUser.auth_user_id == user.id) | (func.lower(AdminUser.email) == user.email)
        )
    else:
        query = query.filter(AdminUser.auth_user_id == user.id)
    return query.first() is not None


async def require_admin(
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AuthUser:
    """Allow only admins (email allow-list or active admin_users row)"""
    if not is_admin(user, db):
        logger.warning(f"⚠️ Non-admin {user.email} attempted to access an admin route")
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


async def get_current_provider(
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Provider:
    """Resolve the provider record for the signed-in user"""
    provider = db.query(Provider).filter(Provider.auth_user_id == user.id).first()

    if not provider and user.email:
        # First sign-in: link the provider record created by an admin
        provider = (
            db.query(Provider)
            .filter(func.lower(Provider.email) == user.email, Provider.auth_user_id.is_(None))
            .first()
        )
        if provider:
            logger.info(f"🔗 Linking provider {provider.id} to auth user {user.id}")
            provider.auth_user_id = user.id
            db.commit()
            db.refresh(provider)

    if not provider:
        raise HTTPException(status_code=403, detail="Provider access required")
    if not provider.is_active:
        raise HTTPException(status_code=403, detail="Provider account is inactive")
    return provider


async def get_current_partner_user(
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> PartnerUser:
    """Resolve the active partner user for the signed-in user"""
    partner_user = (
        db.query(PartnerUser)
        .filter(PartnerUser.auth_user_id == user.id, PartnerUser.is_active.is_(True))
        .first()
    )
    if not partner_user:
        raise HTTPException(status_code=403, detail="Partner access required")
    return partner_user
