from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.errors import Unauthenticated
from app.models import User
from app.schemas import UserCreate, UserLogin, Token, User as UserSchema, Actor, FCMTokenUpdate
from app.services.auth import create_user, authenticate_user, get_user_by_email
from app.utils.rate_limiter import limiter, RateLimits
from app.utils.security import create_access_token, verify_token

router = APIRouter()
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    if credentials is None:
        raise Unauthenticated("Not authenticated", code="auth.missing_token")

    email = verify_token(credentials.credentials)
    if email is None:
        raise Unauthenticated("Could not validate credentials", code="auth.invalid_token")

    user = get_user_by_email(db, email=email)
    if user is None or not user.is_active:
        raise Unauthenticated("Could not validate credentials", code="auth.unknown_user")
    return user


async def get_current_actor(current_user: User = Depends(get_current_user)) -> Actor:
    """Identity handed to the workflow engine"""
    return Actor.model_validate(current_user)


async def get_optional_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> Optional[Actor]:
    """Actor for endpoints that also accept anonymous callers. A bad token is still rejected."""
    if credentials is None:
        return None
    user = await get_current_user(credentials, db)
    return Actor.model_validate(user)


@router.post("/register", response_model=UserSchema)
@limiter.limit(RateLimits.REGISTER)
async def register(request: Request, user: UserCreate, db: Session = Depends(get_db)):
    return create_user(db=db, user=user)


@router.post("/login", response_model=Token)
@limiter.limit(RateLimits.LOGIN)
async def login(request: Request, user_credentials: UserLogin, db: Session = Depends(get_db)):
    user = authenticate_user(db, user_credentials.email, user_credentials.password)
    if not user:
        raise Unauthenticated("Incorrect email or password", code="auth.bad_credentials")
    access_token_expires = timedelta(minutes=settings.access_token_expire_minutes)
    access_token = create_access_token(
        data={"sub": user.email, "role": user.role}, expires_delta=access_token_expires
    )
    return {
        "access_token": access_token,
        "token_type": "bearer",
        "expires_in": settings.access_token_expire_minutes * 60,
        "user": user
    }


@router.get("/me", response_model=UserSchema)
async def read_users_me(current_user: User = Depends(get_current_user)):
    return current_user


@router.put("/fcm-token", response_model=UserSchema)
async def register_fcm_token(
    data: FCMTokenUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Register the device token used for push notifications"""
    current_user.fcm_token = data.fcm_token
    db.commit()
    db.refresh(current_user)
    return current_user
