"""
User API endpoints.

Register, login and profile for wallet holders.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_
from tenapay.app.db.session import get_db
from tenapay.app.models.user import User
from tenapay.app.models.enums import UserRole
from tenapay.app.schemas.auth import UserRegister, UserLogin, TokenResponse, UserResponse
from tenapay.app.core.security import get_password_hash, verify_password
from tenapay.app.core.jwt import create_user_token
from tenapay.app.core.dependencies import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Users"])


def _token_response(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=create_user_token(user),
        token_type="bearer",
        user_id=user.id,
        email=user.email,
        phone=user.phone,
        role=user.role
    )


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserRegister,
    db: AsyncSession = Depends(get_db)
):
    """
    Register a wallet holder. The account starts with a zero balance.

    Admin accounts cannot be created through the API.
    """
    result = await db.execute(
        select(User).where(
            or_(User.email == user_data.email, User.phone == user_data.phone)
        )
    )
    existing_user = result.scalars().first()

    if existing_user:
        detail = "Email already registered" if existing_user.email == user_data.email else "Phone already registered"
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

    new_user = User(
        email=user_data.email,
        phone=user_data.phone,
        hashed_password=get_password_hash(user_data.password),
        role=UserRole.USER,
        is_active=True,
        balance=0
    )

    db.add(new_user)
    await db.commit()
    await db.refresh(new_user)

    logger.info("Registered user %s", new_user.id)
    return _token_response(new_user)


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: UserLogin,
    db: AsyncSession = Depends(get_db)
):
    """Login with email or phone and return a JWT."""
    result = await db.execute(
        select(User).where(
            or_(User.email == credentials.identifier, User.phone == credentials.identifier)
        )
    )
    user = result.scalars().first()

    if not user or not verify_password(credentials.password, user.hashed_password):
        logger.warning("Failed login for %s", credentials.identifier)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user account"
        )

    return _token_response(user)


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Current account, including its wallet balance."""
    result = await db.execute(select(User).where(User.id == current_user["user_id"]))
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    return UserResponse.model_validate(user)
