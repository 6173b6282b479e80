"""
Authentication API endpoints.

This module provides REST API endpoints for:
- User registration
- Login
- Fetching the authenticated user's profile
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import get_db
from models import User, UserRole
from schemas import RegisterRequest, LoginRequest, AuthResponse, UserResponse
from auth.security import hash_password, verify_password, create_access_token
from auth.dependencies import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def issue_token(user: User) -> str:
    """Create the bearer token handed out at registration and login."""
    return create_access_token({"sub": str(user.id), "role": user.role.value})


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(request: RegisterRequest, db: Session = Depends(get_db)):
    """
    Register a new user account.

    Args:
        request: Registration data (username, email, password, first/last name)
        db: Database session

    Returns:
        Created user and a bearer token

    Raises:
        HTTPException: 409 if the username or email is already registered
    """
    email = request.email.lower()
    logger.info(f"Registration attempt for username: {request.username}")

    existing_user = db.query(User).filter(
        or_(User.email == email, User.username == request.username)
    ).first()
    if existing_user:
        detail = "Email already registered" if existing_user.email == email else "Username already taken"
        logger.info(f"Registration failed: {detail.lower()}: {request.username}")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)

    new_user = User(
        username=request.username,
        email=email,
        password_hash=hash_password(request.password),
        first_name=request.first_name,
        last_name=request.last_name,
        role=UserRole.user,
        is_active=True,
    )
    db.add(new_user)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent registration for the same username/email
        db.rollback()
        logger.info(f"Registration failed on unique constraint: {request.username}")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Username or email already registered",
        )
    db.refresh(new_user)

    logger.info(f"User registered successfully: {new_user.username} (ID: {new_user.id})")
    return {"user": new_user, "token": issue_token(new_user)}


@router.post("/login", response_model=AuthResponse)
def login(request: LoginRequest, db: Session = Depends(get_db)):
    """
    Login with email and password.

    Raises:
        HTTPException: 401 if credentials are invalid or the account is inactive
    """
    email = request.email.lower()
    logger.info(f"Login attempt for email: {email}")

    user = db.query(User).filter(User.email == email).first()
    if not user or not verify_password(request.password, user.password_hash):
        logger.info(f"Login failed: invalid credentials for {email}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    if not user.is_active:
        logger.info(f"Login failed: inactive user: {email}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account is inactive",
        )

    logger.info(f"User logged in successfully: {user.username} (ID: {user.id})")
    return {"user": user, "token": issue_token(user)}


@router.get("/profile", response_model=UserResponse)
def get_profile(current_user: User = Depends(get_current_user)):
    """Get the authenticated user's profile."""
    logger.debug(f"Fetching profile for: {current_user.username}")
    return current_user
