"""Authentication API endpoints: OTP registration, login and token refresh."""
import logging
from datetime import datetime, timedelta

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from ... import crud, mailer, models, schemas, security
from ...config import Settings
from ...database import get_db
from ...errors import AuthenticationError, BadRequestError, ForbiddenError, NotFoundError
from ...mailer import EmailSender
from ...models import utcnow
from ..dependencies import get_app_settings, get_current_user, get_email_sender

logger = logging.getLogger("teamtask-core.auth")

router = APIRouter(tags=["auth"])


def _issue_otp(settings: Settings) -> tuple[str, str, datetime]:
    otp = security.generate_otp(settings.otp_length)
    expiry = utcnow() + timedelta(minutes=settings.otp_expire_minutes)
    return otp, security.hash_otp(otp), expiry


def _auth_response(settings: Settings, user: models.User) -> schemas.AuthResponse:
    token, refresh_token = security.create_token_pair(settings, user.id, user.email)
    return schemas.AuthResponse(
        user=schemas.UserResponse.model_validate(user),
        token=token,
        refresh_token=refresh_token,
    )


@router.post("/register", response_model=schemas.RegisterResponse, status_code=201)
def register(
    payload: schemas.RegisterRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    email_sender: EmailSender = Depends(get_email_sender),
):
    """
    Start registration by emailing a one-time code.

    - **name**: Display name
    - **email**: Email address (must not belong to a verified account)

    Repeating the call for an unverified email updates the name and issues a
    new code.
    """
    otp, otp_hash, expiry = _issue_otp(settings)
    user = crud.register_user(db, payload.name, payload.email, otp_hash, expiry)

    subject, body = mailer.otp_email(user.name, otp, settings.otp_expire_minutes)
    background_tasks.add_task(mailer.send_email, email_sender, user.email, subject, body)

    logger.info(f"Registration started for user {user.id}")
    return schemas.RegisterResponse(
        message="OTP sent to your email. Please verify to complete registration.",
        email=user.email,
        otp_expires_in_minutes=settings.otp_expire_minutes,
    )


@router.post("/resend-otp", response_model=schemas.RegisterResponse)
def resend_otp(
    payload: schemas.ResendOtpRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    email_sender: EmailSender = Depends(get_email_sender),
):
    """Issue a fresh code for an unverified account."""
    user = crud.get_user_by_email(db, payload.email)
    if not user:
        raise NotFoundError("User not found. Please register first.")
    if user.is_verified:
        raise BadRequestError("User already verified. Please login.")

    otp, otp_hash, expiry = _issue_otp(settings)
    crud.set_user_otp(db, user, otp_hash, expiry)

    subject, body = mailer.otp_email(user.name, otp, settings.otp_expire_minutes)
    background_tasks.add_task(mailer.send_email, email_sender, user.email, subject, body)

    logger.info(f"Re-sent OTP for user {user.id}")
    return schemas.RegisterResponse(
        message="OTP sent successfully",
        email=user.email,
        otp_expires_in_minutes=settings.otp_expire_minutes,
    )


@router.post("/verify-otp", response_model=schemas.VerifyOtpResponse)
def verify_otp(
    payload: schemas.VerifyOtpRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    email_sender: EmailSender = Depends(get_email_sender),
):
    """
    Complete registration.

    On success the account becomes verified, a password is generated and
    emailed, and the code is cleared so it cannot be used again.
    """
    user = crud.get_user_by_email(db, payload.email)
    if not user:
        raise NotFoundError("User not found. Please register first.")
    if user.is_verified:
        raise BadRequestError("User already verified. Please login.")
    if not user.otp_hash or not user.otp_expiry:
        raise BadRequestError("No OTP found. Please register again.")
    if user.otp_expiry < utcnow():
        raise BadRequestError("OTP has expired. Please register again.")
    if not security.verify_otp(payload.otp, user.otp_hash):
        raise BadRequestError("Invalid OTP. Please try again.")

    password = security.generate_password(settings.generated_password_length)
    crud.verify_user(db, user, security.hash_password(password))

    subject, body = mailer.password_email(user.name, user.email, password, settings.app_base_url)
    background_tasks.add_task(mailer.send_email, email_sender, user.email, subject, body)

    logger.info(f"User {user.id} verified")
    return schemas.VerifyOtpResponse(
        message="Email verified successfully! Your password has been sent to your email.",
        email=user.email,
    )


@router.post("/login", response_model=schemas.AuthResponse)
def login(
    payload: schemas.LoginRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    """Exchange email and password for an access and refresh token."""
    user = crud.get_user_by_email(db, payload.email)
    if not user:
        raise AuthenticationError("Invalid email or password")
    if not user.is_verified:
        raise ForbiddenError("Email not verified. Please verify your email first.")
    if not security.verify_password(payload.password, user.password_hash):
        raise AuthenticationError("Invalid email or password")

    logger.info(f"User {user.id} logged in")
    return _auth_response(settings, user)


@router.post("/refresh", response_model=schemas.AuthResponse)
def refresh(
    payload: schemas.RefreshTokenRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    """Rotate both tokens using a valid refresh token."""
    claims = security.decode_refresh_token(settings, payload.refresh_token)
    user = crud.get_user(db, claims["sub"])
    if not user:
        raise NotFoundError("User not found")
    if not user.is_verified:
        raise ForbiddenError("Email not verified. Please verify your email first.")

    return _auth_response(settings, user)


@router.post("/logout", response_model=schemas.MessageResponse)
def logout(current_user: models.User = Depends(get_current_user)):
    """Tokens are stateless; clients discard them on logout."""
    logger.info(f"User {current_user.id} logged out")
    return schemas.MessageResponse(message="Logout successful")


@router.get("/me", response_model=schemas.UserResponse)
def me(current_user: models.User = Depends(get_current_user)):
    """Current user's profile."""
    return current_user
