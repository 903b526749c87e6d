from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from app.auth import assert_actor_authorized, create_access_token, require_authenticated_user
from app.models import (
    AuthLoginRequest,
    AuthLoginResponse,
    AuthMeResponse,
    ProfileUpdateRequest,
    SignupRequest,
    SignupResponse,
    UserProfile,
    VerifyEmailRequest,
)
from app.routers.common import raise_lifecycle_http_error
from app.services.errors import LifecycleError
from app.services.lifecycle import request_lifecycle
from app.services.notification_store import notification_store
from app.services.user_store import user_store

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/signup", response_model=SignupResponse)
def signup(payload: SignupRequest):
    try:
        profile, verification_token = user_store.create_user(payload)
    except LifecycleError as exc:
        raise_lifecycle_http_error(exc)
    # Handed back so the mail sender (outside this service) can build the verification link.
    return SignupResponse(user=profile, verification_token=verification_token)


@router.post("/verify", response_model=UserProfile)
def verify_email(payload: VerifyEmailRequest):
    try:
        profile = user_store.verify_email(payload.token)
        notification_store.create(
            user_id=profile.id,
            title="Welcome to Wasil",
            message="Your email is verified. Add a family member to request your first service.",
            category="account",
        )
        return profile
    except LifecycleError as exc:
        raise_lifecycle_http_error(exc)


@router.post("/login", response_model=AuthLoginResponse)
def login(payload: AuthLoginRequest):
    try:
        profile = user_store.authenticate(payload.email, payload.password)
    except LifecycleError as exc:
        raise_lifecycle_http_error(exc)
    token, expires_at = create_access_token(user_id=profile.id)
    role = request_lifecycle.resolve_actor(profile.id).role
    return AuthLoginResponse(access_token=token, user_id=profile.id, role=role, expires_at=expires_at)


@router.get("/me", response_model=AuthMeResponse)
def me(user_id: str = Depends(require_authenticated_user)):
    return AuthMeResponse(user_id=user_id, role=request_lifecycle.resolve_actor(user_id).role)


@router.get("/profile", response_model=UserProfile)
def profile(user_id: str = Depends(require_authenticated_user)):
    found = user_store.get_profile(user_id)
    if not found:
        raise HTTPException(status_code=404, detail="User not found")
    return found


@router.post("/profile/update", response_model=UserProfile)
def update_profile(
    payload: ProfileUpdateRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.user_id, authorization=authorization)
    try:
        updated = user_store.update_profile(payload)
        notification_store.create(
            user_id=updated.id,
            title="Profile updated",
            message="Your account details were saved.",
            category="account",
        )
        return updated
    except LifecycleError as exc:
        raise_lifecycle_http_error(exc)
