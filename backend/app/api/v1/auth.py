# backend/app/api/v1/auth.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import bearer_scheme, user_id_from_token
from app.core.tiers import get_platform_cut_percentage
from app.db.session import get_db
from app.models.user import User
from app.schemas.auth import MeResponse, ProfileUpdateRequest

router = APIRouter(prefix="/auth", tags=["auth"])


async def get_current_user(
    credentials=Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Dependency for protected endpoints.
    """
    user = await db.get(User, user_id_from_token(credentials.credentials))
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    if not getattr(user, "is_active", True):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User inactive")

    return user


def _to_me_response(user: User) -> MeResponse:
    return MeResponse(
        id=str(user.id),
        email=user.email,
        is_active=getattr(user, "is_active", True),
        full_name=user.full_name,
        is_platform_admin=user.is_platform_admin,
        sdr_level=user.sdr_level,
        total_deals_closed_value=user.total_deals_closed_value,
        platform_cut_percentage=get_platform_cut_percentage(user.sdr_level),
        stripe_connect_status=user.stripe_connect_status,
        stripe_connect_onboarded_at=user.stripe_connect_onboarded_at,
        has_active_payout_account=user.has_active_payout_account,
    )


@router.get("/me", response_model=MeResponse)
async def me(user: User = Depends(get_current_user)) -> MeResponse:
    """
    Returns current user identity, SDR level and payout-account state.
    """
    return _to_me_response(user)


@router.patch("/me", response_model=MeResponse)
async def update_me(
    payload: ProfileUpdateRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> MeResponse:
    data = payload.model_dump(exclude_unset=True)

    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields provided to update.")

    if "full_name" in data:
        user.full_name = User.normalize_full_name(data["full_name"])

    db.add(user)
    await db.commit()
    await db.refresh(user)

    return _to_me_response(user)
