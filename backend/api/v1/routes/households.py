from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.orm import Session

from backend.api.v1.deps.auth import get_current_user, require_household_access
from backend.db.session import get_session
from backend.models.entities import User
from backend.permissions import ROLE_VIEWER, HouseholdContext
from backend.services import households as household_service

router = APIRouter()


class HouseholdCreateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)


class HouseholdSummaryOut(BaseModel):
    household_id: UUID
    name: str
    role: str
    created_at: datetime


class HouseholdsListOut(BaseModel):
    households: list[HouseholdSummaryOut]


class MembershipOut(BaseModel):
    household_id: UUID
    user_id: UUID
    role: str


class MemberOut(BaseModel):
    user_id: UUID
    email: str
    display_name: Optional[str]
    role: str
    joined_at: datetime


class MembersListOut(BaseModel):
    members: list[MemberOut]


class RoleChangeIn(BaseModel):
    role: str = Field(..., min_length=1, max_length=16)


class InvitationCreateIn(BaseModel):
    email: str = Field(..., min_length=3, max_length=254)
    role: str = Field(ROLE_VIEWER, min_length=1, max_length=16)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        email = value.strip().lower()
        if "@" not in email or email.startswith("@") or email.endswith("@"):
            raise ValueError("invalid email")
        return email


class InvitationOut(BaseModel):
    id: UUID
    household_id: UUID
    email: str
    role: str
    invited_by_user_id: Optional[UUID]
    created_at: datetime
    expires_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InvitationCreatedOut(InvitationOut):
    token: str


class InvitationsListOut(BaseModel):
    invitations: list[InvitationOut]


class InvitationAcceptIn(BaseModel):
    token: str = Field(..., min_length=8, max_length=256)


@router.post("/households", response_model=HouseholdSummaryOut, status_code=status.HTTP_201_CREATED)
def create_household(
    payload: HouseholdCreateIn,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> HouseholdSummaryOut:
    household, membership = household_service.create_household(session, user, payload.name)
    return HouseholdSummaryOut(
        household_id=household.id,
        name=household.name,
        role=membership.role,
        created_at=household.created_at,
    )


@router.get("/households", response_model=HouseholdsListOut)
def list_households(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> HouseholdsListOut:
    rows = household_service.list_households(session, user.id)
    return HouseholdsListOut(
        households=[
            HouseholdSummaryOut(
                household_id=household.id,
                name=household.name,
                role=membership.role,
                created_at=household.created_at,
            )
            for household, membership in rows
        ]
    )


@router.get("/households/{household_id}/me", response_model=MembershipOut)
def get_household_membership(ctx: HouseholdContext = Depends(require_household_access)) -> MembershipOut:
    return MembershipOut(household_id=ctx.household_id, user_id=ctx.user_id, role=ctx.role)


@router.get("/households/{household_id}/members", response_model=MembersListOut)
def list_members(
    ctx: HouseholdContext = Depends(require_household_access),
    session: Session = Depends(get_session),
) -> MembersListOut:
    rows = household_service.list_members(session, ctx)
    return MembersListOut(
        members=[
            MemberOut(
                user_id=member.id,
                email=member.email,
                display_name=member.display_name,
                role=membership.role,
                joined_at=membership.created_at,
            )
            for membership, member in rows
        ]
    )


@router.patch("/households/{household_id}/members/{user_id}", response_model=MembershipOut)
def change_member_role(
    user_id: UUID,
    payload: RoleChangeIn,
    ctx: HouseholdContext = Depends(require_household_access),
    session: Session = Depends(get_session),
) -> MembershipOut:
    membership = household_service.change_member_role(session, ctx, user_id, payload.role)
    return MembershipOut(household_id=membership.household_id, user_id=membership.user_id, role=membership.role)


@router.delete("/households/{household_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_member(
    user_id: UUID,
    ctx: HouseholdContext = Depends(require_household_access),
    session: Session = Depends(get_session),
) -> Response:
    household_service.remove_member(session, ctx, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/households/{household_id}/invitations",
    response_model=InvitationCreatedOut,
    status_code=status.HTTP_201_CREATED,
)
def create_invitation(
    payload: InvitationCreateIn,
    ctx: HouseholdContext = Depends(require_household_access),
    session: Session = Depends(get_session),
) -> InvitationCreatedOut:
    invitation, token = household_service.create_invitation(session, ctx, payload.email, payload.role)
    base = InvitationOut.model_validate(invitation)
    return InvitationCreatedOut(**base.model_dump(), token=token)


@router.get("/households/{household_id}/invitations", response_model=InvitationsListOut)
def list_invitations(
    ctx: HouseholdContext = Depends(require_household_access),
    session: Session = Depends(get_session),
) -> InvitationsListOut:
    rows = household_service.list_invitations(session, ctx)
    return InvitationsListOut(invitations=[InvitationOut.model_validate(row) for row in rows])


@router.delete(
    "/households/{household_id}/invitations/{invitation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def revoke_invitation(
    invitation_id: UUID,
    ctx: HouseholdContext = Depends(require_household_access),
    session: Session = Depends(get_session),
) -> Response:
    household_service.revoke_invitation(session, ctx, invitation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/invitations/accept", response_model=MembershipOut)
def accept_invitation(
    payload: InvitationAcceptIn,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> MembershipOut:
    membership = household_service.accept_invitation(session, user, payload.token)
    return MembershipOut(household_id=membership.household_id, user_id=membership.user_id, role=membership.role)
