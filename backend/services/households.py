"""Households, memberships and invitations.

Owns the Membership and Invitation rows; inventory services only read the
resolved role through :class:`HouseholdContext`.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import timedelta
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import case, delete, func, select
from sqlalchemy.orm import Session

from backend.db.base import ensure_utc, utcnow
from backend.errors import Conflict, Forbidden, InvalidOperation, NotFound
from backend.models.entities import Household, Invitation, Membership, User
from backend.observability import log_structured
from backend.permissions import (
    PERM_INVITE_CREATE,
    PERM_INVITE_REVOKE,
    PERM_INVITE_VIEW,
    PERM_MEMBER_REMOVE,
    PERM_MEMBER_ROLE_CHANGE,
    PERM_MEMBER_VIEW,
    ROLE_OWNER,
    ROLE_RANK,
    ROLE_VIEWER,
    ROLES,
    HouseholdContext,
    normalize_role,
)
from backend.services.audit import write_audit
from backend.services.hierarchy import clean_name
from backend.services.tree_store import TreeStore, atomic

INVITE_TTL_DAYS = 7


def normalize_email(value: Optional[str]) -> str:
    email = (value or "").strip().lower()
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        raise InvalidOperation("invalid email")
    return email


def hash_invite_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _clean_role(value: Optional[str]) -> str:
    role = normalize_role(value)
    if role not in ROLES:
        raise InvalidOperation("role must be one of: owner, editor, viewer", {"role": value})
    return role


def find_membership(session: Session, household_id: UUID, user_id: UUID) -> Optional[Membership]:
    return session.execute(
        select(Membership).where(
            Membership.household_id == household_id, Membership.user_id == user_id
        )
    ).scalar_one_or_none()


def resolve_context(session: Session, household_id: UUID, user_id: UUID) -> HouseholdContext:
    """Role of ``user_id`` in ``household_id``; non-members see the household as missing."""
    membership = find_membership(session, household_id, user_id)
    if membership is None:
        raise NotFound("Household not found")
    return HouseholdContext(user_id=user_id, household_id=household_id, role=normalize_role(membership.role))


def _owner_count(session: Session, household_id: UUID) -> int:
    return session.execute(
        select(func.count())
        .select_from(Membership)
        .where(Membership.household_id == household_id, Membership.role == ROLE_OWNER)
    ).scalar_one()


def create_household(session: Session, user: User, name: Optional[str]) -> Tuple[Household, Membership]:
    with atomic(session):
        household = Household(name=clean_name(name), created_by_user_id=user.id)
        session.add(household)
        session.flush()
        membership = Membership(household_id=household.id, user_id=user.id, role=ROLE_OWNER)
        session.add(membership)
        write_audit(
            session,
            household_id=household.id,
            actor_user_id=user.id,
            event_type="household.create",
            target_type="household",
            target_id=household.id,
            payload={"name": household.name},
        )
    session.refresh(household)
    session.refresh(membership)
    return household, membership


def list_households(session: Session, user_id: UUID) -> List[Tuple[Household, Membership]]:
    rows = session.execute(
        select(Household, Membership)
        .join(Membership, Membership.household_id == Household.id)
        .where(Membership.user_id == user_id)
        .order_by(Membership.created_at.desc(), Household.id)
    ).all()
    return [(row[0], row[1]) for row in rows]


def list_members(session: Session, ctx: HouseholdContext) -> List[Tuple[Membership, User]]:
    ctx.require(PERM_MEMBER_VIEW)
    role_order = case(
        {role: rank for role, rank in ROLE_RANK.items()},
        value=Membership.role,
        else_=len(ROLE_RANK),
    )
    rows = session.execute(
        select(Membership, User)
        .join(User, User.id == Membership.user_id)
        .where(Membership.household_id == ctx.household_id)
        .order_by(role_order, Membership.created_at, Membership.id)
    ).all()
    return [(row[0], row[1]) for row in rows]


def _get_member(session: Session, household_id: UUID, user_id: UUID) -> Membership:
    membership = find_membership(session, household_id, user_id)
    if membership is None:
        raise NotFound("Member not found")
    return membership


def change_member_role(
    session: Session, ctx: HouseholdContext, member_user_id: UUID, role: Optional[str]
) -> Membership:
    ctx.require(PERM_MEMBER_ROLE_CHANGE)
    new_role = _clean_role(role)
    with atomic(session):
        TreeStore(session, ctx.household_id).lock()
        membership = _get_member(session, ctx.household_id, member_user_id)
        previous = normalize_role(membership.role)
        if previous == ROLE_OWNER and new_role != ROLE_OWNER and _owner_count(session, ctx.household_id) <= 1:
            raise Conflict("Household must keep at least one owner")
        membership.role = new_role
        write_audit(
            session,
            household_id=ctx.household_id,
            actor_user_id=ctx.user_id,
            event_type="member.role_change",
            target_type="user",
            target_id=member_user_id,
            payload={"from": previous, "to": new_role},
        )
    session.refresh(membership)
    log_structured(
        logging.INFO,
        "member_role_changed",
        household_id=str(ctx.household_id),
        user_id=str(member_user_id),
        role=new_role,
    )
    return membership


def remove_member(session: Session, ctx: HouseholdContext, member_user_id: UUID) -> None:
    if member_user_id != ctx.user_id:
        ctx.require(PERM_MEMBER_REMOVE)
    with atomic(session):
        TreeStore(session, ctx.household_id).lock()
        membership = _get_member(session, ctx.household_id, member_user_id)
        if normalize_role(membership.role) == ROLE_OWNER and _owner_count(session, ctx.household_id) <= 1:
            raise Conflict("Household must keep at least one owner")
        session.delete(membership)
        write_audit(
            session,
            household_id=ctx.household_id,
            actor_user_id=ctx.user_id,
            event_type="member.remove",
            target_type="user",
            target_id=member_user_id,
            payload={"self": member_user_id == ctx.user_id},
        )


def create_invitation(
    session: Session, ctx: HouseholdContext, email: Optional[str], role: Optional[str] = ROLE_VIEWER
) -> Tuple[Invitation, str]:
    """Create an invitation and return it with its one-time token; only the hash is kept."""
    ctx.require(PERM_INVITE_CREATE)
    invitee = normalize_email(email)
    assigned = _clean_role(role or ROLE_VIEWER)
    now = utcnow()
    with atomic(session):
        TreeStore(session, ctx.household_id).lock()
        existing_member = session.execute(
            select(Membership.id)
            .join(User, User.id == Membership.user_id)
            .where(Membership.household_id == ctx.household_id, User.email == invitee)
        ).first()
        if existing_member is not None:
            raise Conflict("User is already a member of this household")
        pending = session.execute(
            select(Invitation.id).where(
                Invitation.household_id == ctx.household_id,
                Invitation.email == invitee,
                Invitation.expires_at > now,
            )
        ).first()
        if pending is not None:
            raise Conflict("An invitation for this email is already pending")

        token = secrets.token_urlsafe(32)
        invitation = Invitation(
            household_id=ctx.household_id,
            email=invitee,
            role=assigned,
            token_hash=hash_invite_token(token),
            invited_by_user_id=ctx.user_id,
            created_at=now,
            expires_at=now + timedelta(days=INVITE_TTL_DAYS),
        )
        session.add(invitation)
        session.flush()
        write_audit(
            session,
            household_id=ctx.household_id,
            actor_user_id=ctx.user_id,
            event_type="invite.create",
            target_type="invitation",
            target_id=invitation.id,
            payload={"email": invitee, "role": assigned},
        )
    session.refresh(invitation)
    return invitation, token


def list_invitations(session: Session, ctx: HouseholdContext) -> List[Invitation]:
    ctx.require(PERM_INVITE_VIEW)
    return list(
        session.execute(
            select(Invitation)
            .where(Invitation.household_id == ctx.household_id, Invitation.expires_at > utcnow())
            .order_by(Invitation.created_at.desc(), Invitation.id)
        ).scalars()
    )


def revoke_invitation(session: Session, ctx: HouseholdContext, invitation_id: UUID) -> None:
    ctx.require(PERM_INVITE_REVOKE)
    with atomic(session):
        invitation = session.execute(
            select(Invitation).where(
                Invitation.id == invitation_id, Invitation.household_id == ctx.household_id
            )
        ).scalar_one_or_none()
        if invitation is None:
            raise NotFound("Invitation not found")
        session.delete(invitation)
        write_audit(
            session,
            household_id=ctx.household_id,
            actor_user_id=ctx.user_id,
            event_type="invite.revoke",
            target_type="invitation",
            target_id=invitation_id,
        )


def accept_invitation(session: Session, user: User, token: Optional[str]) -> Membership:
    token_value = (token or "").strip()
    if not token_value:
        raise InvalidOperation("Invalid invitation")
    with atomic(session):
        invitation = session.execute(
            select(Invitation).where(Invitation.token_hash == hash_invite_token(token_value))
        ).scalar_one_or_none()
        if invitation is None or ensure_utc(invitation.expires_at) <= utcnow():
            raise InvalidOperation("Invalid or expired invitation")
        if invitation.email != (user.email or "").strip().lower():
            raise Forbidden("Invitation was issued to a different email address")

        TreeStore(session, invitation.household_id).lock()
        role = _clean_role(invitation.role)
        membership = find_membership(session, invitation.household_id, user.id)
        if membership is None:
            membership = Membership(
                household_id=invitation.household_id,
                user_id=user.id,
                role=role,
                invited_by_user_id=invitation.invited_by_user_id,
            )
            session.add(membership)
        elif normalize_role(membership.role) != ROLE_OWNER:
            membership.role = role
        session.execute(delete(Invitation).where(Invitation.id == invitation.id))
        write_audit(
            session,
            household_id=invitation.household_id,
            actor_user_id=user.id,
            event_type="invite.accept",
            target_type="invitation",
            target_id=invitation.id,
            payload={"role": membership.role},
        )
    session.refresh(membership)
    return membership
