"""Scanlation groups: roles, permissions, membership and invitations."""

from __future__ import annotations

import re
import secrets
from datetime import timedelta
from enum import Enum
from typing import List, Optional

from sqlmodel import Session, select, func

from .errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from .logging_config import get_logger
from .models import (
    Chapter,
    GroupInvitation,
    GroupMember,
    ScanlationGroup,
    User,
    as_utc,
    utcnow,
)

logger = get_logger(__name__)

INVITATION_TTL = timedelta(days=7)


class GroupStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    SUSPENDED = "suspended"
    REJECTED = "rejected"


class GroupRole(str, Enum):
    OWNER = "owner"
    CO_OWNER = "co-owner"
    MODERATOR = "moderator"
    QA = "qa"
    UPLOADER = "uploader"
    MEMBER = "member"


class MemberStatus(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"
    SUSPENDED = "suspended"


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"
    DECLINED = "declined"


GROUP_PERMISSIONS: dict[str, frozenset[str]] = {
    GroupRole.OWNER.value: frozenset({
        "manage_group", "invite_users", "remove_users", "upload_content",
        "moderate_content", "view_analytics", "delete_group",
    }),
    GroupRole.CO_OWNER.value: frozenset({
        "invite_users", "remove_users", "upload_content", "moderate_content", "view_analytics",
    }),
    GroupRole.MODERATOR.value: frozenset({"upload_content", "moderate_content", "invite_users"}),
    GroupRole.QA.value: frozenset({"upload_content", "moderate_content"}),
    GroupRole.UPLOADER.value: frozenset({"upload_content"}),
    GroupRole.MEMBER.value: frozenset({"view_content"}),
}

ROLE_RANK = {role.value: rank for rank, role in enumerate(GroupRole)}

# The owner role is never handed out through invites or role changes.
ASSIGNABLE_ROLES = (
    GroupRole.MEMBER.value,
    GroupRole.UPLOADER.value,
    GroupRole.QA.value,
    GroupRole.MODERATOR.value,
    GroupRole.CO_OWNER.value,
)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def has_permission(role: Optional[str], permission: str) -> bool:
    if role is None:
        return False
    return permission in GROUP_PERMISSIONS.get(str(getattr(role, "value", role)), frozenset())


def generate_slug(name: str) -> str:
    slug = name.lower()
    slug = re.sub(r"[^a-z0-9 -]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def _clean_optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _validate_url(value: Optional[str], field: str) -> Optional[str]:
    value = _clean_optional(value)
    if value and not re.match(r"^https?://\S+$", value):
        raise ValidationError(f"Invalid URL for {field}", field=field)
    return value


class GroupService:
    """Group operations on behalf of a user. Callers own the session; methods commit."""

    def __init__(self, session: Session):
        self.session = session

    # --- lookups ---

    def get_by_slug(self, slug: str) -> ScanlationGroup:
        group = self.session.exec(
            select(ScanlationGroup).where(ScanlationGroup.slug == slug)
        ).first()
        if group is None:
            raise NotFoundError("Group not found", slug=slug)
        return group

    def get_membership(self, group_id: str, user_id: str) -> Optional[GroupMember]:
        return self.session.exec(
            select(GroupMember).where(
                GroupMember.group_id == group_id, GroupMember.user_id == user_id
            )
        ).first()

    def get_role(self, group_id: str, user_id: Optional[str]) -> Optional[str]:
        if not user_id:
            return None
        membership = self.get_membership(group_id, user_id)
        return membership.role if membership else None

    def require_permission(self, group: ScanlationGroup, user_id: str, permission: str) -> GroupMember:
        membership = self.get_membership(group.id, user_id)
        if (
            membership is None
            or membership.status != MemberStatus.ACTIVE.value
            or not has_permission(membership.role, permission)
        ):
            raise PermissionDeniedError("Insufficient permissions", permission=permission)
        return membership

    # --- groups ---

    def create_group(
        self,
        user: User,
        name: str,
        description: Optional[str] = None,
        website_url: Optional[str] = None,
        discord_url: Optional[str] = None,
    ) -> ScanlationGroup:
        name = (name or "").strip()
        if not 3 <= len(name) <= 100:
            raise ValidationError("Group name must be 3-100 characters", field="name")
        description = _clean_optional(description)
        if description and len(description) > 500:
            raise ValidationError("Description must be at most 500 characters", field="description")

        slug = generate_slug(name)
        if not slug:
            raise ValidationError("Group name must contain letters or digits", field="name")
        existing = self.session.exec(
            select(ScanlationGroup).where(
                (ScanlationGroup.slug == slug) | (ScanlationGroup.name == name)
            )
        ).first()
        if existing is not None:
            raise ConflictError("Group name already exists", slug=slug)

        group = ScanlationGroup(
            name=name,
            slug=slug,
            description=description,
            website_url=_validate_url(website_url, "website_url"),
            discord_url=_validate_url(discord_url, "discord_url"),
            created_by=user.id,
            status=GroupStatus.PENDING.value,
        )
        self.session.add(group)
        self.session.flush()
        self.session.add(GroupMember(group_id=group.id, user_id=user.id, role=GroupRole.OWNER.value))
        self.session.commit()
        self.session.refresh(group)
        logger.info(f"Group '{name}' created by {user.name} (pending approval)")
        return group

    def list_user_groups(self, user_id: str) -> List[dict]:
        rows = self.session.exec(
            select(ScanlationGroup, GroupMember)
            .join(GroupMember, GroupMember.group_id == ScanlationGroup.id)
            .where(GroupMember.user_id == user_id)
            .order_by(ScanlationGroup.name)
        ).all()
        return [
            {"group": group.model_dump(), "role": member.role, "joined_at": member.joined_at}
            for group, member in rows
        ]

    def list_public_groups(self, limit: int = 50) -> List[dict]:
        """Approved groups with member and published chapter counts, most prolific first."""
        member_counts = dict(
            self.session.exec(
                select(GroupMember.group_id, func.count(GroupMember.id))
                .where(GroupMember.status == MemberStatus.ACTIVE.value)
                .group_by(GroupMember.group_id)
            ).all()
        )
        chapter_counts = dict(
            self.session.exec(
                select(Chapter.publisher, func.count(Chapter.id)).group_by(Chapter.publisher)
            ).all()
        )
        rows = self.session.exec(
            select(ScanlationGroup, User.name)
            .join(User, User.id == ScanlationGroup.created_by, isouter=True)
            .where(ScanlationGroup.status == GroupStatus.APPROVED.value)
        ).all()

        groups = [
            {
                "id": group.id,
                "name": group.name,
                "slug": group.slug,
                "url": group.website_url,
                "owner": owner,
                "member_count": member_counts.get(group.id, 0),
                "chapters_published": chapter_counts.get(group.name, 0),
                "created_at": group.created_at,
                "avatar_url": group.logo_url,
            }
            for group, owner in rows
        ]
        groups.sort(key=lambda g: (-g["chapters_published"], g["name"].lower()))
        return groups[:limit]

    def group_detail(self, slug: str, user_id: Optional[str] = None) -> dict:
        group = self.get_by_slug(slug)
        data = group.model_dump()
        data["user_role"] = self.get_role(group.id, user_id)
        return data

    def update_group(self, slug: str, user_id: str, **changes) -> ScanlationGroup:
        group = self.get_by_slug(slug)
        self.require_permission(group, user_id, "manage_group")

        if "name" in changes and changes["name"] is not None:
            name = changes["name"].strip()
            if not 3 <= len(name) <= 100:
                raise ValidationError("Group name must be 3-100 characters", field="name")
            if name != group.name:
                clash = self.session.exec(
                    select(ScanlationGroup).where(
                        ScanlationGroup.name == name, ScanlationGroup.id != group.id
                    )
                ).first()
                if clash is not None:
                    raise ConflictError("Group name already exists")
                group.name = name
        if "description" in changes:
            group.description = _clean_optional(changes["description"])
        if "website_url" in changes:
            group.website_url = _validate_url(changes["website_url"], "website_url")
        if "discord_url" in changes:
            group.discord_url = _clean_optional(changes["discord_url"])
        if "logo_url" in changes:
            group.logo_url = _validate_url(changes["logo_url"], "logo_url")

        group.updated_at = utcnow()
        self.session.add(group)
        self.session.commit()
        self.session.refresh(group)
        return group

    # --- members ---

    def list_members(self, slug: str, user_id: str) -> List[dict]:
        group = self.get_by_slug(slug)
        if self.get_membership(group.id, user_id) is None:
            raise PermissionDeniedError("Not a member of this group")
        rows = self.session.exec(
            select(GroupMember, User)
            .join(User, User.id == GroupMember.user_id)
            .where(GroupMember.group_id == group.id)
            .order_by(GroupMember.joined_at)
        ).all()
        return [
            {
                "user_id": user.id,
                "name": user.name,
                "role": member.role,
                "status": member.status,
                "joined_at": member.joined_at,
            }
            for member, user in rows
        ]

    def _target_membership(self, group: ScanlationGroup, target_user_id: str) -> GroupMember:
        membership = self.get_membership(group.id, target_user_id)
        if membership is None:
            raise NotFoundError("Member not found", user_id=target_user_id)
        if membership.role == GroupRole.OWNER.value:
            raise PermissionDeniedError("The group owner cannot be changed or removed")
        return membership

    def change_member_role(self, slug: str, actor_id: str, target_user_id: str, role: str) -> GroupMember:
        if role not in ASSIGNABLE_ROLES:
            raise ValidationError(f"Invalid role: {role}", field="role")
        group = self.get_by_slug(slug)
        self.require_permission(group, actor_id, "remove_users")
        membership = self._target_membership(group, target_user_id)
        membership.role = role
        self.session.add(membership)
        self.session.commit()
        self.session.refresh(membership)
        return membership

    def remove_member(self, slug: str, actor_id: str, target_user_id: str) -> None:
        group = self.get_by_slug(slug)
        self.require_permission(group, actor_id, "remove_users")
        membership = self._target_membership(group, target_user_id)
        self.session.delete(membership)
        self.session.commit()
        logger.info(f"Removed user {target_user_id} from group {group.slug}")

    # --- invitations ---

    def invite(
        self,
        slug: str,
        actor_id: str,
        role: str,
        email: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> GroupInvitation:
        if role not in ASSIGNABLE_ROLES:
            raise ValidationError(f"Invalid role: {role}", field="role")
        email = _clean_optional(email)
        if email is None and not user_id:
            raise ValidationError("An e-mail address or user is required", field="email")
        if email is not None and not EMAIL_RE.match(email):
            raise ValidationError("Invalid e-mail address", field="email")

        group = self.get_by_slug(slug)
        self.require_permission(group, actor_id, "invite_users")

        invitation = GroupInvitation(
            group_id=group.id,
            invited_by=actor_id,
            email=email.lower() if email else None,
            user_id=user_id,
            role=role,
            token=secrets.token_hex(32),
            expires_at=utcnow() + INVITATION_TTL,
        )
        self.session.add(invitation)
        self.session.commit()
        self.session.refresh(invitation)
        logger.info(f"Invitation to {group.slug} created for {email or user_id} as {role}")
        return invitation

    def list_invitations(self, user: User) -> List[dict]:
        """Pending, unexpired invitations addressed to this user by e-mail or id."""
        now = utcnow()
        rows = self.session.exec(
            select(GroupInvitation, ScanlationGroup)
            .join(ScanlationGroup, ScanlationGroup.id == GroupInvitation.group_id)
            .where(
                (GroupInvitation.email == user.email.lower()) | (GroupInvitation.user_id == user.id),
                GroupInvitation.status == InvitationStatus.PENDING.value,
                GroupInvitation.expires_at > now,
            )
            .order_by(GroupInvitation.created_at)
        ).all()
        return [
            {
                "id": invitation.id,
                "email": invitation.email,
                "role": invitation.role,
                "status": invitation.status,
                "expires_at": invitation.expires_at,
                "created_at": invitation.created_at,
                "token": invitation.token,
                "group": {
                    "id": group.id,
                    "name": group.name,
                    "slug": group.slug,
                    "description": group.description,
                    "logo_url": group.logo_url,
                    "status": group.status,
                },
            }
            for invitation, group in rows
        ]

    def _get_invitation(self, token: str) -> GroupInvitation:
        invitation = self.session.exec(
            select(GroupInvitation).where(GroupInvitation.token == token)
        ).first()
        if invitation is None:
            raise NotFoundError("Invitation not found")
        return invitation

    @staticmethod
    def _is_addressed_to(invitation: GroupInvitation, user: User) -> bool:
        by_email = invitation.email is not None and invitation.email == user.email.lower()
        return by_email or invitation.user_id == user.id

    def accept_invitation(self, token: str, user: User) -> dict:
        invitation = self._get_invitation(token)
        if invitation.status != InvitationStatus.PENDING.value:
            raise InvalidStateError("Invitation has already been processed", status=invitation.status)
        if invitation.expires_at is not None and utcnow() > as_utc(invitation.expires_at):
            invitation.status = InvitationStatus.EXPIRED.value
            self.session.add(invitation)
            self.session.commit()
            raise InvalidStateError("Invitation has expired")
        if not self._is_addressed_to(invitation, user):
            raise PermissionDeniedError("This invitation is not for you")

        group = self.session.get(ScanlationGroup, invitation.group_id)
        summary = {"name": group.name, "slug": group.slug, "status": group.status}

        invitation.status = InvitationStatus.ACCEPTED.value
        self.session.add(invitation)
        if self.get_membership(invitation.group_id, user.id) is not None:
            self.session.commit()
            return {"message": "You are already a member of this group", "group": summary}

        self.session.add(
            GroupMember(
                group_id=invitation.group_id,
                user_id=user.id,
                role=invitation.role,
                invited_by=invitation.invited_by,
                status=MemberStatus.ACTIVE.value,
            )
        )
        self.session.commit()
        logger.info(f"{user.name} joined group {group.slug} as {invitation.role}")
        return {"message": "Successfully joined the group!", "group": summary, "role": invitation.role}

    def decline_invitation(self, token: str, user: User) -> dict:
        invitation = self._get_invitation(token)
        if not self._is_addressed_to(invitation, user):
            raise PermissionDeniedError("This invitation is not for you")
        if invitation.status != InvitationStatus.PENDING.value:
            raise InvalidStateError("Invitation has already been processed", status=invitation.status)
        group = self.session.get(ScanlationGroup, invitation.group_id)
        invitation.status = InvitationStatus.DECLINED.value
        self.session.add(invitation)
        self.session.commit()
        return {"message": "Invitation declined", "group": {"name": group.name, "slug": group.slug}}

    def _next_owner(self, group_id: str) -> Optional[GroupMember]:
        members = self.session.exec(
            select(GroupMember).where(
                GroupMember.group_id == group_id,
                GroupMember.status == MemberStatus.ACTIVE.value,
            )
        ).all()
        if not members:
            return None
        return min(members, key=lambda m: (ROLE_RANK.get(m.role, len(ROLE_RANK)), as_utc(m.joined_at)))

    def release_user(self, user: User) -> None:
        """Detach a departing user from every group. The caller commits.

        Memberships and pending invitations addressed to the user are dropped.
        A group the user owned passes to its highest-ranked remaining member,
        or is left without a creator when nobody remains.
        """
        memberships = self.session.exec(select(GroupMember).where(GroupMember.user_id == user.id)).all()
        owned = {m.group_id for m in memberships if m.role == GroupRole.OWNER.value}
        for membership in memberships:
            self.session.delete(membership)
        self.session.flush()

        created = self.session.exec(
            select(ScanlationGroup).where(ScanlationGroup.created_by == user.id)
        ).all()
        owned.update(group.id for group in created)

        for group_id in owned:
            group = self.session.get(ScanlationGroup, group_id)
            heir = self._next_owner(group_id)
            if heir is not None:
                heir.role = GroupRole.OWNER.value
                self.session.add(heir)
                group.created_by = heir.user_id
                logger.info(f"Ownership of group {group.slug} passed to user {heir.user_id}")
            elif group.created_by == user.id:
                group.created_by = None
            group.updated_at = utcnow()
            self.session.add(group)

        invitations = self.session.exec(
            select(GroupInvitation).where(
                GroupInvitation.status == InvitationStatus.PENDING.value,
                (GroupInvitation.user_id == user.id) | (GroupInvitation.email == user.email.lower()),
            )
        ).all()
        for invitation in invitations:
            self.session.delete(invitation)
