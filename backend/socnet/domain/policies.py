"""Transition tables and guard checks for follow, membership and notification lifecycles."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping, Optional
from uuid import UUID

from socnet.domain import models
from socnet.domain.exceptions import (
	ForbiddenError,
	InvalidStateError,
	NotFoundError,
	SelfReferenceError,
	UnauthorizedError,
	ValidationError,
)
from socnet.domain.models import (
	FollowAction,
	MembershipDecision,
	MembershipStatus,
	NotificationStatus,
	PostPrivacy,
	RelationshipStatus,
	UserPrivacy,
)


class FollowEvent(str, Enum):
	REQUEST_PUBLIC = "request_public"
	REQUEST_PRIVATE = "request_private"
	ACCEPT = "accept"
	DECLINE = "decline"
	CANCEL = "cancel"


class MembershipEvent(str, Enum):
	CREATE = "create"
	INVITE = "invite"
	REQUEST = "request"
	ACCEPT = "accept"
	DECLINE = "decline"
	CANCEL = "cancel"


_R = RelationshipStatus
_M = MembershipStatus

# (current status or None when no row exists, event) -> resulting status
FOLLOW_TRANSITIONS: Mapping[tuple[Optional[RelationshipStatus], FollowEvent], RelationshipStatus] = MappingProxyType(
	{
		(None, FollowEvent.REQUEST_PUBLIC): _R.ACCEPTED,
		(None, FollowEvent.REQUEST_PRIVATE): _R.PENDING,
		(_R.DECLINED, FollowEvent.REQUEST_PUBLIC): _R.ACCEPTED,
		(_R.DECLINED, FollowEvent.REQUEST_PRIVATE): _R.PENDING,
		(_R.CANCELLED, FollowEvent.REQUEST_PUBLIC): _R.ACCEPTED,
		(_R.CANCELLED, FollowEvent.REQUEST_PRIVATE): _R.PENDING,
		(_R.PENDING, FollowEvent.ACCEPT): _R.ACCEPTED,
		(_R.PENDING, FollowEvent.DECLINE): _R.DECLINED,
		(_R.PENDING, FollowEvent.CANCEL): _R.CANCELLED,
		(_R.ACCEPTED, FollowEvent.CANCEL): _R.CANCELLED,
	}
)

MEMBERSHIP_TRANSITIONS: Mapping[tuple[Optional[MembershipStatus], MembershipEvent], MembershipStatus] = MappingProxyType(
	{
		(None, MembershipEvent.CREATE): _M.ACCEPTED,
		(None, MembershipEvent.INVITE): _M.INVITED,
		(None, MembershipEvent.REQUEST): _M.REQUESTED,
		(_M.DECLINED, MembershipEvent.INVITE): _M.INVITED,
		(_M.DECLINED, MembershipEvent.REQUEST): _M.REQUESTED,
		(_M.CANCELLED, MembershipEvent.INVITE): _M.INVITED,
		(_M.CANCELLED, MembershipEvent.REQUEST): _M.REQUESTED,
		(_M.INVITED, MembershipEvent.ACCEPT): _M.ACCEPTED,
		(_M.INVITED, MembershipEvent.DECLINE): _M.DECLINED,
		(_M.REQUESTED, MembershipEvent.ACCEPT): _M.ACCEPTED,
		(_M.REQUESTED, MembershipEvent.DECLINE): _M.DECLINED,
		(_M.INVITED, MembershipEvent.CANCEL): _M.CANCELLED,
		(_M.REQUESTED, MembershipEvent.CANCEL): _M.CANCELLED,
		(_M.ACCEPTED, MembershipEvent.CANCEL): _M.CANCELLED,
	}
)

_NOTIFICATION_RANK: Mapping[NotificationStatus, int] = MappingProxyType(
	{
		NotificationStatus.UNREAD: 0,
		NotificationStatus.READ: 1,
		NotificationStatus.INACTIVE: 2,
	}
)


@dataclass(frozen=True, slots=True)
class FollowTransition:
	"""A follow edge transition; constructing an undefined one raises InvalidStateError."""

	current: Optional[RelationshipStatus]
	event: FollowEvent
	target: RelationshipStatus = field(init=False)

	def __post_init__(self) -> None:
		target = FOLLOW_TRANSITIONS.get((self.current, self.event))
		if target is None:
			current = self.current.value if self.current else "none"
			raise InvalidStateError(f"follow_{current}_cannot_{self.event.value}")
		object.__setattr__(self, "target", target)


@dataclass(frozen=True, slots=True)
class MembershipTransition:
	"""A membership transition; constructing an undefined one raises InvalidStateError."""

	current: Optional[MembershipStatus]
	event: MembershipEvent
	target: MembershipStatus = field(init=False)

	def __post_init__(self) -> None:
		target = MEMBERSHIP_TRANSITIONS.get((self.current, self.event))
		if target is None:
			current = self.current.value if self.current else "none"
			raise InvalidStateError(f"membership_{current}_cannot_{self.event.value}")
		object.__setattr__(self, "target", target)


def follow_request_event(privacy: UserPrivacy) -> FollowEvent:
	if privacy == UserPrivacy.PUBLIC:
		return FollowEvent.REQUEST_PUBLIC
	return FollowEvent.REQUEST_PRIVATE


def follow_action_event(action: FollowAction) -> FollowEvent:
	return FollowEvent.ACCEPT if action == FollowAction.ACCEPT else FollowEvent.DECLINE


def decision_event(decision: MembershipDecision) -> MembershipEvent:
	return MembershipEvent.ACCEPT if decision == MembershipDecision.ACCEPTED else MembershipEvent.DECLINE


def is_forward(current: NotificationStatus, target: NotificationStatus) -> bool:
	return _NOTIFICATION_RANK[target] > _NOTIFICATION_RANK[current]


def statuses_before(target: NotificationStatus) -> list[NotificationStatus]:
	"""Statuses a notification may hold and still be moved forward to ``target``."""
	return [status for status in NotificationStatus if is_forward(status, target)]


# --- Parsing -------------------------------------------------------------


def parse_follow_action(value: FollowAction | str) -> FollowAction:
	try:
		return FollowAction(value)
	except ValueError as exc:
		raise ValidationError("invalid_action") from exc


def parse_decision(value: MembershipDecision | str) -> MembershipDecision:
	try:
		return MembershipDecision(value)
	except ValueError as exc:
		raise ValidationError("invalid_decision") from exc


def parse_post_privacy(value: PostPrivacy | str) -> PostPrivacy:
	try:
		return PostPrivacy(value)
	except ValueError as exc:
		raise ValidationError("invalid_privacy") from exc


# --- Guards --------------------------------------------------------------


def guard_not_self(user_id: UUID, target_id: UUID) -> None:
	if str(user_id) == str(target_id):
		raise SelfReferenceError()


def require_active_user(user: models.User | None) -> models.User:
	if user is None or not user.is_active:
		raise NotFoundError("user_not_found")
	return user


def require_group(group: models.Group | None) -> models.Group:
	if group is None:
		raise NotFoundError("group_not_found")
	return group


def assert_is_followed_party(relationship: models.Relationship, responder_id: UUID) -> None:
	if relationship.followed_id != responder_id:
		raise UnauthorizedError("not_followed_party")


def assert_is_creator(group: models.Group, actor_id: UUID) -> None:
	if group.creator_id != actor_id:
		raise UnauthorizedError("creator_required")


def assert_can_decide(
	membership: models.Membership,
	group: models.Group,
	*,
	acting_user_id: UUID,
	target_user_id: UUID,
) -> None:
	"""Join requests are decided by the creator, invitations by the invitee."""
	if membership.status == MembershipStatus.REQUESTED:
		if acting_user_id != group.creator_id:
			raise ForbiddenError("creator_required")
		return
	if membership.status == MembershipStatus.INVITED:
		if acting_user_id != target_user_id:
			raise ForbiddenError("invitee_required")
		return
	raise ForbiddenError("not_decidable")


def assert_can_cancel_membership(
	membership: models.Membership,
	group: models.Group,
	*,
	acting_user_id: UUID,
) -> None:
	if membership.status == MembershipStatus.INVITED:
		if acting_user_id not in {group.creator_id, membership.inviter_id}:
			raise ForbiddenError("inviter_required")
		return
	if membership.status == MembershipStatus.REQUESTED:
		if acting_user_id != membership.member_id:
			raise ForbiddenError("requester_required")
		return
	if membership.status == MembershipStatus.ACCEPTED:
		if acting_user_id != membership.member_id:
			raise ForbiddenError("member_required")
		if membership.member_id == group.creator_id:
			raise ForbiddenError("creator_cannot_leave")
		return
	if acting_user_id not in {membership.member_id, membership.inviter_id, group.creator_id}:
		raise ForbiddenError("not_cancellable")


def assert_can_list_connections(
	profile: models.User,
	*,
	viewer_id: UUID,
	viewer_follows: bool,
) -> None:
	if profile.privacy == UserPrivacy.PUBLIC or profile.id == viewer_id or viewer_follows:
		return
	raise ForbiddenError("profile_private")


def ensure_group_fields(title: str, description: str) -> tuple[str, str]:
	title = (title or "").strip()
	description = (description or "").strip()
	if not title or not description:
		raise ValidationError("title_and_description_required")
	if len(title) > 140:
		raise ValidationError("title_too_long")
	return title, description


def ensure_post_content(content: str, *, max_length: int) -> str:
	content = (content or "").strip()
	if not content:
		raise ValidationError("content_empty")
	if len(content) > max_length:
		raise ValidationError("content_too_long")
	return content


def normalise_viewers(
	poster_id: UUID,
	privacy: PostPrivacy,
	viewer_ids: Iterable[UUID],
) -> list[UUID]:
	"""Allow-lists only apply to gated posts and never include the poster."""
	viewers = list(dict.fromkeys(viewer_ids))
	if privacy == PostPrivacy.PUBLIC:
		if viewers:
			raise ValidationError("viewers_require_gated_post")
		return []
	return [viewer for viewer in viewers if viewer != poster_id]
