"""Domain models for follow edges, group memberships, notifications and content."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class UserPrivacy(str, Enum):
	PUBLIC = "public"
	PRIVATE = "private"


class UserStatus(str, Enum):
	ACTIVE = "active"
	INACTIVE = "inactive"


class RelationshipStatus(str, Enum):
	"""Follow edge states tracked in the database."""

	PENDING = "pending"
	ACCEPTED = "accepted"
	DECLINED = "declined"
	CANCELLED = "cancelled"

	@property
	def is_live(self) -> bool:
		return self in (RelationshipStatus.PENDING, RelationshipStatus.ACCEPTED)


class FollowAction(str, Enum):
	"""Answers the followed user may give to a pending request."""

	ACCEPT = "accept"
	DECLINE = "decline"


class MembershipStatus(str, Enum):
	"""Group membership states tracked in the database."""

	INVITED = "invited"
	REQUESTED = "requested"
	ACCEPTED = "accepted"
	DECLINED = "declined"
	CANCELLED = "cancelled"

	@property
	def is_open(self) -> bool:
		return self in (MembershipStatus.INVITED, MembershipStatus.REQUESTED)

	@property
	def is_terminal(self) -> bool:
		return self in (MembershipStatus.DECLINED, MembershipStatus.CANCELLED)


class MembershipDecision(str, Enum):
	ACCEPTED = "accepted"
	DECLINED = "declined"


class NotificationStatus(str, Enum):
	"""Notification states; rows only ever move forward through this order."""

	UNREAD = "unread"
	READ = "read"
	INACTIVE = "inactive"


class NotificationAction(str, Enum):
	"""One action type per real lifecycle event."""

	FOLLOW_REQUEST = "follow_request"
	FOLLOW_ACCEPTED = "follow_accepted"
	GROUP_INVITATION = "group_invitation"
	GROUP_INVITATION_ACCEPTED = "group_invitation_accepted"
	GROUP_JOIN_REQUEST = "group_join_request"
	GROUP_JOIN_ACCEPTED = "group_join_accepted"
	GROUP_JOIN_DECLINED = "group_join_declined"


class ParentType(str, Enum):
	"""Entity a notification points back to."""

	RELATIONSHIP = "relationship"
	MEMBERSHIP = "membership"
	GROUP = "group"
	POST = "post"
	COMMENT = "comment"


class PostPrivacy(str, Enum):
	PUBLIC = "public"
	SEMI_PRIVATE = "semi-private"
	PRIVATE = "private"


class ContentStatus(str, Enum):
	ACTIVE = "active"
	INACTIVE = "inactive"


class User(BaseModel):
	"""Read-only projection of an identity record."""

	id: UUID
	handle: str
	display_name: Optional[str] = None
	privacy: UserPrivacy
	status: UserStatus

	model_config = ConfigDict(from_attributes=True)

	@property
	def is_active(self) -> bool:
		return self.status == UserStatus.ACTIVE

	@property
	def label(self) -> str:
		return self.display_name or self.handle or "Someone"


class Group(BaseModel):
	id: UUID
	title: str
	description: str
	creator_id: UUID
	created_at: datetime

	model_config = ConfigDict(from_attributes=True)


class Relationship(BaseModel):
	"""Directed follow edge; one row per ordered (follower, followed) pair."""

	id: UUID
	follower_id: UUID
	followed_id: UUID
	status: RelationshipStatus
	created_at: datetime
	updated_at: datetime
	updater_id: UUID

	model_config = ConfigDict(from_attributes=True)


class Membership(BaseModel):
	"""A user's association with a group; one row per (group, member) pair."""

	id: UUID
	group_id: UUID
	member_id: UUID
	inviter_id: Optional[UUID] = None
	status: MembershipStatus
	inviter_is_creator: bool = False
	created_at: datetime
	updated_at: datetime
	updater_id: UUID

	model_config = ConfigDict(from_attributes=True)


class Notification(BaseModel):
	id: UUID
	receiver_id: UUID
	actor_id: UUID
	action_type: NotificationAction
	parent_type: ParentType
	parent_id: UUID
	content: str
	status: NotificationStatus
	created_at: datetime
	updated_at: Optional[datetime] = None
	updater_id: Optional[UUID] = None

	model_config = ConfigDict(from_attributes=True)


class Post(BaseModel):
	id: UUID
	poster_id: UUID
	group_id: Optional[UUID] = None
	content: str
	privacy: PostPrivacy
	status: ContentStatus
	created_at: datetime

	model_config = ConfigDict(from_attributes=True)

	@property
	def is_active(self) -> bool:
		return self.status == ContentStatus.ACTIVE


class PostViewer(BaseModel):
	"""Allow-list entry for a non-public post."""

	post_id: UUID
	viewer_id: UUID
	created_at: datetime

	model_config = ConfigDict(from_attributes=True)


class Comment(BaseModel):
	id: UUID
	post_id: UUID
	commenter_id: UUID
	content: str
	status: ContentStatus
	created_at: datetime

	model_config = ConfigDict(from_attributes=True)

	@property
	def is_active(self) -> bool:
		return self.status == ContentStatus.ACTIVE
