"""In-memory doubles for the social core repositories."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Sequence
from uuid import UUID, uuid4

import pytest

from socnet.domain import models
from socnet.domain.exceptions import ConflictError
from socnet.domain.memberships import MembershipService
from socnet.domain.models import (
	ContentStatus,
	MembershipStatus,
	NotificationAction,
	NotificationStatus,
	ParentType,
	PostPrivacy,
	RelationshipStatus,
	UserPrivacy,
	UserStatus,
)
from socnet.domain.notifications import NotificationFanout, NotificationService
from socnet.domain.relationships import RelationshipService
from socnet.domain.visibility import VisibilityResolver

FAKE_CONN = object()


class Clock:
	def __init__(self) -> None:
		self._now = datetime(2024, 1, 1, tzinfo=timezone.utc)

	def tick(self) -> datetime:
		self._now += timedelta(seconds=1)
		return self._now


class Store:
	"""Shared tables backing every fake repository."""

	def __init__(self) -> None:
		self.clock = Clock()
		self.users: dict[UUID, models.User] = {}
		self.groups: dict[UUID, models.Group] = {}
		self.relationships: dict[UUID, models.Relationship] = {}
		self.memberships: dict[UUID, models.Membership] = {}
		self.notifications: dict[UUID, models.Notification] = {}
		self.posts: dict[UUID, models.Post] = {}
		self.viewers: set[tuple[UUID, UUID]] = set()
		self.comments: dict[UUID, models.Comment] = {}
		self.transactions = 0

	def add_user(
		self,
		handle: str,
		*,
		privacy: UserPrivacy = UserPrivacy.PUBLIC,
		status: UserStatus = UserStatus.ACTIVE,
		display_name: Optional[str] = None,
	) -> models.User:
		user = models.User(id=uuid4(), handle=handle, display_name=display_name, privacy=privacy, status=status)
		self.users[user.id] = user
		return user

	def add_post(
		self,
		poster: models.User,
		*,
		privacy: PostPrivacy = PostPrivacy.PUBLIC,
		status: ContentStatus = ContentStatus.ACTIVE,
		viewers: Iterable[models.User] = (),
		created_at: Optional[datetime] = None,
	) -> models.Post:
		post = models.Post(
			id=uuid4(),
			poster_id=poster.id,
			content="hello",
			privacy=privacy,
			status=status,
			created_at=created_at or self.clock.tick(),
		)
		self.posts[post.id] = post
		for viewer in viewers:
			self.viewers.add((post.id, viewer.id))
		return post

	def add_comment(
		self,
		post: models.Post,
		commenter: models.User,
		*,
		status: ContentStatus = ContentStatus.ACTIVE,
	) -> models.Comment:
		comment = models.Comment(
			id=uuid4(),
			post_id=post.id,
			commenter_id=commenter.id,
			content="nice",
			status=status,
			created_at=self.clock.tick(),
		)
		self.comments[comment.id] = comment
		return comment

	def notifications_for(
		self,
		receiver: models.User,
		action: Optional[NotificationAction] = None,
	) -> list[models.Notification]:
		return [
			item
			for item in self.notifications.values()
			if item.receiver_id == receiver.id and (action is None or item.action_type == action)
		]

	_TABLES = ("users", "groups", "relationships", "memberships", "notifications", "posts", "viewers", "comments")

	@asynccontextmanager
	async def transaction(self):
		self.transactions += 1
		snapshot = {name: getattr(self, name).copy() for name in self._TABLES}
		try:
			yield FAKE_CONN
		except BaseException:
			for name, rows in snapshot.items():
				setattr(self, name, rows)
			raise

	@asynccontextmanager
	async def connection(self):
		yield FAKE_CONN


class FakeUsers:
	def __init__(self, store: Store) -> None:
		self.store = store

	async def get_user(self, conn, user_id: UUID) -> models.User | None:
		return self.store.users.get(user_id)

	async def get_user_by_handle(self, conn, handle: str) -> models.User | None:
		return next((user for user in self.store.users.values() if user.handle == handle), None)


class FakeGroups:
	def __init__(self, store: Store) -> None:
		self.store = store

	async def get_group(self, conn, group_id: UUID) -> models.Group | None:
		return self.store.groups.get(group_id)


class FakeRelationships:
	def __init__(self, store: Store) -> None:
		self.store = store

	async def get(self, conn, relationship_id: UUID, *, for_update: bool = False) -> models.Relationship | None:
		return self.store.relationships.get(relationship_id)

	async def get_for_pair(
		self,
		conn,
		follower_id: UUID,
		followed_id: UUID,
		*,
		for_update: bool = False,
	) -> models.Relationship | None:
		return next(
			(
				row
				for row in self.store.relationships.values()
				if row.follower_id == follower_id and row.followed_id == followed_id
			),
			None,
		)

	async def insert(
		self,
		conn,
		*,
		follower_id: UUID,
		followed_id: UUID,
		status: RelationshipStatus,
		updater_id: UUID,
	) -> models.Relationship:
		if await self.get_for_pair(conn, follower_id, followed_id):
			raise ConflictError("already_following")
		now = self.store.clock.tick()
		row = models.Relationship(
			id=uuid4(),
			follower_id=follower_id,
			followed_id=followed_id,
			status=status,
			created_at=now,
			updated_at=now,
			updater_id=updater_id,
		)
		self.store.relationships[row.id] = row
		return row

	async def update_status(
		self,
		conn,
		relationship_id: UUID,
		*,
		status: RelationshipStatus,
		updater_id: UUID,
	) -> models.Relationship:
		row = self.store.relationships[relationship_id].model_copy(
			update={"status": status, "updater_id": updater_id, "updated_at": self.store.clock.tick()}
		)
		self.store.relationships[relationship_id] = row
		return row

	def _active(self, user_id: UUID) -> bool:
		user = self.store.users.get(user_id)
		return user is not None and user.is_active

	async def list_by_followed(self, conn, followed_id: UUID, *, status: RelationshipStatus) -> list[models.Relationship]:
		rows = [
			row
			for row in self.store.relationships.values()
			if row.followed_id == followed_id and row.status == status and self._active(row.follower_id)
		]
		return sorted(rows, key=lambda row: row.updated_at, reverse=True)

	async def list_by_follower(self, conn, follower_id: UUID, *, status: RelationshipStatus) -> list[models.Relationship]:
		rows = [
			row
			for row in self.store.relationships.values()
			if row.follower_id == follower_id and row.status == status and self._active(row.followed_id)
		]
		return sorted(rows, key=lambda row: row.updated_at, reverse=True)


class FakeMemberships:
	def __init__(self, store: Store) -> None:
		self.store = store

	async def insert_group(self, conn, *, title: str, description: str, creator_id: UUID) -> models.Group:
		group = models.Group(
			id=uuid4(),
			title=title,
			description=description,
			creator_id=creator_id,
			created_at=self.store.clock.tick(),
		)
		self.store.groups[group.id] = group
		return group

	async def get_for_pair(
		self,
		conn,
		group_id: UUID,
		member_id: UUID,
		*,
		for_update: bool = False,
	) -> models.Membership | None:
		return next(
			(
				row
				for row in self.store.memberships.values()
				if row.group_id == group_id and row.member_id == member_id
			),
			None,
		)

	async def insert(
		self,
		conn,
		*,
		group_id: UUID,
		member_id: UUID,
		inviter_id: Optional[UUID],
		status: MembershipStatus,
		inviter_is_creator: bool,
		updater_id: UUID,
	) -> models.Membership:
		if await self.get_for_pair(conn, group_id, member_id):
			raise ConflictError("membership_exists")
		now = self.store.clock.tick()
		row = models.Membership(
			id=uuid4(),
			group_id=group_id,
			member_id=member_id,
			inviter_id=inviter_id,
			status=status,
			inviter_is_creator=inviter_is_creator,
			created_at=now,
			updated_at=now,
			updater_id=updater_id,
		)
		self.store.memberships[row.id] = row
		return row

	async def reactivate(
		self,
		conn,
		membership_id: UUID,
		*,
		inviter_id: Optional[UUID],
		status: MembershipStatus,
		inviter_is_creator: bool,
		updater_id: UUID,
	) -> models.Membership:
		row = self.store.memberships[membership_id].model_copy(
			update={
				"inviter_id": inviter_id,
				"status": status,
				"inviter_is_creator": inviter_is_creator,
				"updater_id": updater_id,
				"updated_at": self.store.clock.tick(),
			}
		)
		self.store.memberships[membership_id] = row
		return row

	async def update_status(
		self,
		conn,
		membership_id: UUID,
		*,
		status: MembershipStatus,
		updater_id: UUID,
	) -> models.Membership:
		row = self.store.memberships[membership_id].model_copy(
			update={"status": status, "updater_id": updater_id, "updated_at": self.store.clock.tick()}
		)
		self.store.memberships[membership_id] = row
		return row

	async def list_for_member(self, conn, member_id: UUID, *, status: MembershipStatus) -> list[models.Membership]:
		return [row for row in self.store.memberships.values() if row.member_id == member_id and row.status == status]

	async def list_for_group(self, conn, group_id: UUID, *, status: MembershipStatus) -> list[models.Membership]:
		return [row for row in self.store.memberships.values() if row.group_id == group_id and row.status == status]


class FakeNotifications:
	def __init__(self, store: Store) -> None:
		self.store = store

	async def insert(
		self,
		conn,
		*,
		receiver_id: UUID,
		actor_id: UUID,
		action_type: NotificationAction,
		parent_type: ParentType,
		parent_id: UUID,
		content: str,
	) -> models.Notification:
		row = models.Notification(
			id=uuid4(),
			receiver_id=receiver_id,
			actor_id=actor_id,
			action_type=action_type,
			parent_type=parent_type,
			parent_id=parent_id,
			content=content,
			status=NotificationStatus.UNREAD,
			created_at=self.store.clock.tick(),
			updater_id=actor_id,
		)
		self.store.notifications[row.id] = row
		return row

	def _update(self, row: models.Notification, status: NotificationStatus, updater_id: UUID) -> None:
		self.store.notifications[row.id] = row.model_copy(
			update={"status": status, "updater_id": updater_id, "updated_at": self.store.clock.tick()}
		)

	async def advance_for_parent(
		self,
		conn,
		*,
		parent_type: ParentType,
		parent_id: UUID,
		action_type: NotificationAction,
		from_statuses: Sequence[NotificationStatus],
		status: NotificationStatus,
		updater_id: UUID,
	) -> int:
		matches = [
			row
			for row in self.store.notifications.values()
			if row.parent_type == parent_type
			and row.parent_id == parent_id
			and row.action_type == action_type
			and row.status in from_statuses
		]
		for row in matches:
			self._update(row, status, updater_id)
		return len(matches)

	async def mark_read(self, conn, notification_id: UUID, *, receiver_id: UUID) -> models.Notification | None:
		row = self.store.notifications.get(notification_id)
		if row is None or row.receiver_id != receiver_id or row.status != NotificationStatus.UNREAD:
			return None
		self._update(row, NotificationStatus.READ, receiver_id)
		return self.store.notifications[notification_id]

	async def advance_for_receiver(
		self,
		conn,
		receiver_id: UUID,
		*,
		from_status: NotificationStatus,
		status: NotificationStatus,
	) -> int:
		matches = [
			row
			for row in self.store.notifications.values()
			if row.receiver_id == receiver_id and row.status == from_status
		]
		for row in matches:
			self._update(row, status, receiver_id)
		return len(matches)

	async def list_for_receiver(self, conn, receiver_id: UUID, *, limit: int, after=None) -> list[models.Notification]:
		rows = [
			row
			for row in self.store.notifications.values()
			if row.receiver_id == receiver_id and row.status != NotificationStatus.INACTIVE
		]
		rows.sort(key=lambda row: (row.created_at, row.id), reverse=True)
		if after:
			rows = [row for row in rows if (row.created_at, row.id) < after]
		return rows[:limit]

	async def count_unread(self, conn, receiver_id: UUID) -> int:
		return sum(
			1
			for row in self.store.notifications.values()
			if row.receiver_id == receiver_id and row.status == NotificationStatus.UNREAD
		)


class FakePosts:
	def __init__(self, store: Store) -> None:
		self.store = store

	async def insert_post(
		self,
		conn,
		*,
		poster_id: UUID,
		content: str,
		privacy: PostPrivacy,
		group_id: Optional[UUID] = None,
	) -> models.Post:
		post = models.Post(
			id=uuid4(),
			poster_id=poster_id,
			group_id=group_id,
			content=content,
			privacy=privacy,
			status=ContentStatus.ACTIVE,
			created_at=self.store.clock.tick(),
		)
		self.store.posts[post.id] = post
		return post

	async def add_viewers(self, conn, post_id: UUID, viewer_ids: Iterable[UUID]) -> list[models.PostViewer]:
		added = []
		for viewer_id in viewer_ids:
			if (post_id, viewer_id) in self.store.viewers:
				continue
			self.store.viewers.add((post_id, viewer_id))
			added.append(models.PostViewer(post_id=post_id, viewer_id=viewer_id, created_at=self.store.clock.tick()))
		return added

	async def get_post(self, conn, post_id: UUID) -> models.Post | None:
		return self.store.posts.get(post_id)

	async def is_viewer(self, conn, post_id: UUID, viewer_id: UUID) -> bool:
		return (post_id, viewer_id) in self.store.viewers

	async def list_feed(self, conn, viewer_id: UUID, *, limit: int, after=None) -> list[models.Post]:
		def visible(post: models.Post) -> bool:
			if post.poster_id == viewer_id:
				return True
			if not post.is_active:
				return False
			return post.privacy == PostPrivacy.PUBLIC or (post.id, viewer_id) in self.store.viewers

		rows = sorted((post for post in self.store.posts.values() if visible(post)), key=lambda post: post.id)
		rows.sort(key=lambda post: post.created_at, reverse=True)
		if after:
			created_at, post_id = after
			rows = [
				post
				for post in rows
				if post.created_at < created_at or (post.created_at == created_at and post.id > post_id)
			]
		return rows[:limit]

	async def get_comment(self, conn, comment_id: UUID) -> models.Comment | None:
		return self.store.comments.get(comment_id)

	async def list_comments(self, conn, post_id: UUID) -> list[models.Comment]:
		rows = [comment for comment in self.store.comments.values() if comment.post_id == post_id]
		return sorted(rows, key=lambda comment: comment.created_at)


@pytest.fixture
def store() -> Store:
	return Store()


@pytest.fixture
def fanout(store: Store) -> NotificationFanout:
	return NotificationFanout(repository=FakeNotifications(store))


@pytest.fixture
def relationship_service(store: Store, fanout: NotificationFanout) -> RelationshipService:
	return RelationshipService(
		repository=FakeRelationships(store),
		users=FakeUsers(store),
		fanout=fanout,
		transaction=store.transaction,
		connection=store.connection,
	)


@pytest.fixture
def membership_service(store: Store, fanout: NotificationFanout) -> MembershipService:
	return MembershipService(
		repository=FakeMemberships(store),
		users=FakeUsers(store),
		groups=FakeGroups(store),
		fanout=fanout,
		transaction=store.transaction,
		connection=store.connection,
	)


@pytest.fixture
def notification_service(store: Store) -> NotificationService:
	return NotificationService(
		repository=FakeNotifications(store),
		transaction=store.transaction,
		connection=store.connection,
	)


@pytest.fixture
def resolver(store: Store) -> VisibilityResolver:
	return VisibilityResolver(
		repository=FakePosts(store),
		users=FakeUsers(store),
		groups=FakeGroups(store),
		memberships=FakeMemberships(store),
		transaction=store.transaction,
		connection=store.connection,
	)
