"""Async repository helpers for the social core.

Every method takes the connection it runs on as its first argument so a
service can read, validate, write and fan out on one transaction.
"""

from __future__ import annotations

import logging
from base64 import b64decode, b64encode
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Iterator, Optional, Sequence
from uuid import UUID, uuid4

import asyncpg

from socnet.domain import models
from socnet.domain.exceptions import ConflictError, StorageError, ValidationError
from socnet.domain.models import (
	MembershipStatus,
	NotificationAction,
	NotificationStatus,
	ParentType,
	PostPrivacy,
	RelationshipStatus,
)

logger = logging.getLogger(__name__)

CursorPair = tuple[datetime, UUID]


def encode_cursor(value: CursorPair) -> str:
	created_at, entity_id = value
	payload = f"{created_at.isoformat()}|{entity_id}"
	return b64encode(payload.encode()).decode()


def decode_cursor(cursor: str) -> CursorPair:
	try:
		decoded = b64decode(cursor.encode()).decode()
		created_str, id_str = decoded.split("|", maxsplit=1)
		return datetime.fromisoformat(created_str), UUID(id_str)
	except ValueError as exc:
		raise ValidationError("invalid_cursor") from exc


@contextmanager
def storage_errors(operation: str, entity_id: object = None, *, conflict: str | None = None) -> Iterator[None]:
	"""Translate backend failures into the domain error taxonomy.

	Unique violations become ConflictError; anything else raised by the driver
	becomes StorageError tagged with the operation and entity.
	"""
	try:
		yield
	except asyncpg.UniqueViolationError as exc:
		raise ConflictError(conflict or f"{operation}_conflict") from exc
	except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
		logger.error(
			"storage failure",
			extra={"operation": operation, "entity_id": str(entity_id) if entity_id is not None else None},
		)
		raise StorageError(operation, entity_id) from exc


def _lock(for_update: bool) -> str:
	return " FOR UPDATE" if for_update else ""


class UserDirectory:
	"""Read-only lookups against the identity subsystem's users table."""

	async def get_user(self, conn: asyncpg.Connection, user_id: UUID) -> models.User | None:
		with storage_errors("get_user", user_id):
			record = await conn.fetchrow(
				"SELECT id, handle, display_name, privacy, status FROM users WHERE id=$1",
				user_id,
			)
		return models.User.model_validate(dict(record)) if record else None

	async def get_user_by_handle(self, conn: asyncpg.Connection, handle: str) -> models.User | None:
		with storage_errors("get_user_by_handle", handle):
			record = await conn.fetchrow(
				"SELECT id, handle, display_name, privacy, status FROM users WHERE handle=$1",
				handle,
			)
		return models.User.model_validate(dict(record)) if record else None


class GroupDirectory:
	"""Read-only group lookups."""

	async def get_group(self, conn: asyncpg.Connection, group_id: UUID) -> models.Group | None:
		with storage_errors("get_group", group_id):
			record = await conn.fetchrow("SELECT * FROM groups WHERE id=$1", group_id)
		return models.Group.model_validate(dict(record)) if record else None


class RelationshipRepository:
	"""Persisted follow edges, one row per ordered pair."""

	async def get(
		self,
		conn: asyncpg.Connection,
		relationship_id: UUID,
		*,
		for_update: bool = False,
	) -> models.Relationship | None:
		with storage_errors("get_relationship", relationship_id):
			record = await conn.fetchrow(
				"SELECT * FROM relationships WHERE id=$1" + _lock(for_update),
				relationship_id,
			)
		return models.Relationship.model_validate(dict(record)) if record else None

	async def get_for_pair(
		self,
		conn: asyncpg.Connection,
		follower_id: UUID,
		followed_id: UUID,
		*,
		for_update: bool = False,
	) -> models.Relationship | None:
		with storage_errors("get_relationship_pair", followed_id):
			record = await conn.fetchrow(
				"SELECT * FROM relationships WHERE follower_id=$1 AND followed_id=$2" + _lock(for_update),
				follower_id,
				followed_id,
			)
		return models.Relationship.model_validate(dict(record)) if record else None

	async def insert(
		self,
		conn: asyncpg.Connection,
		*,
		follower_id: UUID,
		followed_id: UUID,
		status: RelationshipStatus,
		updater_id: UUID,
	) -> models.Relationship:
		with storage_errors("insert_relationship", followed_id, conflict="already_following"):
			record = await conn.fetchrow(
				"""
				INSERT INTO relationships (id, follower_id, followed_id, status, updater_id)
				VALUES ($1, $2, $3, $4, $5)
				RETURNING *
				""",
				uuid4(),
				follower_id,
				followed_id,
				status.value,
				updater_id,
			)
		return models.Relationship.model_validate(dict(record))

	async def update_status(
		self,
		conn: asyncpg.Connection,
		relationship_id: UUID,
		*,
		status: RelationshipStatus,
		updater_id: UUID,
	) -> models.Relationship:
		with storage_errors("update_relationship", relationship_id):
			record = await conn.fetchrow(
				"""
				UPDATE relationships
				SET status=$2, updated_at=NOW(), updater_id=$3
				WHERE id=$1
				RETURNING *
				""",
				relationship_id,
				status.value,
				updater_id,
			)
		if record is None:
			raise StorageError("update_relationship", relationship_id)
		return models.Relationship.model_validate(dict(record))

	async def list_by_followed(
		self,
		conn: asyncpg.Connection,
		followed_id: UUID,
		*,
		status: RelationshipStatus,
	) -> list[models.Relationship]:
		with storage_errors("list_relationships_by_followed", followed_id):
			rows = await conn.fetch(
				"""
				SELECT r.*
				FROM relationships r
				JOIN users u ON u.id = r.follower_id
				WHERE r.followed_id=$1 AND r.status=$2 AND u.status='active'
				ORDER BY r.updated_at DESC, r.id
				""",
				followed_id,
				status.value,
			)
		return [models.Relationship.model_validate(dict(row)) for row in rows]

	async def list_by_follower(
		self,
		conn: asyncpg.Connection,
		follower_id: UUID,
		*,
		status: RelationshipStatus,
	) -> list[models.Relationship]:
		with storage_errors("list_relationships_by_follower", follower_id):
			rows = await conn.fetch(
				"""
				SELECT r.*
				FROM relationships r
				JOIN users u ON u.id = r.followed_id
				WHERE r.follower_id=$1 AND r.status=$2 AND u.status='active'
				ORDER BY r.updated_at DESC, r.id
				""",
				follower_id,
				status.value,
			)
		return [models.Relationship.model_validate(dict(row)) for row in rows]


class MembershipRepository:
	"""Persisted group memberships, one row per (group, member) pair."""

	async def insert_group(
		self,
		conn: asyncpg.Connection,
		*,
		title: str,
		description: str,
		creator_id: UUID,
	) -> models.Group:
		with storage_errors("insert_group", creator_id):
			record = await conn.fetchrow(
				"""
				INSERT INTO groups (id, title, description, creator_id)
				VALUES ($1, $2, $3, $4)
				RETURNING *
				""",
				uuid4(),
				title,
				description,
				creator_id,
			)
		return models.Group.model_validate(dict(record))

	async def get_for_pair(
		self,
		conn: asyncpg.Connection,
		group_id: UUID,
		member_id: UUID,
		*,
		for_update: bool = False,
	) -> models.Membership | None:
		with storage_errors("get_membership", group_id):
			record = await conn.fetchrow(
				"SELECT * FROM memberships WHERE group_id=$1 AND member_id=$2" + _lock(for_update),
				group_id,
				member_id,
			)
		return models.Membership.model_validate(dict(record)) if record else None

	async def insert(
		self,
		conn: asyncpg.Connection,
		*,
		group_id: UUID,
		member_id: UUID,
		inviter_id: Optional[UUID],
		status: MembershipStatus,
		inviter_is_creator: bool,
		updater_id: UUID,
	) -> models.Membership:
		with storage_errors("insert_membership", group_id, conflict="membership_exists"):
			record = await conn.fetchrow(
				"""
				INSERT INTO memberships (id, group_id, member_id, inviter_id, status, inviter_is_creator, updater_id)
				VALUES ($1, $2, $3, $4, $5, $6, $7)
				RETURNING *
				""",
				uuid4(),
				group_id,
				member_id,
				inviter_id,
				status.value,
				inviter_is_creator,
				updater_id,
			)
		return models.Membership.model_validate(dict(record))

	async def reactivate(
		self,
		conn: asyncpg.Connection,
		membership_id: UUID,
		*,
		inviter_id: Optional[UUID],
		status: MembershipStatus,
		inviter_is_creator: bool,
		updater_id: UUID,
	) -> models.Membership:
		"""Overwrite a terminal row with a fresh invitation or request."""
		with storage_errors("reactivate_membership", membership_id):
			record = await conn.fetchrow(
				"""
				UPDATE memberships
				SET status=$2, inviter_id=$3, inviter_is_creator=$4, updater_id=$5, updated_at=NOW()
				WHERE id=$1
				RETURNING *
				""",
				membership_id,
				status.value,
				inviter_id,
				inviter_is_creator,
				updater_id,
			)
		if record is None:
			raise StorageError("reactivate_membership", membership_id)
		return models.Membership.model_validate(dict(record))

	async def update_status(
		self,
		conn: asyncpg.Connection,
		membership_id: UUID,
		*,
		status: MembershipStatus,
		updater_id: UUID,
	) -> models.Membership:
		with storage_errors("update_membership", membership_id):
			record = await conn.fetchrow(
				"""
				UPDATE memberships
				SET status=$2, updater_id=$3, updated_at=NOW()
				WHERE id=$1
				RETURNING *
				""",
				membership_id,
				status.value,
				updater_id,
			)
		if record is None:
			raise StorageError("update_membership", membership_id)
		return models.Membership.model_validate(dict(record))

	async def list_for_member(
		self,
		conn: asyncpg.Connection,
		member_id: UUID,
		*,
		status: MembershipStatus,
	) -> list[models.Membership]:
		with storage_errors("list_memberships_for_member", member_id):
			rows = await conn.fetch(
				"""
				SELECT * FROM memberships
				WHERE member_id=$1 AND status=$2
				ORDER BY updated_at DESC, id
				""",
				member_id,
				status.value,
			)
		return [models.Membership.model_validate(dict(row)) for row in rows]

	async def list_for_group(
		self,
		conn: asyncpg.Connection,
		group_id: UUID,
		*,
		status: MembershipStatus,
	) -> list[models.Membership]:
		with storage_errors("list_memberships_for_group", group_id):
			rows = await conn.fetch(
				"""
				SELECT * FROM memberships
				WHERE group_id=$1 AND status=$2
				ORDER BY created_at, id
				""",
				group_id,
				status.value,
			)
		return [models.Membership.model_validate(dict(row)) for row in rows]


class NotificationRepository:
	"""Per-user notification feed; rows are soft-retired, never deleted."""

	async def insert(
		self,
		conn: asyncpg.Connection,
		*,
		receiver_id: UUID,
		actor_id: UUID,
		action_type: NotificationAction,
		parent_type: ParentType,
		parent_id: UUID,
		content: str,
	) -> models.Notification:
		with storage_errors("insert_notification", parent_id):
			record = await conn.fetchrow(
				"""
				INSERT INTO notifications (id, receiver_id, actor_id, action_type, parent_type, parent_id, content, status, updater_id)
				VALUES ($1, $2, $3, $4, $5, $6, $7, 'unread', $3)
				RETURNING *
				""",
				uuid4(),
				receiver_id,
				actor_id,
				action_type.value,
				parent_type.value,
				parent_id,
				content,
			)
		return models.Notification.model_validate(dict(record))

	async def advance_for_parent(
		self,
		conn: asyncpg.Connection,
		*,
		parent_type: ParentType,
		parent_id: UUID,
		action_type: NotificationAction,
		from_statuses: Sequence[NotificationStatus],
		status: NotificationStatus,
		updater_id: UUID,
	) -> int:
		with storage_errors("advance_notifications_for_parent", parent_id):
			rows = await conn.fetch(
				"""
				UPDATE notifications
				SET status=$4, updated_at=NOW(), updater_id=$5
				WHERE parent_type=$1 AND parent_id=$2 AND action_type=$3 AND status = ANY($6::text[])
				RETURNING id
				""",
				parent_type.value,
				parent_id,
				action_type.value,
				status.value,
				updater_id,
				[item.value for item in from_statuses],
			)
		return len(rows)

	async def mark_read(
		self,
		conn: asyncpg.Connection,
		notification_id: UUID,
		*,
		receiver_id: UUID,
	) -> models.Notification | None:
		with storage_errors("mark_notification_read", notification_id):
			record = await conn.fetchrow(
				"""
				UPDATE notifications
				SET status='read', updated_at=NOW(), updater_id=$2
				WHERE id=$1 AND receiver_id=$2 AND status='unread'
				RETURNING *
				""",
				notification_id,
				receiver_id,
			)
		return models.Notification.model_validate(dict(record)) if record else None

	async def advance_for_receiver(
		self,
		conn: asyncpg.Connection,
		receiver_id: UUID,
		*,
		from_status: NotificationStatus,
		status: NotificationStatus,
	) -> int:
		with storage_errors("advance_notifications_for_receiver", receiver_id):
			rows = await conn.fetch(
				"""
				UPDATE notifications
				SET status=$3, updated_at=NOW(), updater_id=$1
				WHERE receiver_id=$1 AND status=$2
				RETURNING id
				""",
				receiver_id,
				from_status.value,
				status.value,
			)
		return len(rows)

	async def list_for_receiver(
		self,
		conn: asyncpg.Connection,
		receiver_id: UUID,
		*,
		limit: int,
		after: CursorPair | None = None,
	) -> list[models.Notification]:
		params: list[object] = [receiver_id]
		conditions = ["receiver_id=$1", "status <> 'inactive'"]
		if after:
			params.extend([after[0], after[1]])
			conditions.append("(created_at, id) < ($%d, $%d)" % (len(params) - 1, len(params)))
		where_clause = " AND ".join(conditions)
		params.append(limit)
		query = f"""
			SELECT * FROM notifications
			WHERE {where_clause}
			ORDER BY created_at DESC, id DESC
			LIMIT ${len(params)}
		"""
		with storage_errors("list_notifications", receiver_id):
			rows = await conn.fetch(query, *params)
		return [models.Notification.model_validate(dict(row)) for row in rows]

	async def count_unread(self, conn: asyncpg.Connection, receiver_id: UUID) -> int:
		with storage_errors("count_unread_notifications", receiver_id):
			value = await conn.fetchval(
				"SELECT COUNT(*) FROM notifications WHERE receiver_id=$1 AND status='unread'",
				receiver_id,
			)
		return int(value or 0)


class PostRepository:
	"""Posts, their viewer allow-lists and comments."""

	async def insert_post(
		self,
		conn: asyncpg.Connection,
		*,
		poster_id: UUID,
		content: str,
		privacy: PostPrivacy,
		group_id: Optional[UUID] = None,
	) -> models.Post:
		with storage_errors("insert_post", poster_id):
			record = await conn.fetchrow(
				"""
				INSERT INTO posts (id, poster_id, group_id, content, privacy, status)
				VALUES ($1, $2, $3, $4, $5, 'active')
				RETURNING *
				""",
				uuid4(),
				poster_id,
				group_id,
				content,
				privacy.value,
			)
		return models.Post.model_validate(dict(record))

	async def add_viewers(
		self,
		conn: asyncpg.Connection,
		post_id: UUID,
		viewer_ids: Iterable[UUID],
	) -> list[models.PostViewer]:
		viewers = list(viewer_ids)
		if not viewers:
			return []
		with storage_errors("add_post_viewers", post_id):
			rows = await conn.fetch(
				"""
				INSERT INTO post_viewers (post_id, viewer_id)
				SELECT $1, viewer FROM UNNEST($2::uuid[]) AS viewer
				ON CONFLICT (post_id, viewer_id) DO NOTHING
				RETURNING *
				""",
				post_id,
				viewers,
			)
		return [models.PostViewer.model_validate(dict(row)) for row in rows]

	async def get_post(self, conn: asyncpg.Connection, post_id: UUID) -> models.Post | None:
		with storage_errors("get_post", post_id):
			record = await conn.fetchrow("SELECT * FROM posts WHERE id=$1", post_id)
		return models.Post.model_validate(dict(record)) if record else None

	async def is_viewer(self, conn: asyncpg.Connection, post_id: UUID, viewer_id: UUID) -> bool:
		with storage_errors("check_post_viewer", post_id):
			value = await conn.fetchval(
				"SELECT 1 FROM post_viewers WHERE post_id=$1 AND viewer_id=$2",
				post_id,
				viewer_id,
			)
		return value is not None

	async def list_feed(
		self,
		conn: asyncpg.Connection,
		viewer_id: UUID,
		*,
		limit: int,
		after: CursorPair | None = None,
	) -> list[models.Post]:
		"""Own posts, active public posts and active allow-listed posts, newest first."""
		params: list[object] = [viewer_id]
		cursor_clause = ""
		if after:
			params.extend([after[0], after[1]])
			cursor_clause = " AND (p.created_at < $2 OR (p.created_at = $2 AND p.id > $3))"
		params.append(limit)
		query = f"""
			SELECT p.*
			FROM posts p
			WHERE (
				p.poster_id = $1
				OR (
					p.status = 'active'
					AND (
						p.privacy = 'public'
						OR EXISTS (
							SELECT 1 FROM post_viewers v
							WHERE v.post_id = p.id AND v.viewer_id = $1
						)
					)
				)
			){cursor_clause}
			ORDER BY p.created_at DESC, p.id ASC
			LIMIT ${len(params)}
		"""
		with storage_errors("list_feed", viewer_id):
			rows = await conn.fetch(query, *params)
		return [models.Post.model_validate(dict(row)) for row in rows]

	async def get_comment(self, conn: asyncpg.Connection, comment_id: UUID) -> models.Comment | None:
		with storage_errors("get_comment", comment_id):
			record = await conn.fetchrow("SELECT * FROM comments WHERE id=$1", comment_id)
		return models.Comment.model_validate(dict(record)) if record else None

	async def list_comments(self, conn: asyncpg.Connection, post_id: UUID) -> list[models.Comment]:
		with storage_errors("list_comments", post_id):
			rows = await conn.fetch(
				"SELECT * FROM comments WHERE post_id=$1 ORDER BY created_at, id",
				post_id,
			)
		return [models.Comment.model_validate(dict(row)) for row in rows]
