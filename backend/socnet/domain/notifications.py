"""Notification fanout for lifecycle transitions and the per-user notification feed."""

from __future__ import annotations

import logging
from typing import Callable, Optional
from uuid import UUID

import asyncpg

from socnet.domain import models, policies
from socnet.domain import repo as repo_module
from socnet.domain.exceptions import NotFoundError, ValidationError
from socnet.domain.models import (
	MembershipDecision,
	MembershipStatus,
	NotificationAction,
	NotificationStatus,
	ParentType,
)
from socnet.infra import postgres
from socnet.obs import metrics as obs_metrics
from socnet.settings import settings

logger = logging.getLogger(__name__)


def _page_limit(limit: Optional[int], ceiling: int) -> int:
	if limit is None:
		return ceiling
	if limit <= 0:
		raise ValidationError("invalid_limit")
	return min(limit, ceiling)


class NotificationFanout:
	"""Maps lifecycle events to notification writes on the caller's connection.

	Inserts always start ``unread``. Updates only move rows forward through
	``unread -> read -> inactive``; the status filter is computed from the
	target so a regression is never issued.
	"""

	def __init__(self, *, repository: repo_module.NotificationRepository | None = None) -> None:
		self.repo = repository or repo_module.NotificationRepository()

	async def _emit(
		self,
		conn: asyncpg.Connection,
		*,
		receiver_id: UUID,
		actor_id: UUID,
		action: NotificationAction,
		parent_type: ParentType,
		parent_id: UUID,
		content: str,
	) -> models.Notification:
		notification = await self.repo.insert(
			conn,
			receiver_id=receiver_id,
			actor_id=actor_id,
			action_type=action,
			parent_type=parent_type,
			parent_id=parent_id,
			content=content,
		)
		obs_metrics.inc_notification_written(action.value)
		return notification

	async def advance(
		self,
		conn: asyncpg.Connection,
		*,
		parent_type: ParentType,
		parent_id: UUID,
		action: NotificationAction,
		updater_id: UUID,
		status: NotificationStatus = NotificationStatus.READ,
	) -> int:
		"""Move the notifications of one parent and action type forward to ``status``."""
		changed = await self.repo.advance_for_parent(
			conn,
			parent_type=parent_type,
			parent_id=parent_id,
			action_type=action,
			from_statuses=policies.statuses_before(status),
			status=status,
			updater_id=updater_id,
		)
		obs_metrics.inc_notifications_advanced(status.value, changed)
		return changed

	# --- Follow edges ------------------------------------------------------

	async def follow_requested(
		self,
		conn: asyncpg.Connection,
		relationship: models.Relationship,
		follower: models.User,
	) -> models.Notification:
		return await self._emit(
			conn,
			receiver_id=relationship.followed_id,
			actor_id=follower.id,
			action=NotificationAction.FOLLOW_REQUEST,
			parent_type=ParentType.RELATIONSHIP,
			parent_id=relationship.id,
			content=f"{follower.label} wants to follow you",
		)

	async def follow_request_closed(
		self,
		conn: asyncpg.Connection,
		relationship: models.Relationship,
		*,
		updater_id: UUID,
	) -> int:
		return await self.advance(
			conn,
			parent_type=ParentType.RELATIONSHIP,
			parent_id=relationship.id,
			action=NotificationAction.FOLLOW_REQUEST,
			updater_id=updater_id,
		)

	async def follow_accepted(
		self,
		conn: asyncpg.Connection,
		relationship: models.Relationship,
		responder: models.User,
	) -> models.Notification:
		return await self._emit(
			conn,
			receiver_id=relationship.follower_id,
			actor_id=responder.id,
			action=NotificationAction.FOLLOW_ACCEPTED,
			parent_type=ParentType.RELATIONSHIP,
			parent_id=relationship.id,
			content=f"{responder.label} accepted your follow request",
		)

	# --- Group memberships -------------------------------------------------

	async def group_invitation(
		self,
		conn: asyncpg.Connection,
		membership: models.Membership,
		group: models.Group,
		inviter: models.User,
	) -> models.Notification:
		return await self._emit(
			conn,
			receiver_id=membership.member_id,
			actor_id=inviter.id,
			action=NotificationAction.GROUP_INVITATION,
			parent_type=ParentType.MEMBERSHIP,
			parent_id=membership.id,
			content=f"{inviter.label} invited you to join the group '{group.title}'",
		)

	async def group_join_request(
		self,
		conn: asyncpg.Connection,
		membership: models.Membership,
		group: models.Group,
		requester: models.User,
	) -> models.Notification:
		return await self._emit(
			conn,
			receiver_id=group.creator_id,
			actor_id=requester.id,
			action=NotificationAction.GROUP_JOIN_REQUEST,
			parent_type=ParentType.MEMBERSHIP,
			parent_id=membership.id,
			content=f"{requester.label} wants to join your group '{group.title}'",
		)

	async def membership_closed(
		self,
		conn: asyncpg.Connection,
		membership: models.Membership,
		*,
		previous: MembershipStatus,
		updater_id: UUID,
	) -> int:
		"""Retire the notification that opened an invitation or join request."""
		if previous == MembershipStatus.INVITED:
			action = NotificationAction.GROUP_INVITATION
		elif previous == MembershipStatus.REQUESTED:
			action = NotificationAction.GROUP_JOIN_REQUEST
		else:
			return 0
		return await self.advance(
			conn,
			parent_type=ParentType.MEMBERSHIP,
			parent_id=membership.id,
			action=action,
			updater_id=updater_id,
		)

	async def membership_decided(
		self,
		conn: asyncpg.Connection,
		membership: models.Membership,
		group: models.Group,
		*,
		previous: MembershipStatus,
		decision: MembershipDecision,
		actor: models.User,
	) -> models.Notification | None:
		"""Retire the originating notification and tell the other party the outcome."""
		await self.membership_closed(conn, membership, previous=previous, updater_id=actor.id)
		if previous == MembershipStatus.REQUESTED:
			if decision == MembershipDecision.ACCEPTED:
				action = NotificationAction.GROUP_JOIN_ACCEPTED
			else:
				action = NotificationAction.GROUP_JOIN_DECLINED
			return await self._emit(
				conn,
				receiver_id=membership.member_id,
				actor_id=actor.id,
				action=action,
				parent_type=ParentType.MEMBERSHIP,
				parent_id=membership.id,
				content=f"Your request to join '{group.title}' has been {decision.value} by {actor.label}",
			)
		if previous == MembershipStatus.INVITED and decision == MembershipDecision.ACCEPTED:
			receiver_id = membership.inviter_id or group.creator_id
			return await self._emit(
				conn,
				receiver_id=receiver_id,
				actor_id=actor.id,
				action=NotificationAction.GROUP_INVITATION_ACCEPTED,
				parent_type=ParentType.MEMBERSHIP,
				parent_id=membership.id,
				content=f"{actor.label} accepted your invitation to join '{group.title}'",
			)
		return None


class NotificationService:
	"""Read and acknowledge a user's notifications."""

	def __init__(
		self,
		*,
		repository: repo_module.NotificationRepository | None = None,
		transaction: Callable | None = None,
		connection: Callable | None = None,
	) -> None:
		self.repo = repository or repo_module.NotificationRepository()
		self._transaction = transaction or postgres.transaction
		self._connection = connection or postgres.connection

	async def notifications_for(
		self,
		user_id: UUID,
		*,
		limit: Optional[int] = None,
		after: Optional[str] = None,
	) -> tuple[list[models.Notification], Optional[str]]:
		page_size = _page_limit(limit, settings.notification_page_limit)
		cursor = repo_module.decode_cursor(after) if after else None
		async with self._connection() as conn:
			items = await self.repo.list_for_receiver(conn, user_id, limit=page_size + 1, after=cursor)
		next_cursor = None
		if len(items) > page_size:
			items = items[:page_size]
			last = items[-1]
			next_cursor = repo_module.encode_cursor((last.created_at, last.id))
		return items, next_cursor

	async def mark_read(self, user_id: UUID, notification_id: UUID) -> models.Notification:
		with repo_module.storage_errors("mark_notification_read", notification_id):
			async with self._transaction() as conn:
				notification = await self.repo.mark_read(conn, notification_id, receiver_id=user_id)
		if notification is None:
			obs_metrics.inc_notification_read("missing")
			raise NotFoundError("notification_not_found")
		obs_metrics.inc_notification_read("ok")
		return notification

	async def mark_all_read(self, user_id: UUID) -> int:
		with repo_module.storage_errors("mark_all_notifications_read", user_id):
			async with self._transaction() as conn:
				changed = await self.repo.advance_for_receiver(
					conn,
					user_id,
					from_status=NotificationStatus.UNREAD,
					status=NotificationStatus.READ,
				)
		obs_metrics.inc_notifications_advanced(NotificationStatus.READ.value, changed)
		logger.info("notifications marked read", extra={"user_id": str(user_id), "count": changed})
		return changed

	async def clear_read(self, user_id: UUID) -> int:
		with repo_module.storage_errors("clear_read_notifications", user_id):
			async with self._transaction() as conn:
				changed = await self.repo.advance_for_receiver(
					conn,
					user_id,
					from_status=NotificationStatus.READ,
					status=NotificationStatus.INACTIVE,
				)
		obs_metrics.inc_notifications_advanced(NotificationStatus.INACTIVE.value, changed)
		logger.info("read notifications cleared", extra={"user_id": str(user_id), "count": changed})
		return changed

	async def unread_count(self, user_id: UUID) -> int:
		async with self._connection() as conn:
			return await self.repo.count_unread(conn, user_id)
