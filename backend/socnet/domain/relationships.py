"""Follow edge lifecycle: request, respond, cancel and connection listings."""

from __future__ import annotations

import logging
from typing import Callable, Optional
from uuid import UUID

import asyncpg

from socnet.domain import audit, models, policies
from socnet.domain import repo as repo_module
from socnet.domain.exceptions import ConflictError, ForbiddenError, NotFoundError
from socnet.domain.models import FollowAction, RelationshipStatus
from socnet.domain.notifications import NotificationFanout
from socnet.domain.policies import FollowEvent, FollowTransition
from socnet.infra import postgres
from socnet.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


class RelationshipService:
	"""Drive follow edges through their state machine.

	Every transition locks the pair's row, validates against the transition
	table, writes the new status and runs the notification fanout on one
	transaction. Logging, metrics and audit run after commit.
	"""

	def __init__(
		self,
		*,
		repository: repo_module.RelationshipRepository | None = None,
		users: repo_module.UserDirectory | None = None,
		fanout: NotificationFanout | None = None,
		transaction: Callable | None = None,
		connection: Callable | None = None,
	) -> None:
		self.repo = repository or repo_module.RelationshipRepository()
		self.users = users or repo_module.UserDirectory()
		self.fanout = fanout or NotificationFanout()
		self._transaction = transaction or postgres.transaction
		self._connection = connection or postgres.connection

	async def _require_user(self, conn: asyncpg.Connection, user_id: UUID) -> models.User:
		return policies.require_active_user(await self.users.get_user(conn, user_id))

	async def request_follow(self, follower_id: UUID, followed_id: UUID) -> models.Relationship:
		policies.guard_not_self(follower_id, followed_id)
		with repo_module.storage_errors("request_follow", followed_id, conflict="already_following"):
			async with self._transaction() as conn:
				followed = await self._require_user(conn, followed_id)
				follower = await self._require_user(conn, follower_id)
				existing = await self.repo.get_for_pair(conn, follower_id, followed_id, for_update=True)
				if existing is not None and existing.status.is_live:
					audit.inc_follow_reject("already_following")
					raise ConflictError("already_following")
				transition = FollowTransition(
					existing.status if existing else None,
					policies.follow_request_event(followed.privacy),
				)
				if existing is None:
					relationship = await self.repo.insert(
						conn,
						follower_id=follower_id,
						followed_id=followed_id,
						status=transition.target,
						updater_id=follower_id,
					)
				else:
					relationship = await self.repo.update_status(
						conn,
						existing.id,
						status=transition.target,
						updater_id=follower_id,
					)
				if relationship.status == RelationshipStatus.PENDING:
					await self.fanout.follow_requested(conn, relationship, follower)

		audit.inc_follow_request(relationship.status.value)
		logger.info(
			"follow requested",
			extra={
				"relationship_id": str(relationship.id),
				"follower_id": str(follower_id),
				"followed_id": str(followed_id),
				"status": relationship.status.value,
				"reused": existing is not None,
			},
		)
		await audit.log_relationship_event(
			"follow.request",
			{
				"relationship_id": str(relationship.id),
				"follower_id": str(follower_id),
				"followed_id": str(followed_id),
				"status": relationship.status.value,
			},
		)
		return relationship

	async def cancel_follow(self, follower_id: UUID, followed_id: UUID) -> models.Relationship:
		with repo_module.storage_errors("cancel_follow", followed_id):
			async with self._transaction() as conn:
				existing = await self.repo.get_for_pair(conn, follower_id, followed_id, for_update=True)
				if existing is None:
					raise NotFoundError("relationship_not_found")
				transition = FollowTransition(existing.status, FollowEvent.CANCEL)
				relationship = await self.repo.update_status(
					conn,
					existing.id,
					status=transition.target,
					updater_id=follower_id,
				)
				if existing.status == RelationshipStatus.PENDING:
					await self.fanout.follow_request_closed(conn, relationship, updater_id=follower_id)

		audit.inc_follow_cancel()
		logger.info(
			"follow cancelled",
			extra={
				"relationship_id": str(relationship.id),
				"follower_id": str(follower_id),
				"followed_id": str(followed_id),
				"previous": existing.status.value,
			},
		)
		await audit.log_relationship_event(
			"follow.cancel",
			{
				"relationship_id": str(relationship.id),
				"follower_id": str(follower_id),
				"followed_id": str(followed_id),
				"previous": existing.status.value,
			},
		)
		return relationship

	async def respond_to_follow_request(
		self,
		relationship_id: UUID,
		responder_id: UUID,
		action: FollowAction | str,
	) -> models.Relationship:
		action = policies.parse_follow_action(action)
		with repo_module.storage_errors("respond_to_follow_request", relationship_id):
			async with self._transaction() as conn:
				existing = await self.repo.get(conn, relationship_id, for_update=True)
				if existing is None:
					raise NotFoundError("relationship_not_found")
				policies.assert_is_followed_party(existing, responder_id)
				responder = await self._require_user(conn, responder_id)
				transition = FollowTransition(existing.status, policies.follow_action_event(action))
				relationship = await self.repo.update_status(
					conn,
					existing.id,
					status=transition.target,
					updater_id=responder_id,
				)
				await self.fanout.follow_request_closed(conn, relationship, updater_id=responder_id)
				if action == FollowAction.ACCEPT:
					await self.fanout.follow_accepted(conn, relationship, responder)

		audit.inc_follow_response(action.value)
		logger.info(
			"follow request answered",
			extra={
				"relationship_id": str(relationship.id),
				"responder_id": str(responder_id),
				"action": action.value,
			},
		)
		await audit.log_relationship_event(
			f"follow.{action.value}",
			{
				"relationship_id": str(relationship.id),
				"follower_id": str(relationship.follower_id),
				"followed_id": str(relationship.followed_id),
			},
		)
		return relationship

	async def follow_status(self, follower_id: UUID, followed_id: UUID) -> Optional[RelationshipStatus]:
		async with self._connection() as conn:
			relationship = await self.repo.get_for_pair(conn, follower_id, followed_id)
		return relationship.status if relationship else None

	async def list_follow_requests(self, user_id: UUID) -> list[models.Relationship]:
		async with self._connection() as conn:
			return await self.repo.list_by_followed(conn, user_id, status=RelationshipStatus.PENDING)

	async def _authorise_listing(self, conn: asyncpg.Connection, viewer_id: UUID, user_id: UUID) -> None:
		profile = await self._require_user(conn, user_id)
		viewer_follows = False
		if viewer_id != user_id:
			edge = await self.repo.get_for_pair(conn, viewer_id, user_id)
			viewer_follows = edge is not None and edge.status == RelationshipStatus.ACCEPTED
		try:
			policies.assert_can_list_connections(profile, viewer_id=viewer_id, viewer_follows=viewer_follows)
		except ForbiddenError:
			obs_metrics.inc_visibility_denial("profile", "private")
			raise

	async def list_followers(self, viewer_id: UUID, user_id: UUID) -> list[models.Relationship]:
		async with self._connection() as conn:
			await self._authorise_listing(conn, viewer_id, user_id)
			return await self.repo.list_by_followed(conn, user_id, status=RelationshipStatus.ACCEPTED)

	async def list_following(self, viewer_id: UUID, user_id: UUID) -> list[models.Relationship]:
		async with self._connection() as conn:
			await self._authorise_listing(conn, viewer_id, user_id)
			return await self.repo.list_by_follower(conn, user_id, status=RelationshipStatus.ACCEPTED)
