"""Group membership lifecycle: creation, invitations, join requests and decisions."""

from __future__ import annotations

import logging
from typing import Callable, Optional
from uuid import UUID

import asyncpg

from socnet.domain import audit, models, policies
from socnet.domain import repo as repo_module
from socnet.domain.exceptions import ConflictError, NotFoundError
from socnet.domain.models import MembershipDecision, MembershipStatus
from socnet.domain.notifications import NotificationFanout
from socnet.domain.policies import MembershipEvent, MembershipTransition
from socnet.infra import postgres

logger = logging.getLogger(__name__)


class MembershipService:
	"""Drive group memberships through their state machine."""

	def __init__(
		self,
		*,
		repository: repo_module.MembershipRepository | None = None,
		users: repo_module.UserDirectory | None = None,
		groups: repo_module.GroupDirectory | None = None,
		fanout: NotificationFanout | None = None,
		transaction: Callable | None = None,
		connection: Callable | None = None,
	) -> None:
		self.repo = repository or repo_module.MembershipRepository()
		self.users = users or repo_module.UserDirectory()
		self.groups = groups or repo_module.GroupDirectory()
		self.fanout = fanout or NotificationFanout()
		self._transaction = transaction or postgres.transaction
		self._connection = connection or postgres.connection

	async def _require_user(self, conn: asyncpg.Connection, user_id: UUID) -> models.User:
		return policies.require_active_user(await self.users.get_user(conn, user_id))

	async def _require_group(self, conn: asyncpg.Connection, group_id: UUID) -> models.Group:
		return policies.require_group(await self.groups.get_group(conn, group_id))

	async def _open_row(
		self,
		conn: asyncpg.Connection,
		group_id: UUID,
		member_id: UUID,
		*,
		event: MembershipEvent,
		inviter_id: Optional[UUID],
		inviter_is_creator: bool,
		updater_id: UUID,
	) -> models.Membership:
		"""Insert an invitation or join request, reusing a terminal row for the pair."""
		existing = await self.repo.get_for_pair(conn, group_id, member_id, for_update=True)
		if existing is not None and not existing.status.is_terminal:
			raise ConflictError("membership_exists")
		transition = MembershipTransition(existing.status if existing else None, event)
		if existing is None:
			membership = await self.repo.insert(
				conn,
				group_id=group_id,
				member_id=member_id,
				inviter_id=inviter_id,
				status=transition.target,
				inviter_is_creator=inviter_is_creator,
				updater_id=updater_id,
			)
			return membership
		membership = await self.repo.reactivate(
			conn,
			existing.id,
			inviter_id=inviter_id,
			status=transition.target,
			inviter_is_creator=inviter_is_creator,
			updater_id=updater_id,
		)
		return membership

	async def _record(self, event: str, membership: models.Membership, actor_id: UUID) -> None:
		audit.inc_membership(event, membership.status.value)
		fields = {
			"membership_id": str(membership.id),
			"group_id": str(membership.group_id),
			"member_id": str(membership.member_id),
			"actor_id": str(actor_id),
			"status": membership.status.value,
		}
		logger.info("membership %s", event, extra=fields)
		await audit.log_membership_event(f"membership.{event}", fields)

	async def create_group(self, creator_id: UUID, title: str, description: str) -> models.Group:
		title, description = policies.ensure_group_fields(title, description)
		transition = MembershipTransition(None, MembershipEvent.CREATE)
		with repo_module.storage_errors("create_group", creator_id):
			async with self._transaction() as conn:
				await self._require_user(conn, creator_id)
				group = await self.repo.insert_group(
					conn,
					title=title,
					description=description,
					creator_id=creator_id,
				)
				membership = await self.repo.insert(
					conn,
					group_id=group.id,
					member_id=creator_id,
					inviter_id=creator_id,
					status=transition.target,
					inviter_is_creator=True,
					updater_id=creator_id,
				)
		audit.inc_group_created()
		await self._record(MembershipEvent.CREATE.value, membership, creator_id)
		return group

	async def invite(self, group_id: UUID, inviter_id: UUID, invitee_id: UUID) -> models.Membership:
		policies.guard_not_self(inviter_id, invitee_id)
		with repo_module.storage_errors("invite_member", group_id, conflict="membership_exists"):
			async with self._transaction() as conn:
				group = await self._require_group(conn, group_id)
				policies.assert_is_creator(group, inviter_id)
				inviter = await self._require_user(conn, inviter_id)
				await self._require_user(conn, invitee_id)
				membership = await self._open_row(
					conn,
					group_id,
					invitee_id,
					event=MembershipEvent.INVITE,
					inviter_id=inviter_id,
					inviter_is_creator=inviter_id == group.creator_id,
					updater_id=inviter_id,
				)
				await self.fanout.group_invitation(conn, membership, group, inviter)
		await self._record(MembershipEvent.INVITE.value, membership, inviter_id)
		return membership

	async def request_join(self, group_id: UUID, requester_id: UUID) -> models.Membership:
		with repo_module.storage_errors("request_join", group_id, conflict="membership_exists"):
			async with self._transaction() as conn:
				group = await self._require_group(conn, group_id)
				requester = await self._require_user(conn, requester_id)
				membership = await self._open_row(
					conn,
					group_id,
					requester_id,
					event=MembershipEvent.REQUEST,
					inviter_id=None,
					inviter_is_creator=False,
					updater_id=requester_id,
				)
				await self.fanout.group_join_request(conn, membership, group, requester)
		await self._record(MembershipEvent.REQUEST.value, membership, requester_id)
		return membership

	async def respond_to_membership(
		self,
		group_id: UUID,
		target_user_id: UUID,
		acting_user_id: UUID,
		decision: MembershipDecision | str,
	) -> models.Membership:
		decision = policies.parse_decision(decision)
		with repo_module.storage_errors("respond_to_membership", group_id):
			async with self._transaction() as conn:
				group = await self._require_group(conn, group_id)
				existing = await self.repo.get_for_pair(conn, group_id, target_user_id, for_update=True)
				if existing is None:
					raise NotFoundError("membership_not_found")
				if not existing.status.is_open:
					raise ConflictError("membership_not_open")
				policies.assert_can_decide(
					existing,
					group,
					acting_user_id=acting_user_id,
					target_user_id=target_user_id,
				)
				transition = MembershipTransition(existing.status, policies.decision_event(decision))
				actor = await self._require_user(conn, acting_user_id)
				membership = await self.repo.update_status(
					conn,
					existing.id,
					status=transition.target,
					updater_id=acting_user_id,
				)
				await self.fanout.membership_decided(
					conn,
					membership,
					group,
					previous=existing.status,
					decision=decision,
					actor=actor,
				)
		await self._record(transition.event.value, membership, acting_user_id)
		return membership

	async def cancel_membership(self, group_id: UUID, member_id: UUID, acting_user_id: UUID) -> models.Membership:
		"""Withdraw an invitation or join request, or leave the group."""
		with repo_module.storage_errors("cancel_membership", group_id):
			async with self._transaction() as conn:
				group = await self._require_group(conn, group_id)
				existing = await self.repo.get_for_pair(conn, group_id, member_id, for_update=True)
				if existing is None:
					raise NotFoundError("membership_not_found")
				policies.assert_can_cancel_membership(existing, group, acting_user_id=acting_user_id)
				transition = MembershipTransition(existing.status, MembershipEvent.CANCEL)
				membership = await self.repo.update_status(
					conn,
					existing.id,
					status=transition.target,
					updater_id=acting_user_id,
				)
				await self.fanout.membership_closed(
					conn,
					membership,
					previous=existing.status,
					updater_id=acting_user_id,
				)
		await self._record(MembershipEvent.CANCEL.value, membership, acting_user_id)
		return membership

	async def list_invitations(self, user_id: UUID) -> list[models.Membership]:
		async with self._connection() as conn:
			return await self.repo.list_for_member(conn, user_id, status=MembershipStatus.INVITED)

	async def list_join_requests(self, group_id: UUID, acting_user_id: UUID) -> list[models.Membership]:
		async with self._connection() as conn:
			group = await self._require_group(conn, group_id)
			policies.assert_is_creator(group, acting_user_id)
			return await self.repo.list_for_group(conn, group_id, status=MembershipStatus.REQUESTED)

	async def list_members(self, group_id: UUID) -> list[models.Membership]:
		async with self._connection() as conn:
			await self._require_group(conn, group_id)
			return await self.repo.list_for_group(conn, group_id, status=MembershipStatus.ACCEPTED)

	async def is_member(self, group_id: UUID, user_id: UUID) -> bool:
		async with self._connection() as conn:
			membership = await self.repo.get_for_pair(conn, group_id, user_id)
		return membership is not None and membership.status == MembershipStatus.ACCEPTED
