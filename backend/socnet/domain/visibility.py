"""Visibility rules for posts and comments, and the per-viewer feed."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional
from uuid import UUID

import asyncpg

from socnet.domain import models, policies
from socnet.domain import repo as repo_module
from socnet.domain.exceptions import ForbiddenError, NotFoundError, ValidationError
from socnet.domain.models import MembershipStatus, PostPrivacy
from socnet.infra import postgres
from socnet.obs import metrics as obs_metrics
from socnet.settings import settings

logger = logging.getLogger(__name__)


class VisibilityResolver:
	"""Decide who may see which post or comment.

	The poster always sees their own post. Anyone else needs the post to be
	active and either public or carrying them on its allow-list. Semi-private
	posts are gated exactly like private ones.
	"""

	def __init__(
		self,
		*,
		repository: repo_module.PostRepository | None = None,
		users: repo_module.UserDirectory | None = None,
		groups: repo_module.GroupDirectory | None = None,
		memberships: repo_module.MembershipRepository | None = None,
		transaction: Callable | None = None,
		connection: Callable | None = None,
	) -> None:
		self.repo = repository or repo_module.PostRepository()
		self.users = users or repo_module.UserDirectory()
		self.groups = groups or repo_module.GroupDirectory()
		self.memberships = memberships or repo_module.MembershipRepository()
		self._transaction = transaction or postgres.transaction
		self._connection = connection or postgres.connection

	async def _can_view(self, conn: asyncpg.Connection, viewer_id: UUID, post: models.Post) -> bool:
		if post.poster_id == viewer_id:
			return True
		if not post.is_active:
			obs_metrics.inc_visibility_denial("post", "inactive")
			return False
		if post.privacy == PostPrivacy.PUBLIC:
			return True
		if await self.repo.is_viewer(conn, post.id, viewer_id):
			return True
		obs_metrics.inc_visibility_denial("post", "not_allowed")
		return False

	async def _can_view_comment(
		self,
		conn: asyncpg.Connection,
		viewer_id: UUID,
		comment: models.Comment,
		post: models.Post,
	) -> bool:
		if comment.commenter_id == viewer_id:
			return True
		if not comment.is_active:
			obs_metrics.inc_visibility_denial("comment", "inactive")
			return False
		return await self._can_view(conn, viewer_id, post)

	async def can_view(self, viewer_id: UUID, post: models.Post) -> bool:
		async with self._connection() as conn:
			return await self._can_view(conn, viewer_id, post)

	async def can_view_comment(self, viewer_id: UUID, comment: models.Comment, post: models.Post) -> bool:
		if comment.post_id != post.id:
			raise ValidationError("comment_post_mismatch")
		async with self._connection() as conn:
			return await self._can_view_comment(conn, viewer_id, comment, post)

	async def get_post(self, viewer_id: UUID, post_id: UUID) -> models.Post:
		async with self._connection() as conn:
			post = await self.repo.get_post(conn, post_id)
			if post is None or not await self._can_view(conn, viewer_id, post):
				raise NotFoundError("post_not_found")
		return post

	async def list_comments(self, viewer_id: UUID, post_id: UUID) -> list[models.Comment]:
		async with self._connection() as conn:
			post = await self.repo.get_post(conn, post_id)
			if post is None or not await self._can_view(conn, viewer_id, post):
				raise NotFoundError("post_not_found")
			comments = await self.repo.list_comments(conn, post_id)
			return [
				comment
				for comment in comments
				if comment.commenter_id == viewer_id or comment.is_active
			]

	async def get_comment(self, viewer_id: UUID, comment_id: UUID) -> models.Comment:
		async with self._connection() as conn:
			comment = await self.repo.get_comment(conn, comment_id)
			post = await self.repo.get_post(conn, comment.post_id) if comment else None
			if post is None or not await self._can_view_comment(conn, viewer_id, comment, post):
				raise NotFoundError("comment_not_found")
		return comment

	async def feed_for(
		self,
		viewer_id: UUID,
		*,
		limit: Optional[int] = None,
		after: Optional[str] = None,
	) -> tuple[list[models.Post], Optional[str]]:
		"""Return one page of the viewer's feed and the cursor for the next page."""
		if limit is not None and limit <= 0:
			raise ValidationError("invalid_limit")
		page_size = min(limit or settings.feed_page_limit, settings.feed_page_limit)
		cursor = repo_module.decode_cursor(after) if after else None
		async with self._connection() as conn:
			posts = await self.repo.list_feed(conn, viewer_id, limit=page_size + 1, after=cursor)
		next_cursor = None
		if len(posts) > page_size:
			posts = posts[:page_size]
			last = posts[-1]
			next_cursor = repo_module.encode_cursor((last.created_at, last.id))
		return posts, next_cursor

	async def create_post(
		self,
		poster_id: UUID,
		content: str,
		privacy: PostPrivacy | str,
		*,
		viewer_ids: Iterable[UUID] = (),
		group_id: Optional[UUID] = None,
	) -> models.Post:
		content = policies.ensure_post_content(content, max_length=settings.post_max_length)
		privacy = policies.parse_post_privacy(privacy)
		viewers = policies.normalise_viewers(poster_id, privacy, viewer_ids)
		with repo_module.storage_errors("create_post", poster_id):
			async with self._transaction() as conn:
				policies.require_active_user(await self.users.get_user(conn, poster_id))
				for viewer_id in viewers:
					if await self.users.get_user(conn, viewer_id) is None:
						raise ValidationError("unknown_viewer")
				if group_id is not None:
					policies.require_group(await self.groups.get_group(conn, group_id))
					membership = await self.memberships.get_for_pair(conn, group_id, poster_id)
					if membership is None or membership.status != MembershipStatus.ACCEPTED:
						raise ForbiddenError("membership_required")
				post = await self.repo.insert_post(
					conn,
					poster_id=poster_id,
					content=content,
					privacy=privacy,
					group_id=group_id,
				)
				await self.repo.add_viewers(conn, post.id, viewers)
		logger.info(
			"post created",
			extra={"post_id": str(post.id), "poster_id": str(poster_id), "privacy": privacy.value, "viewers": len(viewers)},
		)
		return post
