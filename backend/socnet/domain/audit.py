"""Audit helpers for follow and membership lifecycle events."""

from __future__ import annotations

import logging
from typing import Dict

from redis.exceptions import RedisError

from socnet.infra.redis import redis_client
from socnet.obs import metrics as obs_metrics
from socnet.settings import settings

logger = logging.getLogger(__name__)

RELATIONSHIP_STREAM = "x:relationships.events"
MEMBERSHIP_STREAM = "x:memberships.events"


async def _append(stream: str, event: str, fields: Dict[str, str]) -> None:
	if not settings.audit_streams_enabled:
		return
	payload = {"event": event, **{key: str(value) for key, value in fields.items() if value is not None}}
	try:
		await redis_client.xadd(stream, payload)
	except RedisError:
		# Transition already committed.
		logger.warning("audit append failed", extra={"stream": stream, "event": event}, exc_info=True)


async def log_relationship_event(event: str, fields: Dict[str, str]) -> None:
	await _append(RELATIONSHIP_STREAM, event, fields)


async def log_membership_event(event: str, fields: Dict[str, str]) -> None:
	await _append(MEMBERSHIP_STREAM, event, fields)


def inc_follow_request(result: str) -> None:
	obs_metrics.inc_follow_request(result)


def inc_follow_reject(reason: str) -> None:
	obs_metrics.inc_follow_request_reject(reason)


def inc_follow_response(action: str) -> None:
	obs_metrics.inc_follow_response(action)


def inc_follow_cancel() -> None:
	obs_metrics.inc_follow_cancel()


def inc_membership(event: str, status: str) -> None:
	obs_metrics.inc_membership_transition(event, status)


def inc_group_created() -> None:
	obs_metrics.inc_group_created()
