"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter

FOLLOW_REQUESTS = Counter(
	"socnet_follow_requests_total",
	"Follow requests processed by resulting status",
	["result"],
)

FOLLOW_REQUEST_REJECTS = Counter(
	"socnet_follow_request_rejects_total",
	"Follow requests rejected before any write",
	["reason"],
)

FOLLOW_RESPONSES = Counter(
	"socnet_follow_responses_total",
	"Responses to pending follow requests",
	["action"],
)

FOLLOW_CANCELS = Counter(
	"socnet_follow_cancels_total",
	"Follow edges cancelled by the follower",
)

MEMBERSHIP_TRANSITIONS = Counter(
	"socnet_membership_transitions_total",
	"Group membership transitions by event and resulting status",
	["event", "status"],
)

GROUPS_CREATED = Counter(
	"socnet_groups_created_total",
	"Groups created",
)

NOTIFICATIONS_WRITTEN = Counter(
	"socnet_notifications_written_total",
	"Notifications created by the fanout",
	["action"],
)

NOTIFICATIONS_ADVANCED = Counter(
	"socnet_notifications_advanced_total",
	"Notification rows moved forward by status",
	["status"],
)

NOTIFICATION_READS = Counter(
	"socnet_notification_reads_total",
	"Single notification mark-read attempts",
	["result"],
)

VISIBILITY_DENIALS = Counter(
	"socnet_visibility_denials_total",
	"Content reads denied by the visibility resolver",
	["subject", "reason"],
)


def inc_follow_request(result: str) -> None:
	FOLLOW_REQUESTS.labels(result=result).inc()


def inc_follow_request_reject(reason: str) -> None:
	FOLLOW_REQUEST_REJECTS.labels(reason=reason).inc()


def inc_follow_response(action: str) -> None:
	FOLLOW_RESPONSES.labels(action=action).inc()


def inc_follow_cancel() -> None:
	FOLLOW_CANCELS.inc()


def inc_membership_transition(event: str, status: str) -> None:
	MEMBERSHIP_TRANSITIONS.labels(event=event, status=status).inc()


def inc_group_created() -> None:
	GROUPS_CREATED.inc()


def inc_notification_written(action: str) -> None:
	NOTIFICATIONS_WRITTEN.labels(action=action).inc()


def inc_notifications_advanced(status: str, count: int = 1) -> None:
	if count > 0:
		NOTIFICATIONS_ADVANCED.labels(status=status).inc(count)


def inc_notification_read(result: str) -> None:
	NOTIFICATION_READS.labels(result=result).inc()


def inc_visibility_denial(subject: str, reason: str) -> None:
	VISIBILITY_DENIALS.labels(subject=subject, reason=reason).inc()
