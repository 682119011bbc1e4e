from datetime import datetime, timezone
from uuid import uuid4

import pytest

from socnet.domain import models, policies
from socnet.domain.exceptions import (
	ForbiddenError,
	InvalidStateError,
	NotFoundError,
	SelfReferenceError,
	ValidationError,
)
from socnet.domain.models import (
	MembershipStatus,
	NotificationStatus,
	PostPrivacy,
	RelationshipStatus,
	UserPrivacy,
	UserStatus,
)
from socnet.domain.policies import FollowEvent, FollowTransition, MembershipEvent, MembershipTransition


@pytest.mark.parametrize(
	"current, event, target",
	[
		(None, FollowEvent.REQUEST_PUBLIC, RelationshipStatus.ACCEPTED),
		(None, FollowEvent.REQUEST_PRIVATE, RelationshipStatus.PENDING),
		(RelationshipStatus.DECLINED, FollowEvent.REQUEST_PRIVATE, RelationshipStatus.PENDING),
		(RelationshipStatus.CANCELLED, FollowEvent.REQUEST_PUBLIC, RelationshipStatus.ACCEPTED),
		(RelationshipStatus.PENDING, FollowEvent.ACCEPT, RelationshipStatus.ACCEPTED),
		(RelationshipStatus.PENDING, FollowEvent.DECLINE, RelationshipStatus.DECLINED),
		(RelationshipStatus.ACCEPTED, FollowEvent.CANCEL, RelationshipStatus.CANCELLED),
	],
)
def test_follow_transitions(current, event, target):
	assert FollowTransition(current, event).target == target


@pytest.mark.parametrize(
	"current, event",
	[
		(RelationshipStatus.ACCEPTED, FollowEvent.ACCEPT),
		(RelationshipStatus.DECLINED, FollowEvent.CANCEL),
		(RelationshipStatus.PENDING, FollowEvent.REQUEST_PRIVATE),
		(None, FollowEvent.CANCEL),
	],
)
def test_undefined_follow_transitions_are_rejected(current, event):
	with pytest.raises(InvalidStateError) as exc_info:
		FollowTransition(current, event)
	assert exc_info.value.detail.endswith(event.value)


def test_membership_transition_table_covers_every_open_state():
	assert MembershipTransition(None, MembershipEvent.CREATE).target == MembershipStatus.ACCEPTED
	for status in (MembershipStatus.INVITED, MembershipStatus.REQUESTED):
		assert MembershipTransition(status, MembershipEvent.ACCEPT).target == MembershipStatus.ACCEPTED
		assert MembershipTransition(status, MembershipEvent.DECLINE).target == MembershipStatus.DECLINED
	with pytest.raises(InvalidStateError):
		MembershipTransition(MembershipStatus.ACCEPTED, MembershipEvent.ACCEPT)
	with pytest.raises(InvalidStateError):
		MembershipTransition(MembershipStatus.DECLINED, MembershipEvent.CANCEL)


def test_notification_status_only_moves_forward():
	assert policies.statuses_before(NotificationStatus.READ) == [NotificationStatus.UNREAD]
	assert policies.statuses_before(NotificationStatus.INACTIVE) == [
		NotificationStatus.UNREAD,
		NotificationStatus.READ,
	]
	assert policies.statuses_before(NotificationStatus.UNREAD) == []
	assert policies.is_forward(NotificationStatus.INACTIVE, NotificationStatus.READ) is False


def test_request_event_follows_target_privacy():
	assert policies.follow_request_event(UserPrivacy.PUBLIC) == FollowEvent.REQUEST_PUBLIC
	assert policies.follow_request_event(UserPrivacy.PRIVATE) == FollowEvent.REQUEST_PRIVATE


def test_parsers_reject_unknown_values():
	with pytest.raises(ValidationError):
		policies.parse_follow_action("ignore")
	with pytest.raises(ValidationError):
		policies.parse_decision("accept")
	assert policies.parse_post_privacy("semi-private") == PostPrivacy.SEMI_PRIVATE


def test_guard_not_self():
	user_id = uuid4()
	with pytest.raises(SelfReferenceError):
		policies.guard_not_self(user_id, user_id)
	policies.guard_not_self(user_id, uuid4())


def test_require_active_user():
	user = models.User(id=uuid4(), handle="gone", privacy=UserPrivacy.PUBLIC, status=UserStatus.INACTIVE)
	with pytest.raises(NotFoundError):
		policies.require_active_user(user)
	with pytest.raises(NotFoundError):
		policies.require_active_user(None)


def _membership(status: MembershipStatus, member_id, inviter_id=None) -> models.Membership:
	now = datetime.now(timezone.utc)
	return models.Membership(
		id=uuid4(),
		group_id=uuid4(),
		member_id=member_id,
		inviter_id=inviter_id,
		status=status,
		created_at=now,
		updated_at=now,
		updater_id=member_id,
	)


def _group(creator_id) -> models.Group:
	return models.Group(
		id=uuid4(),
		title="Group",
		description="About",
		creator_id=creator_id,
		created_at=datetime.now(timezone.utc),
	)


def test_assert_can_decide_roles():
	creator, member = uuid4(), uuid4()
	group = _group(creator)
	requested = _membership(MembershipStatus.REQUESTED, member)
	invited = _membership(MembershipStatus.INVITED, member, inviter_id=creator)

	policies.assert_can_decide(requested, group, acting_user_id=creator, target_user_id=member)
	policies.assert_can_decide(invited, group, acting_user_id=member, target_user_id=member)
	with pytest.raises(ForbiddenError):
		policies.assert_can_decide(requested, group, acting_user_id=member, target_user_id=member)
	with pytest.raises(ForbiddenError):
		policies.assert_can_decide(invited, group, acting_user_id=creator, target_user_id=member)


def test_normalise_viewers():
	poster, viewer = uuid4(), uuid4()
	assert policies.normalise_viewers(poster, PostPrivacy.PRIVATE, [viewer, poster, viewer]) == [viewer]
	assert policies.normalise_viewers(poster, PostPrivacy.PUBLIC, []) == []
	with pytest.raises(ValidationError):
		policies.normalise_viewers(poster, PostPrivacy.PUBLIC, [viewer])


def test_post_content_bounds():
	assert policies.ensure_post_content("  hi  ", max_length=3000) == "hi"
	assert len(policies.ensure_post_content("x" * 3000, max_length=3000)) == 3000
	with pytest.raises(ValidationError):
		policies.ensure_post_content("x" * 3001, max_length=3000)
