"""Social core domain exports."""

from . import audit, policies, repo  # noqa: F401
from .exceptions import (  # noqa: F401
	ConflictError,
	ForbiddenError,
	InvalidStateError,
	NotFoundError,
	SelfReferenceError,
	SocialError,
	StorageError,
	UnauthorizedError,
	ValidationError,
)
from .memberships import MembershipService  # noqa: F401
from .notifications import NotificationFanout, NotificationService  # noqa: F401
from .relationships import RelationshipService  # noqa: F401
from .visibility import VisibilityResolver  # noqa: F401
