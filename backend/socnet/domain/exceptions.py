"""Error taxonomy for relationship, membership, notification and content operations."""

from __future__ import annotations

from typing import Any

from fastapi import status

if hasattr(status, "HTTP_422_UNPROCESSABLE_CONTENT"):
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_CONTENT
else:  # pragma: no cover - older Starlette builds
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_ENTITY


class SocialError(Exception):
	"""Base class for social core errors."""

	status_code: int = status.HTTP_400_BAD_REQUEST
	detail: str = "social_error"

	def __init__(self, detail: str | None = None) -> None:
		super().__init__(detail or self.detail)
		if detail:
			self.detail = detail


class NotFoundError(SocialError):
	"""Referenced relationship, membership, notification, post, user or group is absent."""

	status_code = status.HTTP_404_NOT_FOUND
	detail = "not_found"


class ConflictError(SocialError):
	"""Duplicate live edge or a decision on a row that is no longer open."""

	status_code = status.HTTP_409_CONFLICT
	detail = "conflict"


class InvalidStateError(ConflictError):
	"""Requested transition is not defined for the row's current status."""

	detail = "invalid_state"


class ForbiddenError(SocialError):
	"""Actor's role does not allow the operation."""

	status_code = status.HTTP_403_FORBIDDEN
	detail = "forbidden"


class UnauthorizedError(ForbiddenError):
	"""Actor is not the party entitled to act on the target entity."""

	detail = "unauthorized"


class ValidationError(SocialError):
	"""Invalid input that schema validation upstream does not cover."""

	status_code = _HTTP_422
	detail = "validation_error"


class SelfReferenceError(ValidationError):
	detail = "self_reference"


class StorageError(SocialError):
	"""Opaque backend failure, wrapped with the operation and entity it concerned."""

	status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
	detail = "storage_error"

	def __init__(self, operation: str, entity_id: Any = None) -> None:
		super().__init__(f"storage_error:{operation}")
		self.operation = operation
		self.entity_id = str(entity_id) if entity_id is not None else None
		self.detail = "storage_error"

	def __str__(self) -> str:
		if self.entity_id:
			return f"{self.operation} failed for {self.entity_id}"
		return f"{self.operation} failed"
