"""Error translation helpers for the social core API."""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from socnet.domain import exceptions

logger = logging.getLogger(__name__)


def to_http_error(exc: Exception) -> HTTPException:
	"""Translate domain exceptions to FastAPI HTTP errors."""
	if isinstance(exc, exceptions.StorageError):
		logger.error(
			"storage error surfaced to client",
			extra={"operation": exc.operation, "entity_id": exc.entity_id},
		)
		return HTTPException(status_code=exc.status_code, detail=exc.detail)
	if isinstance(exc, exceptions.SocialError):
		return HTTPException(status_code=exc.status_code, detail=exc.detail)
	return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
