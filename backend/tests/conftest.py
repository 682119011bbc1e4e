import sys
from pathlib import Path

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from socnet.infra import postgres
from socnet.settings import settings


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from socnet.infra.redis import redis_client, set_redis_client
	original = redis_client._client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Keep audit streams on and page limits at their defaults for every test."""
	original_env = settings.environment
	original_audit = settings.audit_streams_enabled
	settings.environment = "dev"
	settings.audit_streams_enabled = True
	try:
		yield
	finally:
		settings.environment = original_env
		settings.audit_streams_enabled = original_audit
