"""Unit tests for the Redis-backed quota repository and store, against mocked clients."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from app.services.quota_repository import QUICK_QUERIES, QuotaRepository, usage_key
from app.services.redis_store import RedisTenantStore
from app.services.tenant_store import SlugTaken


class TestRedisQuotaRepository:
    """Test Lua-script based quota operations."""

    @pytest.mark.asyncio
    async def test_check_and_consume_runs_script(self, clock):
        """The atomic script gets the period key, limit and a ttl."""
        redis = MagicMock()
        redis.eval = AsyncMock(return_value=[1, 3])
        repo = QuotaRepository(redis)

        allowed, used = await repo.check_and_consume(9, QUICK_QUERIES, 10, clock())

        assert (allowed, used) == (True, 3)
        script, numkeys, key, limit, ttl = redis.eval.await_args.args
        assert script == QuotaRepository.CHECK_AND_CONSUME
        assert key == usage_key(9, QUICK_QUERIES, clock())
        assert limit == 10
        assert ttl > 0

    @pytest.mark.asyncio
    async def test_denied_by_script(self, clock):
        """A zero flag from the script means refused."""
        redis = MagicMock()
        redis.eval = AsyncMock(return_value=[0, 10])

        allowed, used = await QuotaRepository(redis).check_and_consume(9, QUICK_QUERIES, 10, clock())

        assert (allowed, used) == (False, 10)

    @pytest.mark.asyncio
    async def test_redis_failure_fails_closed(self, clock):
        """Redis errors surface instead of granting quota."""
        redis = MagicMock()
        redis.eval = AsyncMock(side_effect=ConnectionError("down"))

        with pytest.raises(RuntimeError, match="redis_unavailable"):
            await QuotaRepository(redis).check_and_consume(9, QUICK_QUERIES, 10, clock())

    @pytest.mark.asyncio
    async def test_no_client_fails_closed(self, clock):
        """Without a client nothing is granted."""
        with pytest.raises(RuntimeError):
            await QuotaRepository(None).get_usage(9, clock())

    @pytest.mark.asyncio
    async def test_get_usage_parses_counters(self, clock):
        """Stored strings are read back as ints; garbage reads as 0."""
        redis = MagicMock()
        redis.get = AsyncMock(side_effect=["4", "oops"])

        usage = await QuotaRepository(redis).get_usage(9, clock())

        assert usage.quick_queries_used == 4
        assert usage.studies_opened == 0


class TestRedisTenantStore:
    """Test key layout of the Redis store."""

    @pytest.mark.asyncio
    async def test_duplicate_slug_raises(self, tenant):
        """The slug index is claimed with SET NX."""
        redis = MagicMock()
        redis.incr = AsyncMock(return_value=5)
        redis.set = AsyncMock(return_value=None)

        with pytest.raises(SlugTaken):
            await RedisTenantStore(redis).create_tenant(tenant)

        redis.set.assert_awaited_once_with("tenant_slug:rede-teste", 5, nx=True)

    @pytest.mark.asyncio
    async def test_create_tenant_assigns_sequence_id(self, tenant):
        """New tenants get the next id from the sequence."""
        redis = MagicMock()
        redis.incr = AsyncMock(return_value=5)
        redis.set = AsyncMock(return_value=True)

        created = await RedisTenantStore(redis).create_tenant(tenant)

        assert created.id == 5
        assert redis.set.await_args_list[1].args[0] == "tenant:5"

    @pytest.mark.asyncio
    async def test_session_lookup(self):
        """Sessions map to user ids; unparseable values are ignored."""
        redis = MagicMock()
        redis.get = AsyncMock(side_effect=["7", "not-an-id", None])
        store = RedisTenantStore(redis)

        assert await store.get_session_user_id("s1") == 7
        assert await store.get_session_user_id("s2") is None
        assert await store.get_session_user_id("s3") is None

    @pytest.mark.asyncio
    async def test_quick_query_history_reads_newest_first(self):
        """History pages come from ZREVRANGE over the tenant index."""
        redis = MagicMock()
        redis.zrevrange = AsyncMock(return_value=[])
        redis.mget = AsyncMock()

        rows = await RedisTenantStore(redis).list_quick_queries(100, limit=20, offset=40)

        assert rows == []
        redis.zrevrange.assert_awaited_once_with("quick_queries:100", 40, 59)
        redis.mget.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_list_tenants_walks_the_id_sequence(self, tenant):
        """All ids up to the sequence are loaded; gaps are skipped."""
        redis = MagicMock()
        redis.get = AsyncMock(return_value="3")
        redis.mget = AsyncMock(return_value=[tenant.model_dump_json(), None, None])

        tenants = await RedisTenantStore(redis).list_tenants()

        assert [t.slug for t in tenants] == ["rede-teste"]
        redis.mget.assert_awaited_once_with(["tenant:1", "tenant:2", "tenant:3"])

    @pytest.mark.asyncio
    async def test_delete_session(self):
        """Logging out removes the session key."""
        redis = MagicMock()
        redis.delete = AsyncMock(return_value=1)

        await RedisTenantStore(redis).delete_session("s1")

        redis.delete.assert_awaited_once_with("session:s1")
