import json
from unittest.mock import AsyncMock

import pytest

from conftest import RecordingSleep, ScriptedTransport, logo_hit, member, ok, page
from connsync.core.services.records_service import RECORDS_CACHE_KEY, RecordsService, logo_cache_key
from connsync.domain.interfaces.transport import TransportNetworkError
from connsync.domain.models.errors import CacheError, ClassifiedError, ErrorKind
from connsync.domain.models.stats import HealthStatus
from connsync.infrastructure.api.directory_client import DirectoryClient
from connsync.infrastructure.cache.ttl_cache import DEFAULT_TTL_SECONDS, TTLCache
from connsync.infrastructure.resilience.request_queue import RequestQueue


@pytest.fixture
def make_service(classifier, store, clock, rng):
    """Wires a RecordsService over a scripted transport, a real queue and a real cache."""

    def factory(script, queue_retries=0, **kwargs):
        transport = ScriptedTransport(script)
        queue = RequestQueue(transport, classifier, min_delay=0.0, max_delay=0.0, max_retries=queue_retries,
                             sleep=RecordingSleep(clock), clock=clock, rng=rng)
        cache = TTLCache(store, clock=clock)
        client = DirectoryClient(queue, base_url="https://api.example")
        service_sleep = RecordingSleep(clock)
        kwargs.setdefault("batch_size", 2)
        service = RecordsService(client, queue, cache, classifier, sleep=service_sleep, rng=rng, **kwargs)
        return service, transport, cache, service_sleep

    return factory


@pytest.mark.asyncio
async def test_pages_until_an_empty_batch_and_caches_the_aggregate(make_service, store):
    service, transport, cache, _ = make_service({
        "records[0:2]": [ok(page(member("1"), member("2")))],
        "records[2:4]": [ok(page(member("3")))],
        "records[4:6]": [ok(page())],
    })

    records = await service.get_all()

    assert [r.id for r in records] == ["1", "2", "3"]
    assert [c.label for c in transport.calls] == ["records[0:2]", "records[2:4]", "records[4:6]"]
    envelope = json.loads(store.get(cache.storage_key(RECORDS_CACHE_KEY)))
    assert envelope["ttl"] == DEFAULT_TTL_SECONDS
    assert [item["id"] for item in await cache.get(RECORDS_CACHE_KEY)] == ["1", "2", "3"]
    await service.close()


@pytest.mark.asyncio
async def test_second_call_is_served_from_cache(make_service):
    service, transport, _, _ = make_service({
        "records[0:2]": [ok(page(member("1")))],
        "records[2:4]": [ok(page())],
    })

    first = await service.get_all()
    calls = len(transport.calls)
    second = await service.get_all()

    assert second == first
    assert len(transport.calls) == calls
    await service.close()


@pytest.mark.asyncio
async def test_auth_failure_aborts_immediately(make_service):
    service, transport, _, service_sleep = make_service({"*": [ok({}, status=401)]}, queue_retries=3)

    with pytest.raises(ClassifiedError) as excinfo:
        await service.get_all()

    assert excinfo.value.kind is ErrorKind.AUTH
    assert len(transport.calls) == 1
    assert service_sleep.calls == []
    await service.close()


@pytest.mark.asyncio
async def test_recoverable_page_failure_is_retried_with_growing_pause(make_service):
    service, transport, _, service_sleep = make_service({
        "records[0:2]": [TransportNetworkError("reset"), TransportNetworkError("reset"), ok(page(member("1")))],
        "records[2:4]": [ok(page())],
    }, failure_base_delay=2.0, batch_delay=(0.0, 0.0))

    records = await service.get_all()

    assert [r.id for r in records] == ["1"]
    assert service_sleep.calls[:2] == [2.0, 4.0]
    await service.close()


@pytest.mark.asyncio
async def test_gives_up_after_consecutive_failures(make_service):
    service, transport, _, _ = make_service({"*": [TransportNetworkError("down")]}, max_consecutive_failures=3)

    with pytest.raises(ClassifiedError) as excinfo:
        await service.get_all()

    assert excinfo.value.kind is ErrorKind.NETWORK
    assert "after 3 consecutive failures" in excinfo.value.message
    assert len(transport.calls) == 3
    await service.close()


@pytest.mark.asyncio
async def test_empty_directory_is_an_error_and_not_cached(make_service, store):
    service, _, cache, _ = make_service({"*": [ok(page())]})

    with pytest.raises(ClassifiedError) as excinfo:
        await service.get_all()

    assert excinfo.value.kind is ErrorKind.NETWORK
    assert "session credentials" in excinfo.value.message
    assert store.get(cache.storage_key(RECORDS_CACHE_KEY)) is None
    await service.close()


@pytest.mark.asyncio
async def test_stops_at_max_records(make_service):
    service, transport, _, _ = make_service({"*": [ok(page(member("a"), member("b")))]}, max_records=3)

    records = await service.get_all()

    assert len(records) == 4
    assert len(transport.calls) == 2
    await service.close()


@pytest.mark.asyncio
async def test_cache_read_failure_falls_back_to_fetch(make_service, classifier):
    service, transport, _, _ = make_service({
        "records[0:2]": [ok(page(member("1")))],
        "records[2:4]": [ok(page())],
    })
    service.cache = AsyncMock(spec=TTLCache)
    service.cache.get.side_effect = CacheError("unreadable")

    records = await service.get_all()

    assert [r.id for r in records] == ["1"]
    assert classifier.get_error_log()[0].kind is ErrorKind.CACHE
    await service.close()


@pytest.mark.asyncio
async def test_refresh_bypasses_cache(make_service):
    service, transport, _, _ = make_service({
        "records[0:2]": [ok(page(member("old"))), ok(page(member("new")))],
        "records[2:4]": [ok(page())],
    })
    await service.get_all()

    refreshed = await service.refresh()

    assert [r.id for r in refreshed] == ["new"]
    assert [r.id for r in await service.get_all()] == ["new"]
    await service.close()


@pytest.mark.asyncio
async def test_background_enrichment_attaches_logos(make_service):
    service, transport, cache, _ = make_service({
        "records[0:2]": [ok(page(member("1", occupation="Engineer at Acme"), member("2", occupation="CTO at Acme")))],
        "records[2:4]": [ok(page(member("3", occupation="Founder at Nowhere")))],
        "records[4:6]": [ok(page())],
        "logo[Acme]": [ok(logo_hit("https://logo/", "acme.png"))],
        "logo[Nowhere]": [ok({"elements": []})],
    })

    await service.get_all()
    await service.wait_for_enrichment()
    records = await service.get_records_with_logos()

    lookups = [c.label for c in transport.calls if c.label.startswith("logo")]
    assert sorted(lookups) == ["logo[Acme]", "logo[Nowhere]"]
    assert await cache.get(logo_cache_key("Acme")) == "https://logo/acme.png"
    assert await cache.get(logo_cache_key("Nowhere")) is None
    assert [r.affiliation_logo_ref for r in records] == ["https://logo/acme.png", "https://logo/acme.png", None]
    await service.close()


@pytest.mark.asyncio
async def test_enrichment_skips_cached_logos_and_survives_failures(make_service):
    service, transport, cache, _ = make_service({
        "records[0:2]": [ok(page(member("1", occupation="Dev at Cached"), member("2", occupation="Dev at Broken")))],
        "records[2:4]": [ok(page())],
        "logo[Broken]": [TransportNetworkError("down")],
    })
    await cache.set(logo_cache_key("Cached"), "https://logo/cached.png")

    await service.get_all()
    await service.wait_for_enrichment()

    lookups = [c.label for c in transport.calls if c.label.startswith("logo")]
    assert lookups == ["logo[Broken]"]
    assert await cache.get(logo_cache_key("Broken")) is None
    await service.close()


@pytest.mark.asyncio
async def test_health_check_reports_critical_errors(make_service):
    service, _, _, _ = make_service({"*": [ok({}, status=403)]})

    healthy = await service.perform_health_check()
    with pytest.raises(ClassifiedError):
        await service.get_all()
    report = await service.perform_health_check()

    assert healthy.status is HealthStatus.HEALTHY
    assert report.status is HealthStatus.CRITICAL
    assert any("critical errors" in issue for issue in report.issues)
    assert "queue" in report.stats
    await service.close()


@pytest.mark.asyncio
async def test_clear_cache_failure_is_classified(make_service):
    service, _, _, _ = make_service({})
    service.cache = AsyncMock(spec=TTLCache)
    service.cache.clear.side_effect = CacheError("locked")

    with pytest.raises(ClassifiedError) as excinfo:
        await service.clear_cache()
    assert excinfo.value.kind is ErrorKind.CACHE
    await service.close()


@pytest.mark.asyncio
async def test_cache_stats_error_returns_empty_stats(make_service):
    service, _, _, _ = make_service({})
    service.cache = AsyncMock(spec=TTLCache)
    service.cache.stats.side_effect = CacheError("locked")

    stats = await service.get_cache_stats()

    assert stats.total_items == 0
    await service.close()


@pytest.mark.asyncio
async def test_classified_transport_error_is_logged_once(make_service, classifier):
    expired = classifier.auth_error("session expired")
    service, transport, _, _ = make_service({"*": [expired]}, queue_retries=3)

    with pytest.raises(ClassifiedError) as excinfo:
        await service.get_all()

    assert excinfo.value.kind is ErrorKind.AUTH
    assert len(transport.calls) == 1
    assert len(classifier.get_error_log()) == 1
    assert len(classifier.get_critical_errors()) == 1
    assert classifier.analyze().critical_errors == 1
    await service.close()
