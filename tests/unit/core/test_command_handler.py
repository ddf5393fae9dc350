import pytest
from unittest.mock import AsyncMock, MagicMock

from connsync.core.command_handler import CommandHandler
from connsync.core.services.health_monitor import HealthMonitor
from connsync.core.services.records_service import RecordsService
from connsync.domain.models.errors import ErrorKind
from connsync.domain.models.records import Record
from connsync.domain.models.stats import HealthReport, HealthStatus, MaintenanceReport, QueueStats
from connsync.infrastructure.cache.ttl_cache import TTLCache
from connsync.infrastructure.resilience.request_queue import RequestQueue


@pytest.fixture
def mock_records_service():
    service = AsyncMock(spec=RecordsService)
    service.perform_health_check.return_value = HealthReport()
    return service


@pytest.fixture
def mock_queue():
    return MagicMock(spec=RequestQueue)


@pytest.fixture
def mock_monitor():
    return AsyncMock(spec=HealthMonitor)


@pytest.fixture
def command_handler(mock_records_service, classifier, mock_queue, mock_monitor):
    """Fixture to create CommandHandler with mocked services."""
    return CommandHandler(
        mock_records_service,
        classifier,
        AsyncMock(spec=TTLCache),
        mock_queue,
        monitor=mock_monitor,
    )


@pytest.mark.asyncio
async def test_get_records_success(command_handler, mock_records_service):
    records = [Record(id="1", display_name="Ada")]
    mock_records_service.get_records_with_logos.return_value = records

    result = await command_handler.get_records(force_refresh=True)

    assert result.ok
    assert result.value == records
    mock_records_service.get_records_with_logos.assert_awaited_once_with(True)


@pytest.mark.asyncio
async def test_get_records_without_logos(command_handler, mock_records_service):
    mock_records_service.get_all.return_value = []

    await command_handler.get_records(with_logos=False)

    mock_records_service.get_all.assert_awaited_once_with(False)
    mock_records_service.get_records_with_logos.assert_not_called()


@pytest.mark.asyncio
async def test_classified_errors_pass_through(command_handler, mock_records_service, classifier):
    error = classifier.auth_error("401")
    mock_records_service.refresh.side_effect = error

    result = await command_handler.refresh()

    assert not result.ok
    assert result.error is error


@pytest.mark.asyncio
async def test_unexpected_errors_become_unknown(command_handler, mock_records_service):
    mock_records_service.get_records_with_logos.side_effect = RuntimeError("kaboom")

    result = await command_handler.get_records()

    assert result.error.kind is ErrorKind.UNKNOWN
    assert result.error.message == "kaboom"
    assert result.error.context == {"operation": "get_records"}


@pytest.mark.asyncio
async def test_clear_cache(command_handler, mock_records_service):
    result = await command_handler.clear_cache()

    assert result.ok
    mock_records_service.clear_cache.assert_awaited_once()


def test_queue_stats_and_error_logs(command_handler, mock_queue, classifier):
    mock_queue.get_stats.return_value = QueueStats(total_requests=4)
    classifier.classify(ErrorKind.NETWORK, "flaky")
    classifier.classify(ErrorKind.PERMISSION, "denied")

    assert command_handler.get_queue_stats().total_requests == 4
    assert [e.message for e in command_handler.get_error_log()] == ["denied", "flaky"]
    assert len(command_handler.get_error_log(1)) == 1
    assert [e["message"] for e in command_handler.get_critical_errors()] == ["denied"]

    command_handler.clear_error_log()

    assert command_handler.get_error_log() == []
    assert command_handler.get_critical_errors() == []


@pytest.mark.asyncio
async def test_health_status_merges_monitor_report(command_handler, mock_monitor):
    cache_report = HealthReport(stats={"health_score": 80})
    cache_report.add("Cache size is large (900KB)")
    mock_monitor.get_health_report.return_value = cache_report

    report = await command_handler.get_health_status()

    assert report.status is HealthStatus.WARNING
    assert report.issues == ["Cache size is large (900KB)"]
    assert report.stats["health_score"] == 80


@pytest.mark.asyncio
async def test_health_status_reports_shared_findings_once(command_handler, mock_records_service, mock_monitor):
    service_report = HealthReport()
    service_report.add("1 critical errors detected", "Review the error log and refresh the session",
                       HealthStatus.CRITICAL)
    mock_records_service.perform_health_check.return_value = service_report
    cache_report = HealthReport(stats={"health_score": 40})
    cache_report.add("No cached data available", "Fetch records to populate the cache", status=None)
    cache_report.add("1 critical errors detected", "Review the error log and refresh the session",
                     HealthStatus.CRITICAL)
    mock_monitor.get_health_report.return_value = cache_report

    report = await command_handler.get_health_status()

    assert report.issues == ["1 critical errors detected", "No cached data available"]
    assert report.recommendations == ["Review the error log and refresh the session",
                                      "Fetch records to populate the cache"]
    assert report.status is HealthStatus.CRITICAL
    assert report.stats["health_score"] == 60


@pytest.mark.asyncio
async def test_health_status_survives_monitor_failure(command_handler, mock_monitor):
    mock_monitor.get_health_report.side_effect = RuntimeError("store gone")

    report = await command_handler.get_health_status()

    assert report.status is HealthStatus.WARNING
    assert "Cache health report failed" in report.issues


@pytest.mark.asyncio
async def test_run_maintenance_requires_monitor(mock_records_service, classifier, mock_queue):
    handler = CommandHandler(mock_records_service, classifier, AsyncMock(spec=TTLCache), mock_queue)

    with pytest.raises(RuntimeError):
        await handler.run_maintenance()


@pytest.mark.asyncio
async def test_run_maintenance_and_close(command_handler, mock_monitor, mock_records_service):
    mock_monitor.run_maintenance.return_value = MagicMock(spec=MaintenanceReport)

    await command_handler.run_maintenance()
    await command_handler.close()

    mock_monitor.run_maintenance.assert_awaited_once()
    mock_monitor.stop.assert_awaited_once()
    mock_records_service.close.assert_awaited_once()
