"""Service wiring — settings select storage, forwarding mode and retry policy."""

from quotedesk.config import Settings
from quotedesk.core.domain_types import ForwardingMode
from quotedesk.infrastructure.key_value_storage import JsonFileStorage, MemoryStorage
from quotedesk.services.wiring import build_services

from tests.fakes import FakeForwarder


def _settings(**kwargs):
    return Settings(_env_file=None, **kwargs)


async def test_memory_storage_and_retry_policy(db_manager):
    services = build_services(
        _settings(queue_storage="memory", retry_delay_seconds=5, retry_max_attempts=3),
        db_manager,
    )

    assert isinstance(services.storage, MemoryStorage)
    assert services.scheduler.delay_seconds == 5
    assert services.queue.max_retries == 3
    assert services.forwarder.mode == ForwardingMode.OFF
    assert services.notifier.enabled is False


async def test_file_storage_path(db_manager, tmp_path):
    path = tmp_path / "pending.json"
    services = build_services(
        _settings(queue_storage="file", queue_storage_path=str(path)), db_manager,
    )

    assert isinstance(services.storage, JsonFileStorage)
    assert services.storage.path == path


async def test_http_forwarder_from_settings(db_manager):
    services = build_services(
        _settings(
            queue_storage="memory",
            downstream_mode="http",
            downstream_base_url="https://admin.example.com",
            downstream_api_key="k",
        ),
        db_manager,
    )

    assert services.forwarder.url == "https://admin.example.com/api/quotes/submit"
    assert services.forwarder.api_key == "k"
    await services.aclose()


async def test_smtp_notifier_from_settings(db_manager):
    services = build_services(
        _settings(
            queue_storage="memory",
            smtp_host="smtp.example.com", smtp_user="u", smtp_password="p",
        ),
        db_manager,
    )

    assert services.notifier.smtp.host == "smtp.example.com"
    assert services.notifier.enabled is True


async def test_aclose_stops_scheduler_and_forwarder(db_manager):
    forwarder = FakeForwarder()
    services = build_services(
        _settings(queue_storage="memory", retry_delay_seconds=3600),
        db_manager, forwarder=forwarder,
    )
    services.scheduler.enqueue({"email": "a@example.com"})

    await services.aclose()

    assert forwarder.closed is True
    assert services.scheduler.state.value == "idle"
    assert not services.queue.is_retry_scheduled()
