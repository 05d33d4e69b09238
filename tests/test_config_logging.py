import logging

import pytest
from opentelemetry import trace
from pydantic import ValidationError

from helpdesk.core.config import Settings
from helpdesk.core.logging import build_resource, configure_logging, init_tracer, parse_headers
from helpdesk.main import _to_asyncpg_dsn


def test_parse_headers_handles_pairs_and_garbage():
    assert parse_headers(None) == {}
    assert parse_headers("api-key=abc, tenant = farm ,broken,=x") == {"api-key": "abc", "tenant": "farm"}


def test_settings_read_prefixed_environment(monkeypatch):
    monkeypatch.setenv("HELPDESK_STORAGE_BACKEND", "memory")
    monkeypatch.setenv("HELPDESK_TIMEZONE", "Africa/Nairobi")
    monkeypatch.setenv("HELPDESK_MAX_PAGE_SIZE", "50")

    settings = Settings()

    assert settings.storage_backend == "memory"
    assert settings.timezone == "Africa/Nairobi"
    assert settings.max_page_size == 50
    assert settings.ticket_number_prefix == "TK"


def test_settings_reject_unknown_backend(monkeypatch):
    monkeypatch.setenv("HELPDESK_STORAGE_BACKEND", "mongo")

    with pytest.raises(ValidationError):
        Settings()


def test_configure_logging_sets_level():
    logger = configure_logging(Settings(log_level="debug"))

    assert logger.name == "helpdesk"
    assert logger.level == logging.DEBUG
    assert logging.getLogger("helpdesk.tickets").level == logging.DEBUG


def test_ticket_logger_level_is_tuned_separately():
    configure_logging(Settings(log_level="info", ticket_log_level="warning"))

    ticket_logger = logging.getLogger("helpdesk.tickets.service")
    assert logging.getLogger("helpdesk").level == logging.INFO
    assert ticket_logger.getEffectiveLevel() == logging.WARNING
    assert not ticket_logger.isEnabledFor(logging.INFO)


def test_log_lines_carry_environment():
    configure_logging(Settings(environment="staging", log_format="%(levelname)s %(message)s"))

    record = logging.LogRecord("helpdesk.tickets", logging.INFO, __file__, 1, "Ticket TK000001 created", None, None)
    rendered = {handler.format(record) for handler in logging.getLogger().handlers if handler.formatter is not None}

    assert "[staging] INFO Ticket TK000001 created" in rendered


def test_resource_describes_deployment():
    settings = Settings(environment="production", storage_backend="memory", ticket_number_prefix="AG")

    attributes = build_resource(settings).attributes

    assert attributes["service.name"] == "helpdesk-api"
    assert attributes["deployment.environment"] == "production"
    assert attributes["helpdesk.storage_backend"] == "memory"
    assert attributes["helpdesk.ticket_number_prefix"] == "AG"


def test_tracer_disabled_by_default():
    assert init_tracer(Settings(otel_enabled=False)) is None


def test_tracer_not_reinstalled_over_existing_sdk_provider(monkeypatch):
    from opentelemetry.sdk.trace import TracerProvider

    monkeypatch.setattr(trace, "get_tracer_provider", lambda: TracerProvider())

    assert init_tracer(Settings(otel_enabled=True)) is None


def test_dsn_is_converted_to_asyncpg():
    assert _to_asyncpg_dsn("postgresql://u:p@db/helpdesk") == "postgresql+asyncpg://u:p@db/helpdesk"
    assert _to_asyncpg_dsn("postgresql+asyncpg://u:p@db/helpdesk") == "postgresql+asyncpg://u:p@db/helpdesk"
    assert _to_asyncpg_dsn("sqlite+aiosqlite:///:memory:") == "sqlite+aiosqlite:///:memory:"
