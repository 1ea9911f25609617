"""structlog setup: service context and stdlib handler installation."""

import logging

from timeslice.config import Settings
from timeslice.middleware.logging import service_context, setup_logging


def _settings(**overrides: object) -> Settings:
    return Settings(service_name="timeslice-analytics", app_version="9.9.9", environment="staging", **overrides)


class TestServiceContext:
    def test_adds_service_fields(self):
        processor = service_context(_settings())
        event = processor(None, "info", {"event": "analytics_calculated"})
        assert event["service"] == "timeslice-analytics"
        assert event["version"] == "9.9.9"
        assert event["environment"] == "staging"

    def test_does_not_overwrite_event_fields(self):
        processor = service_context(_settings())
        event = processor(None, "info", {"event": "x", "version": "override"})
        assert event["version"] == "override"


class TestSetupLogging:
    def test_installs_a_single_handler(self):
        settings = _settings(log_format="console", log_level="WARNING")
        setup_logging(settings)
        setup_logging(settings)
        root = logging.getLogger()
        assert len([h for h in root.handlers if h.get_name() == "timeslice"]) == 1
        assert root.level == logging.WARNING

    def test_quiets_sqlalchemy_engine(self):
        setup_logging(_settings(log_level="DEBUG"))
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    def test_unknown_level_falls_back_to_info(self):
        setup_logging(_settings(log_level="chatty"))
        assert logging.getLogger().level == logging.INFO
