import json
import logging
from logging.handlers import RotatingFileHandler

from expiry_alerts.config import Settings
from expiry_alerts.logging_config import JSONFormatter, setup_logging


def test_file_handler_created(tmp_path):
    log_file = tmp_path / "logs" / "app.log"
    logger = setup_logging(Settings(LOG_FILE=str(log_file), ENVIRONMENT="development"))

    assert any(isinstance(h, RotatingFileHandler) for h in logger.handlers)
    assert log_file.parent.is_dir()


def test_repeated_setup_does_not_stack_handlers():
    config = Settings(LOG_FILE="")
    setup_logging(config)
    logger = setup_logging(config)
    assert len(logger.handlers) == 1


def test_production_uses_json():
    logger = setup_logging(Settings(LOG_FILE="", ENVIRONMENT="production"))
    assert isinstance(logger.handlers[0].formatter, JSONFormatter)


def test_json_formatter_includes_extras():
    record = logging.LogRecord("expiry_alerts.test", logging.WARNING, __file__, 10,
                               "[Dispatch] failure for %s", ("EMP001",), None)
    record.employee_id = "EMP001"

    data = json.loads(JSONFormatter().format(record))

    assert data["message"] == "[Dispatch] failure for EMP001"
    assert data["level"] == "WARNING"
    assert data["employee_id"] == "EMP001"
