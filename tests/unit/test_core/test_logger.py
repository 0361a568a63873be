# SPDX-License-Identifier: LGPL-3.0-or-later
import json
import logging

import pytest

from volimporter.core.logger import TRACE, JsonFormatter, Log


@pytest.mark.unit
class TestLogLevels:
    def test_level_from_flags(self):
        assert Log._level_from_flags(0, 0) == logging.INFO
        assert Log._level_from_flags(2, 0) == logging.DEBUG
        assert Log._level_from_flags(3, 0) == TRACE
        assert Log._level_from_flags(3, 1) == logging.WARNING
        assert Log._level_from_flags(0, 2) == logging.ERROR

    def test_setup_replaces_handlers(self):
        name = "volimporter-test-setup"
        logger = Log.setup(0, logger_name=name)
        logger = Log.setup(2, logger_name=name, json_logs=True)

        assert len(logger.handlers) == 1
        assert logger.level == logging.DEBUG
        assert isinstance(logger.handlers[0].formatter, JsonFormatter)
        assert logger.propagate is False


@pytest.mark.unit
def test_bound_context_reaches_json_output():
    logger = logging.getLogger("volimporter-test-json")
    records = []

    class _Capture(logging.Handler):
        def emit(self, record):
            records.append(self.format(record))

    handler = _Capture()
    handler.setFormatter(JsonFormatter())
    logger.handlers = [handler]
    logger.setLevel(logging.INFO)
    logger.propagate = False

    Log.bind(logger, request="ns/disk").info("creating worker")
    Log.ok(logger, "done", worker="importer-disk")

    first = json.loads(records[0])
    second = json.loads(records[1])
    assert first["msg"] == "creating worker"
    assert first["ctx"] == {"request": "ns/disk"}
    assert second["ctx"] == {"worker": "importer-disk"}
    assert second["level"] == "INFO"
