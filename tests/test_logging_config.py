"""
Tests for logger naming and the thread context stamped on records.
"""

import logging
import threading

from logging_config import (
    APP_LOGGER_NAME,
    ThreadContextFilter,
    get_batch_logger,
    get_logger,
    set_thread_name,
    setup_logging,
)


class TestLoggerNames:

    def test_module_loggers_live_under_the_app_logger(self):
        assert get_logger("services.billing_service").name == "diploma_issuer.services.billing_service"
        assert get_logger("diploma_issuer.app").name == "diploma_issuer.app"

    def test_batch_logger_uses_short_batch_id(self):
        logger = get_batch_logger("a1b2c3d4-e5f6-4711-8899-aabbccddeeff")
        assert logger.name == "diploma_issuer.batch.a1b2c3d4"


class TestThreadContext:

    def test_records_carry_thread_name(self):
        seen = {}

        def worker():
            set_thread_name("Mint-feedbeef")
            record = logging.LogRecord("diploma_issuer.batch.feedbeef", logging.INFO, __file__, 1, "x", None, None)
            ThreadContextFilter().filter(record)
            seen["name"] = record.thread_name

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join(2.0)

        assert seen["name"] == "Mint-feedbeef"

    def test_setup_replaces_handlers_and_stops_propagation(self):
        app_logger = logging.getLogger(APP_LOGGER_NAME)
        saved = (list(app_logger.handlers), app_logger.level, app_logger.propagate)
        try:
            setup_logging(enable_file_logging=False)
            setup_logging(log_level=logging.DEBUG, enable_file_logging=False)

            assert len(app_logger.handlers) == 1
            assert app_logger.level == logging.DEBUG
            assert app_logger.propagate is False
            assert any(isinstance(f, ThreadContextFilter) for f in app_logger.handlers[0].filters)
        finally:
            app_logger.handlers[:] = saved[0]
            app_logger.setLevel(saved[1])
            app_logger.propagate = saved[2]
