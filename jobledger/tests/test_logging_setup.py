import io
import logging
import os
import unittest
from unittest import mock

from jobledger import logging_setup
from jobledger.logging_setup import (
    LOG_LEVEL_ENV,
    PACKAGE_LOGGER,
    configure_logging,
    get_logger,
    resolve_level,
)


class ResolveLevelTests(unittest.TestCase):
    def test_names_and_numbers(self) -> None:
        self.assertEqual(resolve_level("debug"), logging.DEBUG)
        self.assertEqual(resolve_level(" Warning "), logging.WARNING)
        self.assertEqual(resolve_level("10"), 10)
        self.assertEqual(resolve_level(logging.ERROR), logging.ERROR)

    def test_unknown_or_blank_falls_back_to_info(self) -> None:
        for value in ("verbose", "", "   "):
            with self.subTest(value=value):
                self.assertEqual(resolve_level(value), logging.INFO)

    def test_reads_environment_when_unset(self) -> None:
        with mock.patch.dict(os.environ, {LOG_LEVEL_ENV: "error"}):
            self.assertEqual(resolve_level(), logging.ERROR)
        with mock.patch.dict(os.environ, clear=True):
            self.assertEqual(resolve_level(), logging.INFO)


class ConfigureLoggingTests(unittest.TestCase):
    def setUp(self) -> None:
        package_logger = logging.getLogger(PACKAGE_LOGGER)
        handlers = list(package_logger.handlers)
        level = package_logger.level
        propagate = package_logger.propagate

        def restore() -> None:
            package_logger.handlers = handlers
            package_logger.setLevel(level)
            package_logger.propagate = propagate

        self.addCleanup(restore)
        self.package_logger = package_logger

    def test_get_logger_is_a_child_of_the_package_logger(self) -> None:
        logger = get_logger("jobledger.tests.sample")

        self.assertEqual(logger.name, "jobledger.tests.sample")
        self.assertTrue(self.package_logger.handlers)

    def test_configure_writes_to_stream_once(self) -> None:
        stream = io.StringIO()
        with mock.patch.object(logging_setup, "_configured", False):
            configure_logging("warning", stream=stream)
            configure_logging("debug", stream=io.StringIO())

            get_logger("jobledger.tests.sample").warning("disk nearly full")

        self.assertEqual(self.package_logger.level, logging.WARNING)
        self.assertFalse(self.package_logger.propagate)
        self.assertIn("WARNING disk nearly full", stream.getvalue())
        self.assertFalse(
            any(isinstance(handler, logging.NullHandler) for handler in self.package_logger.handlers)
        )


if __name__ == "__main__":
    unittest.main()
