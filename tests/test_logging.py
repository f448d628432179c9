import logging
import tempfile
import unittest
from pathlib import Path

from offline_resilience.config.models import LoggingSettings
from offline_resilience.logging import init_logging


def _settings(**overrides) -> LoggingSettings:
    payload = {"level": "INFO", "file": {"path": "", "rotation": {"backup_count": 2}}}
    payload.update(overrides)
    return LoggingSettings.model_validate(payload)


class InitLoggingTests(unittest.TestCase):
    def setUp(self) -> None:
        root = logging.getLogger()
        self._saved_handlers = list(root.handlers)
        self._saved_level = root.level
        self._touched = ["aiohttp.access", "offline_resilience.strategies"]
        self._saved_levels = {name: logging.getLogger(name).level for name in self._touched}

    def tearDown(self) -> None:
        root = logging.getLogger()
        for handler in list(root.handlers):
            root.removeHandler(handler)
            if handler not in self._saved_handlers:
                handler.close()
        for handler in self._saved_handlers:
            root.addHandler(handler)
        root.setLevel(self._saved_level)
        for name, level in self._saved_levels.items():
            logging.getLogger(name).setLevel(level)

    def test_access_log_is_quiet_unless_enabled(self) -> None:
        init_logging(_settings())
        self.assertEqual(logging.getLogger("aiohttp.access").level, logging.WARNING)

        init_logging(_settings(access_log=True))
        self.assertEqual(logging.getLogger("aiohttp.access").level, logging.INFO)

    def test_per_logger_overrides(self) -> None:
        init_logging(_settings(loggers={"offline_resilience.strategies": "debug"}))

        self.assertEqual(logging.getLogger().level, logging.INFO)
        self.assertEqual(logging.getLogger("offline_resilience.strategies").level, logging.DEBUG)

    def test_file_handler_is_added_when_path_is_set(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            log_path = Path(tmp) / "logs" / "proxy.log"
            init_logging(_settings(file={"path": str(log_path), "rotation": {"backup_count": 2}}))

            logging.getLogger("offline_resilience.test").info("Proxy started.")
            for handler in logging.getLogger().handlers:
                handler.flush()

            self.assertIn("Proxy started.", log_path.read_text(encoding="utf-8"))
            for handler in list(logging.getLogger().handlers):
                logging.getLogger().removeHandler(handler)
                handler.close()

    def test_invalid_level_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            init_logging(_settings(level="LOUD"))


if __name__ == "__main__":
    unittest.main()
