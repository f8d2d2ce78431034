from __future__ import annotations

import os
import unittest
from pathlib import Path
from unittest import mock

from commission_flow.config import get_settings


class SettingsTests(unittest.TestCase):
    def test_reads_environment(self) -> None:
        env = {
            "COMMISSION_FLOW_DB_PATH": "/tmp/flow-test.db",
            "COMMISSION_FLOW_STORAGE": "Memory",
            "COMMISSION_PERCENT": "7.5",
            "LOG_LEVEL": "debug",
            "CORS_ORIGINS": "http://a.test, http://b.test",
        }
        with mock.patch.dict(os.environ, env):
            settings = get_settings()
        self.assertEqual(settings.db_path, Path("/tmp/flow-test.db"))
        self.assertEqual(settings.storage, "memory")
        self.assertEqual(settings.commission_percent, 7.5)
        self.assertEqual(settings.log_level, "DEBUG")
        self.assertEqual(settings.cors_origins, ["http://a.test", "http://b.test"])

    def test_rejects_bad_values(self) -> None:
        for env in ({"COMMISSION_FLOW_STORAGE": "postgres"}, {"COMMISSION_PERCENT": "six"}, {"COMMISSION_PERCENT": "150"}):
            with self.subTest(env=env):
                with mock.patch.dict(os.environ, env):
                    with self.assertRaises(ValueError):
                        get_settings()


if __name__ == "__main__":
    unittest.main()
