import json
import os
import tempfile
import unittest
from unittest import mock

from recordgate import config


class TestCachedConfig(unittest.TestCase):

    def setUp(self):
        self.dir = tempfile.mkdtemp()
        self.path = os.path.join(self.dir, "chains.json")
        self._write({"base": {"rpc_url": "http://a"}})

    def _write(self, data, mtime=None):
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f)
        if mtime is not None:
            os.utime(self.path, (mtime, mtime))

    def test_cached_until_file_changes(self):
        cache = config.CachedConfig(ttl_seconds=3600)
        self._write({"base": {"rpc_url": "http://a"}}, mtime=1_700_000_000)
        first = cache.get_json(self.path)
        self.assertIs(cache.get_json(self.path), first)

        self._write({"base": {"rpc_url": "http://b"}}, mtime=1_700_000_100)
        self.assertEqual(cache.get_json(self.path)["base"]["rpc_url"], "http://b")

    def test_zero_ttl_always_reloads(self):
        cache = config.CachedConfig(ttl_seconds=-1)
        first = cache.get_json(self.path)
        self.assertIsNot(cache.get_json(self.path), first)

    def test_missing_files_mean_empty(self):
        missing = os.path.join(self.dir, "nope.json")
        self.assertEqual(config.load_chains(missing), {})
        self.assertEqual(config.load_static_metadata(missing), [])

    def test_load_chains(self):
        self.assertEqual(config.load_chains(self.path), {"base": {"rpc_url": "http://a"}})


class TestValidateConfig(unittest.TestCase):

    def test_checks(self):
        with mock.patch.object(config, "LOG_BACKEND", "s3_object_lock"), \
                mock.patch.object(config, "S3_BUCKET", ""):
            checks = config.validate_config()
        self.assertFalse(checks["s3_bucket"])
        self.assertTrue(checks["freshness_window_positive"])
        self.assertTrue(checks["replay_store_known"])

    def test_flags(self):
        with mock.patch.object(config, "ENV", "prod"):
            self.assertTrue(config.is_production())
        with mock.patch.dict(os.environ, {"RECORDGATE_DEBUG": "true"}):
            self.assertTrue(config.is_debug())
        with mock.patch.dict(os.environ, {"RECORDGATE_DEBUG": ""}):
            self.assertFalse(config.is_debug())


if __name__ == "__main__":
    unittest.main(verbosity=2)
