import json
import unittest

from recordgate.db import export_update_log_full
from recordgate.hashing import chain_entry_hash, sha256_hex
from recordgate.log_backends import S3ObjectLockLog, SqliteHashChainLog


class FakeS3:
    def __init__(self):
        self.objects = []

    def put_object(self, **kwargs):
        self.objects.append(kwargs)


class TestSqliteHashChainLog(unittest.TestCase):

    def test_duplicate_tuple_logged_once(self):
        log = SqliteHashChainLog()
        entry = json.dumps({"n": 1})
        self.assertIsNotNone(log.write_entry("a.eth", "0x01", "0xabc", "ff", 7, entry))
        self.assertIsNone(log.write_entry("a.eth", "0x01", "0xabc", "ff", 7, entry))
        self.assertEqual(len(export_update_log_full()), 1)


class TestS3ObjectLockLog(unittest.TestCase):

    def test_entries_are_chained_and_locked(self):
        s3 = FakeS3()
        log = S3ObjectLockLog("audit-bucket", "updates", retention_days=30, client=s3)
        first = log.write_entry("a.eth", "0x01", "0xabc", "ff", 7, '{"n":1}')
        second = log.write_entry("a.eth", "0x01", "0xabc", "ee", 8, '{"n":2}')

        self.assertEqual(first, chain_entry_hash(None, sha256_hex('{"n":1}')))
        self.assertEqual(second, chain_entry_hash(first, sha256_hex('{"n":2}')))
        self.assertEqual(len(s3.objects), 2)

        put = s3.objects[1]
        self.assertEqual(put["Bucket"], "audit-bucket")
        self.assertTrue(put["Key"].startswith("updates/8-0x01-"))
        self.assertEqual(put["ObjectLockMode"], "COMPLIANCE")
        self.assertEqual(put["Metadata"]["prev-entry-hash"], first)


if __name__ == "__main__":
    unittest.main(verbosity=2)
