"""
iotledger Digest Test Suite

Independent clients must compute identical identifiers, so these tests pin
the canonical encoding and every digest rule to fixed expectations.
"""

import hashlib
import unittest

from iotledger import (
    analytics_hash,
    canonicalize,
    canonicalize_str,
    chain_entry_hash,
    data_hash,
    device_id_hash,
    sha256_hex,
    verify_hash,
)


class TestCanonicalization(unittest.TestCase):

    def test_keys_sorted_and_compact(self):
        self.assertEqual(canonicalize({"b": 1, "a": [3, 1]}), b'{"a":[3,1],"b":1}')

    def test_nested_objects_sorted(self):
        self.assertEqual(
            canonicalize_str({"z": {"y": 1, "x": 2}, "a": None}),
            '{"a":null,"z":{"x":2,"y":1}}'
        )

    def test_unicode_not_escaped(self):
        self.assertEqual(canonicalize({"zone": "Zürich"}), '{"zone":"Zürich"}'.encode('utf-8'))

    def test_non_finite_rejected(self):
        with self.assertRaises(ValueError):
            canonicalize({"temp": float("nan")})
        with self.assertRaises(ValueError):
            canonicalize({"temp": float("inf")})

    def test_non_string_keys_rejected(self):
        with self.assertRaises(ValueError):
            canonicalize({1: "a"})

    def test_unsupported_type_rejected(self):
        with self.assertRaises(ValueError):
            canonicalize({"raw": b"\x00"})


class TestDigests(unittest.TestCase):

    def test_device_id_hash_is_sha256_of_raw_identifier(self):
        expected = hashlib.sha256(b"sensor-01").hexdigest()
        self.assertEqual(device_id_hash("sensor-01"), expected)
        self.assertEqual(len(device_id_hash("sensor-01")), 64)

    def test_device_id_hash_is_case_and_whitespace_sensitive(self):
        self.assertNotEqual(device_id_hash("sensor-01"), device_id_hash("Sensor-01"))
        self.assertNotEqual(device_id_hash("sensor-01"), device_id_hash(" sensor-01"))

    def test_data_hash_ignores_key_order(self):
        self.assertEqual(
            data_hash({"temp": 23.4, "humidity": 40}),
            data_hash({"humidity": 40, "temp": 23.4})
        )

    def test_data_hash_matches_canonical_bytes(self):
        payload = {"temp": 23.4}
        self.assertEqual(data_hash(payload), hashlib.sha256(b'{"temp":23.4}').hexdigest())

    def test_analytics_hash_binds_type(self):
        h = data_hash({"temp": 23.4})
        self.assertNotEqual(analytics_hash(0, h), analytics_hash(1, h))
        self.assertEqual(
            analytics_hash(0, h),
            sha256_hex(canonicalize({"analytics_type": 0, "data_hash": h}))
        )

    def test_chain_entry_hash_genesis(self):
        self.assertEqual(chain_entry_hash(None, "abc"), sha256_hex("abc"))
        self.assertEqual(chain_entry_hash("prev", "abc"), sha256_hex("prevabc"))

    def test_verify_hash(self):
        digest = sha256_hex(b"payload")
        self.assertTrue(verify_hash(digest, b"payload"))
        self.assertTrue(verify_hash(digest.upper(), b"payload"))
        self.assertFalse(verify_hash(digest, b"tampered"))


if __name__ == '__main__':
    unittest.main()
