"""
IngestionLedger Test Suite

Critical invariants tested:
    ONLY THE AUTHORIZED SUBMITTER'S DATA IS ADMITTED
    EVERY ADMITTED RESULT IS BOUND TO A REGISTERED DEVICE
    A SUBMISSION APPLIES IN FULL OR NOT AT ALL
"""

import threading
import unittest
from unittest import mock

from iotledger import (
    AnalyticsType,
    DeviceMetadata,
    DeviceNotRegistered,
    EventType,
    InvalidPayload,
    LedgerService,
    RecordNotFound,
    Unauthorized,
    analytics_hash,
    canonicalize,
    classify_payload,
    data_hash,
    device_id_hash,
    sha256_hex,
)
from iotledger.logging_config import audit_log
from iotledger.util import FixedClock

OWNER = "0x" + "a" * 40
ROLLUP = "0x" + "b" * 40
OPERATOR = "0x" + "c" * 40
STRANGER = "0x" + "d" * 40

READING = {"temp": 23.4}


class LedgerTestCase(unittest.TestCase):

    max_payload_bytes = 65536

    def setUp(self):
        self.clock = FixedClock()
        self.service = LedgerService.open(
            ":memory:", owner=OWNER, submitter=ROLLUP, clock=self.clock,
            max_payload_bytes=self.max_payload_bytes
        )
        self.ledger = self.service.ledger
        self.events = self.service.events
        self.device = self.service.registry.register(
            OPERATOR, "sensor-01", DeviceMetadata(device_type="thermometer"), payment=0
        )

    def tearDown(self):
        self.service.close()

    def counts(self):
        return self.ledger.record_count(), self.ledger.analytics_count()


class TestSubmissionGates(LedgerTestCase):

    def test_scenario_sensor_01(self):
        self.assertTrue(self.service.registry.is_registered(device_id_hash("sensor-01")))
        self.assertEqual(self.service.registry.device_count(), 1)

        result = self.ledger.submit(ROLLUP, device_id_hash("sensor-01"), READING)
        self.assertEqual(result.record_id, 1)
        self.assertEqual(self.counts(), (1, 1))

        with self.assertRaises(Unauthorized):
            self.ledger.submit(STRANGER, device_id_hash("sensor-01"), READING)
        self.assertEqual(self.counts(), (1, 1))

    def test_unauthorized_leaves_no_trace(self):
        events_before = len(self.events.entries())
        for caller in (STRANGER, OWNER, OPERATOR, "", "0x00"):
            with self.assertRaises(Unauthorized):
                self.ledger.submit(caller, self.device, READING)

        self.assertEqual(self.counts(), (0, 0))
        self.assertEqual(len(self.events.entries()), events_before)

    def test_authorization_checked_before_payload(self):
        with self.assertRaises(Unauthorized):
            self.ledger.submit(STRANGER, self.device, {})
        with self.assertRaises(Unauthorized):
            self.ledger.submit(STRANGER, "not-a-digest", READING)

    def test_unregistered_device(self):
        with self.assertRaises(DeviceNotRegistered):
            self.ledger.submit(ROLLUP, device_id_hash("ghost"), READING)

        self.assertEqual(self.counts(), (0, 0))
        self.assertEqual(self.events.entries(event_type=EventType.DATA_STORED), [])
        self.assertEqual(self.events.entries(event_type=EventType.ANALYTICS_COMPUTED), [])

    def test_revoked_submitter_rejected(self):
        new_rollup = "0x" + "e" * 40
        self.ledger.submit(ROLLUP, self.device, READING)
        self.service.authority.set_authorized_submitter(OWNER, new_rollup)

        with self.assertRaises(Unauthorized):
            self.ledger.submit(ROLLUP, self.device, READING)
        result = self.ledger.submit(new_rollup, self.device, READING)

        self.assertEqual(result.record_id, 2)
        self.assertEqual(self.counts(), (2, 2))

    def test_invalid_payloads(self):
        for payload in ({}, [1, 2], "temp=23.4", None, {"temp": float("nan")}):
            with self.assertRaises(InvalidPayload):
                self.ledger.submit(ROLLUP, self.device, payload)
        self.assertEqual(self.counts(), (0, 0))


class TestPayloadLimit(LedgerTestCase):

    max_payload_bytes = 32

    def test_oversized_payload_rejected(self):
        with self.assertRaises(InvalidPayload):
            self.ledger.submit(ROLLUP, self.device, {"blob": "x" * 64})
        self.assertEqual(self.counts(), (0, 0))

    def test_payload_at_limit_accepted(self):
        # {"blob":"..."} adds 11 bytes around the string
        at_limit = {"blob": "x" * (self.max_payload_bytes - 11)}
        self.assertEqual(len(canonicalize(at_limit)), self.max_payload_bytes)

        self.ledger.submit(ROLLUP, self.device, at_limit)
        self.assertEqual(self.counts(), (1, 1))

    def test_one_byte_over_limit_rejected(self):
        over = {"blob": "x" * (self.max_payload_bytes - 10)}
        self.assertEqual(len(canonicalize(over)), self.max_payload_bytes + 1)

        with self.assertRaises(InvalidPayload):
            self.ledger.submit(ROLLUP, self.device, over)
        self.assertEqual(self.counts(), (0, 0))


class TestSubmissionEffects(LedgerTestCase):

    def test_success_emits_matching_events(self):
        self.clock.advance(30)
        result = self.ledger.submit(ROLLUP, self.device, READING)

        stored = self.events.entries(event_type=EventType.DATA_STORED)
        computed = self.events.entries(event_type=EventType.ANALYTICS_COMPUTED)
        self.assertEqual(len(stored), 1)
        self.assertEqual(len(computed), 1)
        self.assertEqual(stored[0].body["data_hash"], data_hash(READING))
        self.assertEqual(computed[0].body["data_hash"], stored[0].body["data_hash"])
        self.assertEqual(stored[0].body["device_id_hash"], self.device)
        self.assertEqual(stored[0].body["timestamp"], self.clock())
        self.assertEqual(computed[0].body["analytics_hash"], result.analytics.analytics_hash)
        self.assertLess(stored[0].seq, computed[0].seq)

    def test_records_stored(self):
        result = self.ledger.submit(ROLLUP, self.device, READING)

        record = self.ledger.get_record(result.record_id)
        self.assertEqual(record.device_id_hash, self.device)
        self.assertEqual(record.data_hash, data_hash(READING))

        analytics = self.ledger.get_analytics(result.record_id)
        self.assertEqual(analytics.source_data_hash, record.data_hash)
        self.assertEqual(analytics.analytics_type, AnalyticsType.BASIC)
        self.assertEqual(analytics.analytics_hash, analytics_hash(AnalyticsType.BASIC, record.data_hash))
        self.assertFalse(analytics.proof_required)

    def test_record_ids_gap_free(self):
        ids = [self.ledger.submit(ROLLUP, self.device, {"seq": i}).record_id for i in range(3)]
        with self.assertRaises(Unauthorized):
            self.ledger.submit(STRANGER, self.device, READING)
        ids.append(self.ledger.submit(ROLLUP, self.device, READING).record_id)

        self.assertEqual(ids, [1, 2, 3, 4])

    def test_duplicate_payload_creates_new_record(self):
        first = self.ledger.submit(ROLLUP, self.device, READING)
        second = self.ledger.submit(ROLLUP, self.device, READING)

        self.assertNotEqual(first.record_id, second.record_id)
        self.assertEqual(self.ledger.records_for_device(self.device), [data_hash(READING)] * 2)

    def test_unknown_record(self):
        with self.assertRaises(RecordNotFound):
            self.ledger.get_record(99)
        with self.assertRaises(RecordNotFound):
            self.ledger.get_analytics(99)

    def test_ping_is_constant_and_pure(self):
        self.ledger.submit(ROLLUP, self.device, READING)
        before = self.counts(), len(self.events.entries())
        self.assertEqual({self.ledger.ping() for _ in range(5)}, {1})
        self.assertEqual((self.counts(), len(self.events.entries())), before)


class TestAtomicity(LedgerTestCase):

    def test_failure_after_append_rolls_back(self):
        events_before = len(self.events.entries())
        delivered = []
        self.events.subscribe(delivered.append)

        with mock.patch.object(self.ledger, "_derive", side_effect=RuntimeError("analytics failed")):
            with self.assertRaises(RuntimeError):
                self.ledger.submit(ROLLUP, self.device, READING)

        self.assertEqual(self.counts(), (0, 0))
        self.assertEqual(len(self.events.entries()), events_before)
        self.assertEqual(delivered, [])
        with self.assertRaises(RecordNotFound):
            self.ledger.get_record(1)

        result = self.ledger.submit(ROLLUP, self.device, READING)
        self.assertEqual(result.record_id, 1)

    def test_subscribers_see_committed_events_in_order(self):
        delivered = []
        unsubscribe = self.events.subscribe(delivered.append)

        self.ledger.submit(ROLLUP, self.device, READING)
        unsubscribe()
        self.ledger.submit(ROLLUP, self.device, READING)

        self.assertEqual(
            [e.event_type for e in delivered],
            [EventType.DATA_STORED, EventType.ANALYTICS_COMPUTED]
        )

    def test_concurrent_submissions_are_serialized(self):
        errors = []

        def worker(n):
            try:
                for i in range(10):
                    self.ledger.submit(ROLLUP, self.device, {"worker": n, "i": i})
            except Exception as e:  # surfaced below
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        self.assertEqual(self.counts(), (40, 40))
        self.assertEqual([r.record_id for r in self.ledger.all_records()], list(range(1, 41)))

    def test_snapshot_consistent_while_writing(self):
        stop = threading.Event()

        def writer():
            while not stop.is_set():
                self.ledger.submit(ROLLUP, self.device, {"t": 1})

        thread = threading.Thread(target=writer)
        thread.start()
        torn = 0
        try:
            for _ in range(200):
                state = self.service.snapshot()
                if not (len(state.records) == len(state.analytics)
                        == state.total_records == state.total_analytics):
                    torn += 1
        finally:
            stop.set()
            thread.join()

        self.assertEqual(torn, 0)
        self.assertEqual(self.service.snapshot().total_records, self.ledger.record_count())


class TestAnalyticsDerivation(LedgerTestCase):

    def test_classification(self):
        self.assertEqual(classify_payload({"temp": 23.4}), AnalyticsType.BASIC)
        self.assertEqual(classify_payload({"status": "ok", "flag": True}), AnalyticsType.BASIC)
        self.assertEqual(classify_payload({"a": 1, "b": 2, "c": 3, "d": 4}), AnalyticsType.ADVANCED)
        self.assertEqual(classify_payload({"gps": {"lat": 1.0, "lon": 2.0}}), AnalyticsType.ADVANCED)
        self.assertEqual(classify_payload({"series": list(range(16))}), AnalyticsType.ML)
        self.assertEqual(classify_payload({"series": list(range(15))}), AnalyticsType.BASIC)

    def test_booleans_are_not_readings(self):
        self.assertEqual(classify_payload({"a": True, "b": False, "c": True, "d": 1}), AnalyticsType.BASIC)

    def test_tuple_and_list_payloads_classified_alike(self):
        as_list = self.ledger.submit(ROLLUP, self.device, {"series": list(range(16))})
        as_tuple = self.ledger.submit(ROLLUP, self.device, {"series": tuple(range(16))})

        self.assertEqual(as_tuple.record.data_hash, as_list.record.data_hash)
        self.assertEqual(as_tuple.analytics.analytics_type, AnalyticsType.ML)
        self.assertEqual(as_tuple.analytics.analytics_hash, as_list.analytics.analytics_hash)

    def test_ml_record_requires_proof(self):
        result = self.ledger.submit(ROLLUP, self.device, {"series": [0.5] * 16})
        self.assertEqual(result.analytics.analytics_type, AnalyticsType.ML)
        self.assertTrue(result.analytics.proof_required)

    def test_device_tier_is_floor(self):
        self.service.registry.set_processing_requirements(OWNER, self.device, analytics_tier=1)
        result = self.ledger.submit(ROLLUP, self.device, READING)
        self.assertEqual(result.analytics.analytics_type, AnalyticsType.ADVANCED)

    def test_disabled_tier_falls_back_to_basic(self):
        self.ledger.update_analytics_config(OWNER, AnalyticsType.ML, enabled=False,
                                            processing_fee=0, requires_proof=True)
        result = self.ledger.submit(ROLLUP, self.device, {"series": list(range(32))})
        self.assertEqual(result.analytics.analytics_type, AnalyticsType.BASIC)
        self.assertFalse(result.analytics.proof_required)

    def test_config_update_rules(self):
        with self.assertRaises(Unauthorized):
            self.ledger.update_analytics_config(STRANGER, 1, True, 0, False)
        with self.assertRaises(InvalidPayload):
            self.ledger.update_analytics_config(OWNER, AnalyticsType.BASIC, False, 0, False)
        with self.assertRaises(InvalidPayload):
            self.ledger.update_analytics_config(OWNER, 9, True, 0, False)
        with self.assertRaises(InvalidPayload):
            self.ledger.update_analytics_config(OWNER, 1, True, -5, False)

        updated = self.ledger.update_analytics_config(OWNER, 1, True, 42, False)
        self.assertEqual(self.ledger.analytics_configs()[1], updated)
        self.assertEqual(len(self.events.entries(event_type=EventType.ANALYTICS_CONFIG_UPDATED)), 1)

    def test_config_audit_written_only_after_commit(self):
        real_update = self.ledger.configs.update

        def update_then_fail(*args):
            real_update(*args)
            raise RuntimeError("storage failure")

        with mock.patch.object(audit_log, "authority_changed") as audited:
            with mock.patch.object(self.ledger.configs, "update", side_effect=update_then_fail):
                with self.assertRaises(RuntimeError):
                    self.ledger.update_analytics_config(OWNER, 1, True, 42, False)
            audited.assert_not_called()
            self.assertEqual(self.ledger.analytics_configs()[1].processing_fee, 10 ** 15)

            self.ledger.update_analytics_config(OWNER, 1, True, 42, False)
            audited.assert_called_once()

    def test_default_configs(self):
        configs = self.ledger.analytics_configs()
        self.assertEqual(sorted(configs), [0, 1, 2])
        self.assertEqual(configs[0].processing_fee, 0)
        self.assertEqual(configs[1].processing_fee, 10 ** 15)
        self.assertEqual(configs[2].processing_fee, 10 ** 16)
        self.assertTrue(all(c.enabled for c in configs.values()))


class TestProofAttestations(LedgerTestCase):

    PROOF = bytes.fromhex("deadbeef" * 8)

    def test_proof_filed_against_analytics_record(self):
        result = self.ledger.submit(ROLLUP, self.device, {"series": [0.5] * 16})
        self.clock.advance(5)
        proof = self.ledger.store_proof(ROLLUP, result.record_id, self.PROOF, "0x0102", is_valid=True)

        self.assertEqual(proof.proof_id, 1)
        self.assertEqual(proof.analytics_hash, result.analytics.analytics_hash)
        self.assertEqual(proof.proof_hash, sha256_hex(self.PROOF))
        self.assertEqual(proof.public_inputs_hash, sha256_hex(b"\x01\x02"))
        self.assertEqual(proof.stored_at, self.clock())
        self.assertEqual(self.ledger.proofs_for_record(result.record_id), [proof])
        self.assertEqual(self.ledger.total_proofs(), 1)

        stored = self.events.entries(event_type=EventType.PROOF_STORED)
        self.assertEqual(len(stored), 1)
        self.assertEqual(stored[0].body["proof_hash"], proof.proof_hash)

    def test_hex_proof_matches_bytes(self):
        result = self.ledger.submit(ROLLUP, self.device, READING)
        from_bytes = self.ledger.store_proof(ROLLUP, result.record_id, self.PROOF)
        from_hex = self.ledger.store_proof(ROLLUP, result.record_id, "0x" + self.PROOF.hex(), is_valid=False)

        self.assertEqual(from_hex.proof_hash, from_bytes.proof_hash)
        self.assertEqual([p.proof_id for p in self.ledger.proofs_for_record(result.record_id)], [1, 2])
        self.assertFalse(from_hex.is_valid)

    def test_only_submitter_files_proofs(self):
        result = self.ledger.submit(ROLLUP, self.device, READING)
        for caller in (STRANGER, OWNER, OPERATOR):
            with self.assertRaises(Unauthorized):
                self.ledger.store_proof(caller, result.record_id, self.PROOF)
        with self.assertRaises(Unauthorized):
            self.ledger.store_proof(STRANGER, 99, b"")
        self.assertEqual(self.ledger.total_proofs(), 0)

    def test_unknown_analytics_record(self):
        events_before = len(self.events.entries())
        with self.assertRaises(RecordNotFound):
            self.ledger.store_proof(ROLLUP, 99, self.PROOF)

        self.assertEqual(self.ledger.total_proofs(), 0)
        self.assertEqual(len(self.events.entries()), events_before)

    def test_invalid_proofs_rejected(self):
        result = self.ledger.submit(ROLLUP, self.device, READING)
        for proof, inputs, valid in ((b"", b"", True), ("xyz", b"", True), ("abc", b"", True),
                                     (self.PROOF, "zz", True), (self.PROOF, b"", "yes")):
            with self.assertRaises(InvalidPayload):
                self.ledger.store_proof(ROLLUP, result.record_id, proof, inputs, valid)

        self.assertEqual(self.ledger.total_proofs(), 0)
        self.assertEqual(self.events.entries(event_type=EventType.PROOF_STORED), [])


if __name__ == '__main__':
    unittest.main()
