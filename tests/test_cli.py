import json

from iotledger import DeviceMetadata, LedgerService, data_hash, device_id_hash
from iotledger.cli import main
from iotledger.util import FixedClock

OWNER = "0x" + "a" * 40
ROLLUP = "0x" + "b" * 40
OPERATOR = "0x" + "c" * 40


def make_ledger(path):
    service = LedgerService.open(str(path), owner=OWNER, submitter=ROLLUP, clock=FixedClock())
    id_hash = service.registry.register(OPERATOR, "sensor-01", DeviceMetadata(device_type="thermometer"), 0)
    service.ledger.submit(ROLLUP, id_hash, {"temp": 23.4})
    service.close()


def test_hash_id(capsys):
    assert main(["hash-id", "sensor-01"]) == 0
    assert capsys.readouterr().out.strip() == device_id_hash("sensor-01")


def test_hash_payload(tmp_path, capsys):
    f = tmp_path / "reading.json"
    f.write_text(json.dumps({"temp": 23.4, "humidity": 40}))
    assert main(["hash-payload", "-f", str(f)]) == 0
    assert capsys.readouterr().out.strip() == data_hash({"humidity": 40, "temp": 23.4})


def test_status(tmp_path, capsys):
    db = tmp_path / "ledger.db"
    make_ledger(db)
    assert main(["status", "--db", str(db)]) == 0
    status = json.loads(capsys.readouterr().out)
    assert status["owner"] == OWNER
    assert status["device_count"] == 1
    assert status["record_count"] == 1
    assert status["events"]["entries"] == 4


def test_status_missing_db(tmp_path):
    assert main(["status", "--db", str(tmp_path / "nope.db")]) == 1


def test_export_verify_replay(tmp_path, capsys):
    db = tmp_path / "ledger.db"
    export = tmp_path / "events.json"
    make_ledger(db)

    assert main(["export-events", "--db", str(db), "-o", str(export)]) == 0
    assert main(["verify-events", "-f", str(export)]) == 0
    capsys.readouterr()

    assert main(["replay", "-f", str(export)]) == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["record_count"] == 1
    assert summary["devices"] == [device_id_hash("sensor-01")]


def test_verify_detects_tampering(tmp_path):
    db = tmp_path / "ledger.db"
    export = tmp_path / "events.json"
    make_ledger(db)
    main(["export-events", "--db", str(db), "-o", str(export)])

    entries = json.loads(export.read_text())
    entries[1]["body"]["owner"] = "0x" + "f" * 40
    export.write_text(json.dumps(entries))

    assert main(["verify-events", "-f", str(export)]) == 1
    assert main(["replay", "-f", str(export)]) == 1


def test_no_command():
    assert main([]) == 2
