#!/usr/bin/env python3
"""
iotledger Command Line Interface

Usage:
    iotledger hash-id <identifier>
    iotledger hash-payload --file <file>
    iotledger status --db <path>
    iotledger export-events --db <path> [--output <file>]
    iotledger verify-events --file <export>
    iotledger replay --file <export>
"""

import argparse
import json
import sys
from pathlib import Path


def load_json(path: str):
    """Load JSON from file."""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def save_json(data, path: str):
    """Save JSON to file."""
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)


def _open_existing(db_path: str):
    from iotledger import LedgerStore

    if db_path != ":memory:" and not Path(db_path).exists():
        print(f"No ledger database at {db_path}", file=sys.stderr)
        return None
    store = LedgerStore(db_path)
    if not store.is_bootstrapped():
        print(f"{db_path} has not been bootstrapped", file=sys.stderr)
        store.close()
        return None
    return store


def cmd_hash_id(args):
    """Compute the registry key for a device identifier."""
    from iotledger import device_id_hash

    print(device_id_hash(args.identifier))
    return 0


def cmd_hash_payload(args):
    """Compute the data hash of a JSON payload."""
    from iotledger import data_hash

    print(data_hash(load_json(args.file)))
    return 0


def cmd_status(args):
    """Print registry and ledger status."""
    from iotledger import LedgerService

    store = _open_existing(args.db)
    if store is None:
        return 1
    service = LedgerService(store)
    try:
        status = {
            "owner": service.authority.owner(),
            "authorized_submitter": service.authority.authorized_submitter(),
            "registry_fee": service.registry.fee(),
            "paused": service.registry.is_paused(),
            **service.stats(),
            "tables": store.get_db_stats(),
            "events": service.events.proof(),
        }
    finally:
        service.close()
    print(json.dumps(status, indent=2))
    return 0


def cmd_export_events(args):
    """Export the full event log."""
    from iotledger import EventLog

    store = _open_existing(args.db)
    if store is None:
        return 1
    try:
        entries = EventLog(store).export()
    finally:
        store.close()

    if args.output:
        save_json(entries, args.output)
        print(f"Exported {len(entries)} events to: {args.output}", file=sys.stderr)
    else:
        print(json.dumps(entries, indent=2))
    return 0


def cmd_verify_events(args):
    """Verify the hash chain of an exported event log."""
    from iotledger import verify_chain

    entries = load_json(args.file)
    ok, bad_seq = verify_chain(entries)
    if ok:
        print(f"✓ chain intact ({len(entries)} entries)")
        return 0
    print(f"✗ chain broken at seq {bad_seq}")
    return 1


def cmd_replay(args):
    """Rebuild ledger state from an exported event log and print a summary."""
    from iotledger import replay, verify_chain

    entries = load_json(args.file)
    ok, bad_seq = verify_chain(entries)
    if not ok:
        print(f"✗ refusing to replay: chain broken at seq {bad_seq}", file=sys.stderr)
        return 1

    state = replay(entries)
    summary = {
        "owner": state.owner,
        "authorized_submitter": state.authorized_submitter,
        "registry_fee": state.registry_fee,
        "paused": state.paused,
        "device_count": state.total_devices,
        "record_count": state.total_records,
        "analytics_count": state.total_analytics,
        "proof_count": state.total_proofs,
        "devices": sorted(state.devices),
    }
    print(json.dumps(summary, indent=2))
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="iotledger",
        description="iotledger CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  iotledger hash-id sensor-01
  iotledger hash-payload -f reading.json
  iotledger status --db data/iotledger.db
  iotledger export-events --db data/iotledger.db -o events.json
  iotledger verify-events -f events.json
  iotledger replay -f events.json
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    hash_id_parser = subparsers.add_parser("hash-id", help="Compute a device id hash")
    hash_id_parser.add_argument("identifier", help="External device identifier")

    hash_payload_parser = subparsers.add_parser("hash-payload", help="Compute a payload data hash")
    hash_payload_parser.add_argument("-f", "--file", required=True, help="Payload JSON file")

    status_parser = subparsers.add_parser("status", help="Show ledger status")
    status_parser.add_argument("--db", required=True, help="Ledger database path")

    export_parser = subparsers.add_parser("export-events", help="Export the event log")
    export_parser.add_argument("--db", required=True, help="Ledger database path")
    export_parser.add_argument("-o", "--output", help="Output file for the export")

    verify_parser = subparsers.add_parser("verify-events", help="Verify an exported event log")
    verify_parser.add_argument("-f", "--file", required=True, help="Event log export JSON file")

    replay_parser = subparsers.add_parser("replay", help="Replay an exported event log")
    replay_parser.add_argument("-f", "--file", required=True, help="Event log export JSON file")

    args = parser.parse_args(argv)

    commands = {
        "hash-id": cmd_hash_id,
        "hash-payload": cmd_hash_payload,
        "status": cmd_status,
        "export-events": cmd_export_events,
        "verify-events": cmd_verify_events,
        "replay": cmd_replay,
    }
    if args.command not in commands:
        parser.print_help()
        return 2
    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
