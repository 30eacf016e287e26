"""SHA-256 helpers: pseudonymous identity digests and the event-log hash chain."""

import hashlib
import json


def hash_address(address: str) -> str:
    """One-way digest of a wallet address. Never reversed inside the registry."""
    return hashlib.sha256(address.encode("utf-8")).hexdigest()


def canonical_json(data: dict) -> str:
    return json.dumps(data or {}, sort_keys=True, separators=(",", ":"), default=str)


def compute_event_hash(
    prev_hash: str | None,
    event_type: str,
    data_json: str,
    timestamp_iso: str,
) -> str:
    payload = "|".join([
        prev_hash or "GENESIS",
        event_type,
        data_json,
        timestamp_iso,
    ])
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
