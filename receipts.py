"""
receipts.py - Foundation Module

Receipt emission and storage for the chain engine. Engine modules build
receipts with emit_receipt() and hand them to a ReceiptLedger, which keeps a
bounded window in memory and streams every receipt to an optional JSONL sink.
StopRule, the root of every engine error, also lives here.

Payload hashes are dual (SHA256:BLAKE3). StateHash digests are BLAKE3 only.
"""

import hashlib
import json
import os
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Iterator, List, Optional, Tuple, Union

import blake3

__all__ = [
    "dual_hash",
    "digest_bytes",
    "emit_receipt",
    "validate_receipt",
    "write_receipt_jsonl",
    "ReceiptLedger",
    "StopRule",
    "merkle",
    "RECEIPT_ENVELOPE",
    "RECEIPT_SCHEMA",
]

# =============================================================================
# CONSTANTS
# =============================================================================

RECEIPT_ENVELOPE = ("receipt_type", "ts", "tenant_id", "payload_hash")

# receipt_type -> payload fields every receipt of that type carries
RECEIPT_SCHEMA: Dict[str, Tuple[str, ...]] = {
    "chain_step": ("time", "support_size", "entropy", "pruned_mass", "pruned_total",
                   "oracle_calls", "config_hash"),
    "intervention": ("time", "support_size", "entropy", "pruned_mass", "pruned_total",
                     "oracle_calls", "config_hash", "rule_name"),
    "entropy_measurement": ("time", "entropy_before", "entropy_after", "entropy_delta",
                            "support_size"),
    "traversal": ("roots", "nodes", "edges", "expanded", "iteration_limit", "exhaustive"),
    "convergence_check": ("support_size", "iteration_limit", "iterations", "tolerance",
                          "max_deviation", "converged"),
    "cache_invalidation": ("rule_name", "change", "condition", "entries_dropped"),
}


# =============================================================================
# STOPRULE EXCEPTION
# =============================================================================

class StopRule(Exception):
    """Raised when an engine invariant breaks. Never catch silently."""


# =============================================================================
# HASHING
# =============================================================================

def dual_hash(data: Union[bytes, str]) -> str:
    """
    SHA256 and BLAKE3 hex digests of data, joined as "sha256:blake3".

    Strings are hashed as their UTF-8 bytes.
    """
    raw = data.encode("utf-8") if isinstance(data, str) else data
    return hashlib.sha256(raw).hexdigest() + ":" + blake3.blake3(raw).hexdigest()


def digest_bytes(data: bytes, width: int) -> bytes:
    """
    Fixed-width BLAKE3 digest prefix.

    Args:
        data: Bytes to digest
        width: Number of leading digest bytes to keep (1..32)

    Returns:
        bytes: Exactly `width` bytes
    """
    if not 1 <= width <= 32:
        raise ValueError(f"digest width must be within 1..32 bytes, got {width}")
    return blake3.blake3(data).digest()[:width]


def merkle(items: List[Any]) -> str:
    """
    Merkle root over JSON-serializable items, in order.

    Leaves and inner nodes are hashed under distinct prefixes, and an odd
    node at any level is promoted unchanged to the next one.

    Returns:
        str: Root in dual_hash format (dual_hash(b"empty") for no items)
    """
    if not items:
        return dual_hash(b"empty")
    level = [dual_hash("leaf:" + json.dumps(item, sort_keys=True)) for item in items]
    while len(level) > 1:
        paired = [dual_hash("node:" + level[i] + level[i + 1]) for i in range(0, len(level) - 1, 2)]
        if len(level) % 2:
            paired.append(level[-1])
        level = paired
    return level[0]


# =============================================================================
# RECEIPTS
# =============================================================================

def emit_receipt(receipt_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build a receipt for an engine event.

    Args:
        receipt_type: Type identifier (see RECEIPT_SCHEMA)
        data: Payload; tenant_id defaults to 'default'

    Returns:
        dict: Envelope fields (receipt_type, ts, tenant_id, payload_hash) plus the payload
    """
    return {
        "receipt_type": receipt_type,
        "ts": datetime.now(timezone.utc).isoformat(),
        "tenant_id": data.get("tenant_id", "default"),
        "payload_hash": dual_hash(json.dumps(data, sort_keys=True, default=str)),
        **data,
    }


def validate_receipt(receipt: Dict[str, Any]) -> None:
    """Raise StopRule when a receipt lacks its envelope or its type's payload fields."""
    required = RECEIPT_ENVELOPE + RECEIPT_SCHEMA.get(receipt.get("receipt_type"), ())
    missing = [name for name in required if name not in receipt]
    if missing:
        raise StopRule(f"{receipt.get('receipt_type')!r} receipt missing fields {missing}")


def write_receipt_jsonl(receipt: Dict[str, Any], fh) -> None:
    """Append receipt as a single JSON line to an open text handle."""
    fh.write(json.dumps(receipt, separators=(",", ":"), default=str) + "\n")


class ReceiptLedger:
    """
    Receipt store with a bounded in-memory window and an optional JSONL sink.

    Args:
        maxlen: Receipts kept in memory, oldest dropped first (None = unbounded)
        sink: Path appended to on every receipt, or an open text handle

    Every appended receipt is validated, counted in `total` and written to the
    sink, so rolling the memory window over loses nothing that was sunk.
    """

    def __init__(self, maxlen: Optional[int] = None, sink=None):
        if maxlen is not None and maxlen < 0:
            raise ValueError(f"maxlen must be >= 0 or None, got {maxlen}")
        self._buffer: Deque[Dict[str, Any]] = deque(maxlen=maxlen)
        self.sink = sink
        self.total = 0
        self._lock = threading.Lock()

    @property
    def maxlen(self) -> Optional[int]:
        return self._buffer.maxlen

    def append(self, receipt: Dict[str, Any]) -> None:
        validate_receipt(receipt)
        with self._lock:
            self._buffer.append(receipt)
            self.total += 1
            if self.sink is not None:
                self._write(receipt)

    def _write(self, receipt: Dict[str, Any]) -> None:
        if isinstance(self.sink, (str, os.PathLike)):
            with open(self.sink, "a", encoding="utf-8") as fh:
                write_receipt_jsonl(receipt, fh)
        else:
            write_receipt_jsonl(receipt, self.sink)

    def of_type(self, receipt_type: str) -> List[Dict[str, Any]]:
        return [r for r in self if r["receipt_type"] == receipt_type]

    def clear(self) -> None:
        """Empty the in-memory window; the sink and `total` are untouched."""
        with self._lock:
            self._buffer.clear()

    def __len__(self) -> int:
        return len(self._buffer)

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        with self._lock:
            return iter(list(self._buffer))

    def __getitem__(self, index):
        with self._lock:
            return list(self._buffer)[index]
