"""
In-memory swap registry and pending-claim store.

The registry is the sole producer of new SwapRecord versions. It enforces
the record invariants itself rather than trusting callers:

- one record per hashlock (case-insensitive)
- deployment flags only move false -> true
- status never regresses, and ``completed`` is final
- pending auto-advances to fulfilled once both escrows are deployed

Concurrent writers (one poller per chain, HTTP-triggered claims) are
serialized per hashlock; different hashlocks proceed independently.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from .models import PendingClaim, SwapRecord, SwapStatus, now_ms

logger = structlog.get_logger()


@dataclass(frozen=True)
class Transition:
    """Before/after versions of a record produced by one registry write."""

    before: Optional[SwapRecord]
    after: SwapRecord

    @property
    def created(self) -> bool:
        return self.before is None

    @property
    def status_changed(self) -> bool:
        return self.before is None or self.before.status != self.after.status

    @property
    def became_both_deployed(self) -> bool:
        """True only for the write that completed the deployment pair."""
        was = self.before is not None and self.before.both_deployed
        return self.after.both_deployed and not was


def merge_records(
    existing: Optional[SwapRecord],
    incoming: SwapRecord,
    now: int,
    force: bool = False,
) -> SwapRecord:
    """
    Merge ``incoming`` onto ``existing``.

    ``force`` bypasses flag monotonicity and status finality; it exists for
    operator repair and tests only.
    """
    if existing is None:
        merged = incoming.evolve(created_at=incoming.created_at or now, updated_at=now)
    else:
        if force:
            src_deployed = incoming.src_deployed
            dst_deployed = incoming.dst_deployed
            status = incoming.status
        else:
            src_deployed = existing.src_deployed or incoming.src_deployed
            dst_deployed = existing.dst_deployed or incoming.dst_deployed
            status = max(existing.status, incoming.status, key=lambda s: s.rank)
        merged = incoming.evolve(
            src_deployed=src_deployed,
            dst_deployed=dst_deployed,
            status=status,
            completion_tx_hashes=incoming.completion_tx_hashes or existing.completion_tx_hashes,
            created_at=existing.created_at,
            updated_at=now,
        )

    if merged.status == SwapStatus.PENDING and merged.both_deployed:
        merged = merged.evolve(status=SwapStatus.FULFILLED)
    return merged


class SwapRegistry:
    """Keyed store of swap records indexed by hashlock."""

    def __init__(self) -> None:
        self._records: dict[str, SwapRecord] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def _commit(self, transition: Transition) -> None:
        after = transition.after
        self._records[after.hashlock_key] = after

        logger.info(
            "swap_created" if transition.created else "swap_updated",
            hashlock=after.hashlock,
            status=after.status.value,
            src_escrow=after.src_escrow,
            dst_escrow=after.dst_escrow,
            src_deployed=after.src_deployed,
            dst_deployed=after.dst_deployed,
        )
        if transition.before is not None and transition.status_changed:
            logger.info(
                "swap_status_changed",
                hashlock=after.hashlock,
                old_status=transition.before.status.value,
                new_status=after.status.value,
            )

    async def upsert(self, record: SwapRecord, force: bool = False) -> SwapRecord:
        """Merge ``record`` onto any existing record for its hashlock."""
        return (await self.upsert_transition(record, force=force)).after

    async def upsert_transition(self, record: SwapRecord, force: bool = False) -> Transition:
        """
        Upsert and report the before/after versions.

        A deployed escrow's address came from the chain (event or bytecode)
        and is kept over the address in ``record`` unless ``force`` is set.
        """
        key = record.hashlock_key
        async with self._lock(key):
            existing = self._records.get(key)
            if existing is not None and not force:
                record = record.evolve(
                    src_escrow=existing.src_escrow if existing.src_deployed else record.src_escrow,
                    dst_escrow=existing.dst_escrow if existing.dst_deployed else record.dst_escrow,
                )
            merged = merge_records(existing, record, now_ms(), force=force)
            transition = Transition(before=existing, after=merged)
            self._commit(transition)
            return transition

    async def update(
        self, hashlock: str, force: bool = False, **changes: Any
    ) -> Optional[Transition]:
        """
        Patch fields of an existing record under its lock.

        Returns None when no record exists for the hashlock.
        """
        key = hashlock.lower()
        async with self._lock(key):
            existing = self._records.get(key)
            if existing is None:
                return None
            merged = merge_records(existing, existing.evolve(**changes), now_ms(), force=force)
            transition = Transition(before=existing, after=merged)
            self._commit(transition)
            return transition

    def get_by_hashlock(self, hashlock: str) -> Optional[SwapRecord]:
        return self._records.get(hashlock.lower())

    def list(self, status: Optional[SwapStatus] = None) -> list[SwapRecord]:
        """All records, optionally filtered by status. Order is unspecified."""
        records = list(self._records.values())
        if status is None:
            return records
        return [r for r in records if r.status == SwapStatus(status)]

    def count(self) -> int:
        return len(self._records)


class PendingClaimStore:
    """User-submitted secrets keyed by hashlock until the withdrawal ends."""

    def __init__(self) -> None:
        self._claims: dict[str, PendingClaim] = {}

    def put(self, claim: PendingClaim) -> None:
        self._claims[claim.hashlock_key] = claim
        logger.info(
            "pending_claim_stored",
            hashlock=claim.swap.hashlock,
            user=claim.user_address,
        )

    def get(self, hashlock: str) -> Optional[PendingClaim]:
        return self._claims.get(hashlock.lower())

    def pop(self, hashlock: str) -> Optional[PendingClaim]:
        claim = self._claims.pop(hashlock.lower(), None)
        if claim is not None:
            logger.info("pending_claim_consumed", hashlock=claim.swap.hashlock)
        return claim

    def list(self) -> list[PendingClaim]:
        return list(self._claims.values())

    def __contains__(self, hashlock: str) -> bool:
        return hashlock.lower() in self._claims
