"""IntakeGuard: exactly-once admission of webhook events across instances."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from revue.exceptions import ClaimStoreUnavailableError, UnsupportedEventError
from revue.intake.events import IntakeEvent, UnrecognizedEvent
from revue.intake.fingerprint import fingerprint
from revue.models.claims import ACTIVE_CLAIM_PREDICATE, ClaimStatus, ProcessingClaim
from revue.store.dialect import insert_if_absent

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

DEFAULT_MAX_PROCESSING_SECONDS = 30 * 60.0
DEFAULT_REAP_INTERVAL_SECONDS = 5 * 60.0


def default_instance_id() -> str:
    return f"{socket.gethostname()}-{uuid.uuid4().hex[:8]}"


@dataclass(frozen=True, slots=True)
class ClaimResult:
    """Outcome of :meth:`IntakeGuard.claim`.

    Attributes:
        accepted: True if this caller now holds the claim and must process the event.
        claim_id: The new claim on acceptance, the competing active claim on
            duplicate (``None`` if it finished in the meantime).
        is_duplicate: True if another caller holds (or just held) the claim.
        error: Why an unrecognized event was refused.
        fingerprint: The event fingerprint, when one could be computed.
    """

    accepted: bool
    claim_id: str | None = None
    is_duplicate: bool = False
    error: str | None = None
    fingerprint: str | None = None


@dataclass(frozen=True, slots=True)
class ClaimStats:
    active: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.active + self.completed + self.failed


class IntakeGuard:
    """Durable, cross-instance deduplication of inbound events.

    A claim is a row in the claim table.  The partial unique index on
    ``fingerprint WHERE status = 'active'`` turns a single insert-if-absent
    statement into the mutual-exclusion primitive, so N concurrent
    :meth:`claim` calls for one fingerprint, from any number of processes
    sharing the database, accept exactly one.

    Claims left ``active`` for longer than *max_processing_seconds* (a
    crashed worker) are force-failed by :meth:`reap_stale`, which the
    background reaper runs every *reap_interval_seconds*.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        dialect: str = "sqlite",
        instance_id: str | None = None,
        max_processing_seconds: float = DEFAULT_MAX_PROCESSING_SECONDS,
        reap_interval_seconds: float = DEFAULT_REAP_INTERVAL_SECONDS,
        model: type[ProcessingClaim] = ProcessingClaim,
    ) -> None:
        self._session_factory = session_factory
        self._dialect = dialect
        self._instance_id = instance_id or default_instance_id()
        self._max_processing = timedelta(seconds=max_processing_seconds)
        self._reap_interval = reap_interval_seconds
        self._model = model
        self._reaper: asyncio.Task[None] | None = None

    @property
    def instance_id(self) -> str:
        return self._instance_id

    # ------------------------------------------------------------------
    # Claim lifecycle
    # ------------------------------------------------------------------

    async def claim(self, event: IntakeEvent) -> ClaimResult:
        """Try to take the exclusive right to process *event*.

        Unrecognized events are refused without touching the store.  Raises
        :class:`ClaimStoreUnavailableError` if the store cannot be reached;
        that is never reported as a duplicate.
        """
        if isinstance(event, UnrecognizedEvent):
            logger.warning("Refusing unrecognized event %r: %s", event.object_kind, event.reason)
            return ClaimResult(accepted=False, error=event.reason)
        try:
            fp = fingerprint(event)
        except UnsupportedEventError as exc:
            logger.warning("Refusing event without fingerprint: %s", exc)
            return ClaimResult(accepted=False, error=str(exc))

        model = self._model
        claim = model(
            fingerprint=fp,
            event_kind=event.kind,
            resource_id=event.resource_id,
            owner_instance_id=self._instance_id,
        )
        try:
            async with self._session_factory() as session:
                inserted = await insert_if_absent(
                    session,
                    self._dialect,
                    model,
                    claim.model_dump(),
                    ["fingerprint"],
                    conflict_where=ACTIVE_CLAIM_PREDICATE,
                )
                if inserted:
                    await session.commit()
                    logger.info("Claimed %s event %s (%s)", event.kind, fp[:12], claim.id)
                    return ClaimResult(accepted=True, claim_id=claim.id, fingerprint=fp)

                result = await session.execute(
                    select(model.id).where(
                        model.fingerprint == fp,
                        model.status == ClaimStatus.ACTIVE.value,
                    )
                )
                existing_id = result.scalars().first()
                await session.commit()
        except SQLAlchemyError as exc:
            msg = f"Claim store unavailable while claiming {event.kind} event: {exc}"
            raise ClaimStoreUnavailableError(msg) from exc

        logger.info("Duplicate %s event %s, held by %s", event.kind, fp[:12], existing_id)
        return ClaimResult(
            accepted=False,
            claim_id=existing_id,
            is_duplicate=True,
            fingerprint=fp,
        )

    async def complete(self, claim_id: str) -> bool:
        """Mark an active claim completed. Returns False if it was no longer active."""
        return await self._finish(claim_id, ClaimStatus.COMPLETED, None)

    async def fail(self, claim_id: str, reason: str) -> bool:
        """Mark an active claim failed with *reason*, releasing the fingerprint for retries."""
        return await self._finish(claim_id, ClaimStatus.FAILED, reason)

    async def _finish(self, claim_id: str, status: ClaimStatus, error: str | None) -> bool:
        model = self._model
        now = datetime.now(UTC)
        stmt = (
            update(model)
            .where(model.id == claim_id, model.status == ClaimStatus.ACTIVE.value)
            .values(status=status.value, error=error, completed_at=now, updated_at=now)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            msg = f"Claim store unavailable while marking {claim_id} {status.value}: {exc}"
            raise ClaimStoreUnavailableError(msg) from exc

        changed = (result.rowcount or 0) > 0  # type: ignore[attr-defined]
        if changed:
            logger.info("Claim %s %s", claim_id, status.value)
        else:
            logger.warning("Claim %s was not active; cannot mark it %s", claim_id, status.value)
        return changed

    @contextlib.asynccontextmanager
    async def claiming(self, event: IntakeEvent) -> AsyncIterator[ClaimResult]:
        """Claim *event* for the duration of the block.

        On normal exit an accepted claim is completed; if the block raises,
        it is failed with the exception text and the exception propagates.
        Refused claims are yielded untouched.
        """
        result = await self.claim(event)
        if not result.accepted or result.claim_id is None:
            yield result
            return
        try:
            yield result
        except Exception as exc:
            await self.fail(result.claim_id, str(exc) or type(exc).__name__)
            raise
        else:
            await self.complete(result.claim_id)

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    async def stats(self) -> ClaimStats:
        model = self._model
        stmt = select(model.status, func.count()).group_by(model.status)
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).all()
        except SQLAlchemyError as exc:
            msg = f"Claim store unavailable while reading stats: {exc}"
            raise ClaimStoreUnavailableError(msg) from exc
        counts = {status: int(count) for status, count in rows}
        return ClaimStats(
            active=counts.get(ClaimStatus.ACTIVE.value, 0),
            completed=counts.get(ClaimStatus.COMPLETED.value, 0),
            failed=counts.get(ClaimStatus.FAILED.value, 0),
        )

    # ------------------------------------------------------------------
    # Stale-claim reaper
    # ------------------------------------------------------------------

    async def reap_stale(self, now: datetime | None = None) -> int:
        """Force-fail claims active for longer than the processing limit. Returns count."""
        model = self._model
        now = now or datetime.now(UTC)
        cutoff = now - self._max_processing
        limit = int(self._max_processing.total_seconds())
        stmt = (
            update(model)
            .where(model.status == ClaimStatus.ACTIVE.value, model.started_at < cutoff)
            .values(
                status=ClaimStatus.FAILED.value,
                error=f"stale: exceeded maximum processing time of {limit}s",
                completed_at=now,
                updated_at=now,
            )
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            msg = f"Claim store unavailable while reaping stale claims: {exc}"
            raise ClaimStoreUnavailableError(msg) from exc

        reaped = result.rowcount or 0  # type: ignore[attr-defined]
        if reaped:
            logger.warning("Reaped %d stale claim(s)", reaped)
        return reaped

    def start_reaper(self) -> None:
        """Run :meth:`reap_stale` every reap interval in a background task."""
        if self._reaper is not None and not self._reaper.done():
            return
        self._reaper = asyncio.create_task(self._reap_loop(), name="revue-claim-reaper")

    async def stop_reaper(self) -> None:
        task, self._reaper = self._reaper, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _reap_loop(self) -> None:
        while True:
            await asyncio.sleep(self._reap_interval)
            try:
                await self.reap_stale()
            except Exception:
                logger.exception("Stale-claim reaper run failed")
