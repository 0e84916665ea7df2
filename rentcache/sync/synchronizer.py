"""
Pull/apply/push synchronization between the local store and the remote API.

One cycle walks IDLE -> PULLING -> APPLYING -> PUSHING -> COMMITTED and falls
back to IDLE on any failure. The checkpoint is written last, so a cycle that
dies half way is simply repeated: applying a pulled range is an upsert and
re-applying it changes nothing.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional, Tuple

from rentcache.exceptions import RentCacheError
from rentcache.models import PullResponse, USERS
from rentcache.store import LocalStore

from .connectivity import ConnectivityMonitor
from .remote_gateway import RemoteGateway

logger = logging.getLogger(__name__)


class SyncState(Enum):
    """States of a sync cycle."""
    IDLE = "idle"
    PULLING = "pulling"
    APPLYING = "applying"
    PUSHING = "pushing"
    COMMITTED = "committed"


class SyncStatus(Enum):
    """How a call to :meth:`Synchronizer.synchronize` ended."""
    COMMITTED = "committed"
    FAILED = "failed"
    SKIPPED_OFFLINE = "skipped_offline"
    COALESCED = "coalesced"


@dataclass
class StepResult:
    """Result of one state transition: a value on success, the error otherwise."""
    ok: bool
    value: Any = None
    error: Optional[Exception] = None

    @classmethod
    def success(cls, value: Any = None) -> 'StepResult':
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: Exception, value: Any = None) -> 'StepResult':
        return cls(ok=False, value=value, error=error)


@dataclass
class SyncOutcome:
    """Summary of a sync cycle."""
    status: SyncStatus
    state: SyncState
    checkpoint: Optional[int] = None
    pulled: int = 0
    pushed: int = 0
    discarded: int = 0
    push_error: Optional[Exception] = None
    error: Optional[Exception] = None
    finished_at: datetime = field(default_factory=datetime.now)

    @property
    def succeeded(self) -> bool:
        return self.status is SyncStatus.COMMITTED


class Synchronizer:
    """
    Runs sync cycles, at most one at a time.

    A call made while a cycle is in flight returns COALESCED immediately and
    schedules exactly one more cycle once the current one finishes.
    """

    def __init__(
        self,
        store: LocalStore,
        gateway: RemoteGateway,
        monitor: ConnectivityMonitor,
        push_collections: Tuple[str, ...] = (USERS,),
        push_batch_size: int = 100
    ):
        self.store = store
        self.gateway = gateway
        self.monitor = monitor
        self.push_collections = tuple(push_collections)
        self.push_batch_size = push_batch_size

        self._state = SyncState.IDLE
        self._flag_lock = threading.Lock()
        self._running = False
        self._rerun_requested = False
        self.last_outcome: Optional[SyncOutcome] = None

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_running(self) -> bool:
        with self._flag_lock:
            return self._running

    def _set_state(self, state: SyncState) -> None:
        logger.debug(f"Sync state: {self._state.value} -> {state.value}")
        self._state = state

    def synchronize(self) -> SyncOutcome:
        """
        Run a sync cycle, or coalesce with the one already running.

        Returns:
            The outcome of the last cycle this call ran
        """
        with self._flag_lock:
            if self._running:
                self._rerun_requested = True
                logger.debug("Sync already in flight; coalescing request")
                return SyncOutcome(SyncStatus.COALESCED, self._state)
            self._running = True

        try:
            while True:
                outcome = self._run_cycle()
                self.last_outcome = outcome
                with self._flag_lock:
                    if not self._rerun_requested:
                        self._running = False
                        return outcome
                    self._rerun_requested = False
                logger.debug("Running coalesced sync cycle")
        except BaseException:
            with self._flag_lock:
                self._running = False
                self._rerun_requested = False
            self._set_state(SyncState.IDLE)
            raise

    def _run_cycle(self) -> SyncOutcome:
        if not self.monitor.is_connected:
            logger.info(f"Skipping sync: connectivity is {self.monitor.state.value}")
            return SyncOutcome(SyncStatus.SKIPPED_OFFLINE, SyncState.IDLE)

        self._set_state(SyncState.PULLING)
        checkpoint = self._read_checkpoint()
        if not checkpoint.ok:
            return self._abort(SyncState.PULLING, checkpoint.error)

        pulled = self._pull(checkpoint.value)
        if not pulled.ok:
            return self._abort(SyncState.PULLING, pulled.error, checkpoint.value)
        response: PullResponse = pulled.value

        self._set_state(SyncState.APPLYING)
        applied = self._apply(response)
        if not applied.ok:
            return self._abort(SyncState.APPLYING, applied.error, checkpoint.value)

        self._set_state(SyncState.PUSHING)
        pushed = self._push()

        self._set_state(SyncState.COMMITTED)
        committed = self._commit(response.latest_version)
        if not committed.ok:
            return self._abort(SyncState.COMMITTED, committed.error, checkpoint.value)

        self._set_state(SyncState.IDLE)
        logger.info(
            f"Sync committed at version {committed.value}: "
            f"{response.total_changes()} pulled, {pushed.value} pushed"
        )
        return SyncOutcome(
            SyncStatus.COMMITTED,
            SyncState.COMMITTED,
            checkpoint=committed.value,
            pulled=response.total_changes(),
            pushed=pushed.value,
            discarded=applied.value,
            push_error=pushed.error,
        )

    def _abort(self, state: SyncState, error: Exception, checkpoint: Optional[int] = None) -> SyncOutcome:
        logger.warning(f"Sync aborted while {state.value}: {error}")
        self._set_state(SyncState.IDLE)
        return SyncOutcome(SyncStatus.FAILED, state, checkpoint=checkpoint, error=error)

    def _read_checkpoint(self) -> StepResult:
        try:
            return StepResult.success(self.store.read_checkpoint())
        except RentCacheError as e:
            return StepResult.failure(e)

    def _pull(self, checkpoint: Optional[int]) -> StepResult:
        try:
            return StepResult.success(self.gateway.pull_changes_since(checkpoint))
        except RentCacheError as e:
            return StepResult.failure(e)

    def _apply(self, response: PullResponse) -> StepResult:
        try:
            return StepResult.success(self.store.apply_changes(response.changes))
        except RentCacheError as e:
            return StepResult.failure(e)

    def _push(self) -> StepResult:
        """
        Push pending mutations collection by collection.

        Failures leave the mutations buffered with their error recorded; the
        cycle goes on to commit regardless.
        """
        pushed = 0
        errors: List[Exception] = []
        for collection in self.push_collections:
            try:
                pending = self.store.mutations.get_pending(collection, limit=self.push_batch_size)
            except RentCacheError as e:
                errors.append(e)
                continue
            if not pending:
                continue

            mutation_ids = [mutation['id'] for mutation in pending]
            change_set = self.store.mutations.to_change_set(pending)
            try:
                self.gateway.push_local_changes(change_set, collection)
            except RentCacheError as e:
                logger.warning(f"Push of {len(pending)} {collection} mutations failed: {e}")
                errors.append(e)
                self._record_push_failure(mutation_ids, e)
                continue

            try:
                self.store.mutations.mark_sent(mutation_ids)
            except RentCacheError as e:
                # Server has them; a re-push of the same records is an upsert.
                logger.error(f"Pushed {collection} mutations could not be cleared: {e}")
                errors.append(e)
            pushed += len(pending)

        if errors:
            return StepResult.failure(errors[0], value=pushed)
        return StepResult.success(pushed)

    def _record_push_failure(self, mutation_ids: List[int], error: Exception) -> None:
        try:
            self.store.mutations.mark_failed(mutation_ids, str(error))
        except RentCacheError as e:
            logger.error(f"Could not record push failure: {e}")

    def _commit(self, latest_version: int) -> StepResult:
        try:
            return StepResult.success(self.store.write_checkpoint(latest_version))
        except RentCacheError as e:
            return StepResult.failure(e)
