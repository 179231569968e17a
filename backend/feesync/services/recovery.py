"""
Fault classifier — maps each page outcome to the batch's next move.

Batch states:
    FETCHING  -> request the page at the current cursor
    FLUSHING  -> persist what the batch has gathered so far
    BACKOFF   -> sleep out a rate limit
    ADVANCING -> batch finished (fully or not), move to the next one
    DONE      -> all batches processed
    ABORTED   -> run failed

Transition table (outcome -> plan):

    Ok + cursor     FETCHING next page after the inter-page delay
    Ok, last page   FLUSHING -> ADVANCING
    RateLimited     FLUSHING -> BACKOFF -> refresh token -> FETCHING same batch, cursor reset
    TokenExpired    FLUSHING -> refresh token -> ADVANCING (rest of batch skipped, recorded)
                    or, with the "retry" policy, FETCHING same batch, cursor reset
    HardError       FLUSHING -> ABORTED

Rate limits restart the whole batch because the provider cursor may not
survive the wait; batches are small, which bounds the redo.
"""
from dataclasses import dataclass
from enum import Enum

from feesync.schemas.finances import (
    PageHardError,
    PageOk,
    PageOutcome,
    PageRateLimited,
    PageTokenExpired,
)

TOKEN_EXPIRED_SKIP = "skip"
TOKEN_EXPIRED_RETRY = "retry"


class BatchState(str, Enum):
    FETCHING = "fetching"
    FLUSHING = "flushing"
    BACKOFF = "backoff"
    ADVANCING = "advancing"
    DONE = "done"
    ABORTED = "aborted"


class RecoveryAction(str, Enum):
    NEXT_PAGE = "next_page"
    COMPLETE_BATCH = "complete_batch"
    RESTART_BATCH = "restart_batch"
    SKIP_TO_NEXT_BATCH = "skip_to_next_batch"
    ABORT_RUN = "abort_run"


@dataclass(frozen=True)
class RecoveryPlan:
    action: RecoveryAction
    absorb: bool = False
    flush_first: bool = False
    backoff: bool = False
    refresh_token: bool = False

    @property
    def next_state(self) -> BatchState:
        if self.action == RecoveryAction.ABORT_RUN:
            return BatchState.ABORTED
        if self.action in (RecoveryAction.COMPLETE_BATCH, RecoveryAction.SKIP_TO_NEXT_BATCH):
            return BatchState.ADVANCING
        return BatchState.FETCHING


NEXT_PAGE = RecoveryPlan(RecoveryAction.NEXT_PAGE, absorb=True)
COMPLETE_BATCH = RecoveryPlan(RecoveryAction.COMPLETE_BATCH, absorb=True, flush_first=True)
RESTART_AFTER_BACKOFF = RecoveryPlan(
    RecoveryAction.RESTART_BATCH, flush_first=True, backoff=True, refresh_token=True,
)
RESTART_WITH_NEW_TOKEN = RecoveryPlan(
    RecoveryAction.RESTART_BATCH, flush_first=True, refresh_token=True,
)
SKIP_WITH_NEW_TOKEN = RecoveryPlan(
    RecoveryAction.SKIP_TO_NEXT_BATCH, flush_first=True, refresh_token=True,
)
ABORT = RecoveryPlan(RecoveryAction.ABORT_RUN, flush_first=True)


def classify(outcome: PageOutcome, token_expired_policy: str = TOKEN_EXPIRED_SKIP) -> RecoveryPlan:
    """Return the recovery plan for one fetch outcome."""
    if isinstance(outcome, PageOk):
        return NEXT_PAGE if outcome.next_cursor else COMPLETE_BATCH
    if isinstance(outcome, PageRateLimited):
        return RESTART_AFTER_BACKOFF
    if isinstance(outcome, PageTokenExpired):
        if token_expired_policy == TOKEN_EXPIRED_RETRY:
            return RESTART_WITH_NEW_TOKEN
        return SKIP_WITH_NEW_TOKEN
    if isinstance(outcome, PageHardError):
        return ABORT
    raise TypeError(f"Unknown page outcome: {outcome!r}")
