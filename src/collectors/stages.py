"""Stage results and the failure policy shared by the refresh pipelines"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class FailureScope(Enum):
    """How far a stage failure reaches"""
    CYCLE = "cycle"      # abort the whole refresh
    NETWORK = "network"  # drop the current network, continue with the next
    PAGE = "page"        # skip one page, keep the rest
    RECORD = "record"    # drop or pass through one record


# (resource, stage) -> scope
FAILURE_POLICY = {
    ("products", "first_page"): FailureScope.NETWORK,
    ("products", "page"): FailureScope.PAGE,
    ("products", "enrich"): FailureScope.RECORD,
    ("products", "store"): FailureScope.NETWORK,
    ("products", "save_network"): FailureScope.CYCLE,
    ("products", "save_combined"): FailureScope.CYCLE,
    ("protocols", "fetch"): FailureScope.CYCLE,
    ("protocols", "validate"): FailureScope.RECORD,
    ("protocols", "store"): FailureScope.CYCLE,
    ("protocols", "save"): FailureScope.CYCLE,
    ("tokens", "fetch"): FailureScope.CYCLE,
    ("tokens", "validate"): FailureScope.RECORD,
    ("tokens", "store"): FailureScope.CYCLE,
    ("tokens", "save"): FailureScope.CYCLE,
}


@dataclass
class StageResult:
    """Outcome of one stage: a value, or the error that stopped it"""
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any) -> "StageResult":
        return cls(value=value)

    @classmethod
    def failure(cls, error: BaseException, value: Any = None) -> "StageResult":
        return cls(value=value, error=error)

    def unwrap(self) -> Any:
        if self.error is not None:
            raise self.error
        return self.value


def failure_scope(resource: str, stage: str) -> FailureScope:
    try:
        return FAILURE_POLICY[(resource, stage)]
    except KeyError:
        raise KeyError(f"No failure policy for {resource}/{stage}") from None


def run_stage(resource: str, stage: str, func: Callable, *args, **kwargs) -> StageResult:
    """
    Run one stage under the failure policy.

    Failures scoped to the whole cycle propagate; narrower failures are
    logged and returned as a failed StageResult for the caller to act on.
    """
    scope = failure_scope(resource, stage)
    try:
        return StageResult.success(func(*args, **kwargs))
    except Exception as e:
        if scope is FailureScope.CYCLE:
            raise
        logger.warning("%s/%s failed (%s scope): %s", resource, stage, scope.value, e)
        return StageResult.failure(e)


def cycle_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp without fractional seconds, shared by one refresh cycle"""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


@contextmanager
def refresh_lock(db, resource: str):
    """Hold the per-resource advisory lock when a database is available"""
    if db is None:
        yield
        return
    with db.advisory_lock(f"refresh:{resource}"):
        yield
