"""Retry and verification profiles per source kind and operation.

"Test connection" fails fast so the user gets quick feedback; "add" and
"reconnect" favor eventual success with longer timeouts and exponential
backoff. Kinds whose catalogs settle slowly get longer verification windows.
"""

from enum import Enum
from typing import Dict, List, Tuple

from duckattach.lifecycle.resilience import RetryPolicy
from duckattach.lifecycle.verification import VerificationPolicy
from duckattach.models import DataSourceKind


class Operation(Enum):
    """Operation classes with distinct retry policies."""

    TEST = "test"
    ADD = "add"
    RECONNECT = "reconnect"


DEFAULT_RETRY_POLICY = RetryPolicy(
    max_retries=3,
    timeout_ms=30000,
    retry_delay_ms=1000,
    exponential_backoff=True,
)

TEST_RETRY_POLICY = RetryPolicy(
    max_retries=1,
    timeout_ms=10000,
    retry_delay_ms=0,
    exponential_backoff=False,
)

ADD_RETRY_POLICY = RetryPolicy(
    max_retries=3,
    timeout_ms=30000,
    retry_delay_ms=2000,
    exponential_backoff=True,
)

RECONNECT_RETRY_POLICY = RetryPolicy(
    max_retries=3,
    timeout_ms=30000,
    retry_delay_ms=2000,
    exponential_backoff=True,
)

# Cross-account attaches need longer to answer a single test
SLOW_TEST_RETRY_POLICY = RetryPolicy(
    max_retries=1,
    timeout_ms=15000,
    retry_delay_ms=0,
    exponential_backoff=False,
)

# MotherDuck reports "Network is not ready" right after the token is set;
# waits of 1.5s, 3s and 6s between the four attempts
MOTHERDUCK_ATTACH_POLICY = RetryPolicy(
    max_retries=4,
    timeout_ms=30000,
    retry_delay_ms=1500,
    exponential_backoff=True,
)

DEFAULT_VERIFICATION_POLICY = VerificationPolicy(max_attempts=3, delay_ms=500)

TEST_VERIFICATION_POLICY = VerificationPolicy(max_attempts=2, delay_ms=250)

ICEBERG_RECONNECT_VERIFICATION_POLICY = VerificationPolicy(
    max_attempts=5, delay_ms=2000, settle_ms=2000
)

MOTHERDUCK_VERIFICATION_POLICY = VerificationPolicy(
    max_attempts=5, delay_ms=1000, settle_ms=1000
)

OPERATION_RETRY_POLICIES: Dict[Operation, RetryPolicy] = {
    Operation.TEST: TEST_RETRY_POLICY,
    Operation.ADD: ADD_RETRY_POLICY,
    Operation.RECONNECT: RECONNECT_RETRY_POLICY,
}

RETRY_PROFILE_OVERRIDES: Dict[Tuple[DataSourceKind, Operation], RetryPolicy] = {
    (DataSourceKind.ICEBERG, Operation.TEST): SLOW_TEST_RETRY_POLICY,
    (DataSourceKind.MOTHERDUCK, Operation.TEST): SLOW_TEST_RETRY_POLICY,
    (DataSourceKind.MOTHERDUCK, Operation.ADD): MOTHERDUCK_ATTACH_POLICY,
    (DataSourceKind.MOTHERDUCK, Operation.RECONNECT): MOTHERDUCK_ATTACH_POLICY,
}

VERIFICATION_PROFILE_OVERRIDES: Dict[
    Tuple[DataSourceKind, Operation], VerificationPolicy
] = {
    (
        DataSourceKind.ICEBERG,
        Operation.RECONNECT,
    ): ICEBERG_RECONNECT_VERIFICATION_POLICY,
    (DataSourceKind.MOTHERDUCK, Operation.ADD): MOTHERDUCK_VERIFICATION_POLICY,
    (DataSourceKind.MOTHERDUCK, Operation.RECONNECT): MOTHERDUCK_VERIFICATION_POLICY,
}


def get_retry_policy(kind: DataSourceKind, operation: Operation) -> RetryPolicy:
    """Get the retry policy for an operation on a source kind."""
    return RETRY_PROFILE_OVERRIDES.get(
        (kind, operation), OPERATION_RETRY_POLICIES[operation]
    )


def get_verification_policy(
    kind: DataSourceKind, operation: Operation
) -> VerificationPolicy:
    """Get the catalog verification policy for an operation on a source kind."""
    override = VERIFICATION_PROFILE_OVERRIDES.get((kind, operation))
    if override is not None:
        return override
    if operation is Operation.TEST:
        return TEST_VERIFICATION_POLICY
    return DEFAULT_VERIFICATION_POLICY


def validate_retry_policy(policy: RetryPolicy) -> bool:
    """Validate a retry policy.

    Args:
        policy: RetryPolicy to validate

    Returns:
        True if valid

    Raises:
        ValueError: If the policy is invalid
    """
    if policy.max_retries < 1:
        raise ValueError("max_retries must be at least 1")
    if policy.timeout_ms < 0:
        raise ValueError("timeout_ms must be non-negative")
    if policy.retry_delay_ms < 0:
        raise ValueError("retry_delay_ms must be non-negative")
    if policy.max_delay_ms < policy.retry_delay_ms:
        raise ValueError("max_delay_ms must be >= retry_delay_ms")
    if not 0.0 <= policy.jitter < 1.0:
        raise ValueError("jitter must be in [0.0, 1.0)")
    return True


def validate_verification_policy(policy: VerificationPolicy) -> bool:
    """Validate a verification policy, raising ValueError when invalid."""
    if policy.max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    if policy.delay_ms < 0 or policy.settle_ms < 0:
        raise ValueError("delay_ms and settle_ms must be non-negative")
    return True


def list_available_profiles() -> List[str]:
    """List every (kind, operation) pair with its retry profile summary."""
    summaries = []
    for kind in DataSourceKind:
        for operation in Operation:
            policy = get_retry_policy(kind, operation)
            summaries.append(
                f"{kind.value}/{operation.value}: {policy.max_retries} attempt(s), "
                f"{policy.timeout_ms}ms timeout"
            )
    return summaries
