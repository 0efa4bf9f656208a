"""Retry policy and the per-failure recovery decision."""

import random
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping

from ..errors import PERMANENT_KINDS, AgentError, ErrorKind
from ..models.agents import RecoveryStrategy

# Internal errors are retried once
INTERNAL_MAX_INVOCATIONS = 2


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with jitter.

    ``attempts`` is the total number of handler invocations allowed for a
    retryable failure, the first one included.
    """

    attempts: int = 3
    initial_delay: float = 0.5
    factor: float = 2.0
    max_delay: float = 30.0
    jitter: bool = True
    dead_letter_permanent: bool = False

    def delay(self, retry_index: int, rng: random.Random | None = None) -> float:
        """Delay before retry number ``retry_index`` (0-based)."""
        base = self.initial_delay * (self.factor ** retry_index)
        if self.jitter:
            base += (rng or random).uniform(0, self.initial_delay)
        return min(base, self.max_delay)

    def max_invocations(self, kind: ErrorKind) -> int:
        if kind is ErrorKind.INTERNAL:
            return min(self.attempts, INTERNAL_MAX_INVOCATIONS)
        return self.attempts

    @classmethod
    def from_config(cls, data: Mapping[str, Any] | None, base: "RetryPolicy | None" = None) -> "RetryPolicy":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in (data or {}).items() if k in known}
        return replace(base or cls(), **values)


@dataclass(frozen=True)
class RetryDecision:
    strategy: RecoveryStrategy
    delay: float = 0.0
    dead_letter_key: str | None = None

    @property
    def should_retry(self) -> bool:
        return self.strategy is RecoveryStrategy.RETRY


def decide(policy: RetryPolicy, error: AgentError, invocations: int) -> RetryDecision:
    """Decide what happens after ``invocations`` failed handler runs."""
    if error.kind in PERMANENT_KINDS:
        if policy.dead_letter_permanent:
            return RetryDecision(RecoveryStrategy.DEAD_LETTER)
        return RetryDecision(RecoveryStrategy.SKIP)

    if error.kind is ErrorKind.CANCELLED:
        return RetryDecision(RecoveryStrategy.SKIP)

    if invocations < policy.max_invocations(error.kind):
        return RetryDecision(RecoveryStrategy.RETRY, delay=policy.delay(invocations - 1))

    return RetryDecision(RecoveryStrategy.DEAD_LETTER)


class RetryPolicies:
    """Default policy plus overrides keyed by ``agent`` or ``agent.command``."""

    def __init__(self, default: RetryPolicy | None = None, overrides: Mapping[str, RetryPolicy] | None = None):
        self.default = default or RetryPolicy()
        self._overrides = dict(overrides or {})

    @classmethod
    def from_config(cls, retry_config: Mapping[str, Any] | None) -> "RetryPolicies":
        retry_config = dict(retry_config or {})
        raw_overrides = retry_config.pop("overrides", None) or {}
        default = RetryPolicy.from_config(retry_config)
        overrides = {
            key: RetryPolicy.from_config(values, base=default)
            for key, values in raw_overrides.items()
        }
        return cls(default, overrides)

    def set(self, key: str, policy: RetryPolicy) -> None:
        self._overrides[key] = policy

    def for_command(self, agent: str, command_type: str) -> RetryPolicy:
        return (
            self._overrides.get(f"{agent}.{command_type}")
            or self._overrides.get(agent)
            or self.default
        )
