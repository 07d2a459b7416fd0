"""Polling instances until they reach a target state."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from loguru import logger
from tenacity import (
    RetryError,
    Retrying,
    retry_if_result,
    stop_after_attempt,
    stop_never,
    wait_fixed,
)

from skytag.cancellation import CancellationToken
from skytag.constants import NodeState
from skytag.core.exceptions import ProviderError, TerminationExhaustedError
from skytag.providers.protocols import EC2Boundary
from skytag.retry import RetryPolicy

log = logger.bind(component="waiter")


@dataclass(frozen=True, slots=True)
class WaitResult:
    """Outcome of a wait. ``states`` holds the last observed state per id."""

    success: bool
    target: NodeState
    states: Mapping[str, NodeState] = field(default_factory=lambda: MappingProxyType({}))


class InstanceStateWaiter:
    """Bounded polling over ``describe_instances``.

    Running out of attempts is not an error: the caller gets a
    ``WaitResult`` with ``success=False`` and decides whether that means
    relaunch or abort.
    """

    def __init__(self, ec2: EC2Boundary, token: CancellationToken | None = None) -> None:
        self._ec2 = ec2
        self._token = token

    def _observe(self, region: str, ids: tuple[str, ...], target: NodeState) -> dict[str, NodeState]:
        described = {i.id: i.node_state for i in self._ec2.describe_instances(region, *ids)}
        # An instance the provider no longer knows about is gone.
        missing = NodeState.TERMINATED if target == NodeState.TERMINATED else NodeState.UNKNOWN
        return {i: described.get(i, missing) for i in ids}

    def await_state(
        self,
        region: str,
        ids: Iterable[str],
        target: NodeState,
        policy: RetryPolicy,
        token: CancellationToken | None = None,
    ) -> WaitResult:
        ids = tuple(dict.fromkeys(ids))
        if not ids:
            return WaitResult(success=True, target=target)

        token = token or self._token or CancellationToken()
        token.raise_if_cancelled()

        def all_in_target(states: dict[str, NodeState]) -> bool:
            return all(s == target for s in states.values())

        retrying = Retrying(
            stop=stop_after_attempt(policy.max_attempts) if policy.bounded else stop_never,
            wait=wait_fixed(policy.period),
            retry=retry_if_result(lambda states: not all_in_target(states)),
            sleep=token.sleep,
            reraise=True,
        )

        log.trace("waiting for {ids} to be {target}", ids=ids, target=target)
        try:
            states = retrying(self._observe, region, ids, target)
        except RetryError as e:
            states = e.last_attempt.result()
            log.debug(
                "gave up waiting for {target}: {states}",
                target=target, states={i: str(s) for i, s in states.items()},
            )
            return WaitResult(success=False, target=target, states=MappingProxyType(states))

        return WaitResult(success=True, target=target, states=MappingProxyType(states))

    def await_running(
        self,
        region: str,
        ids: Iterable[str],
        policy: RetryPolicy,
        token: CancellationToken | None = None,
    ) -> WaitResult:
        return self.await_state(region, ids, NodeState.RUNNING, policy, token)

    def await_terminated(
        self,
        region: str,
        instance_id: str,
        policy: RetryPolicy,
        cycles: RetryPolicy,
        token: CancellationToken | None = None,
    ) -> None:
        """Terminate ``instance_id`` and poll until confirmed, re-issuing the
        terminate call every cycle.

        ``policy`` bounds the polling inside a cycle, ``cycles`` bounds how many
        times terminate is re-issued. Raises TerminationExhaustedError when the
        cycle budget runs out.
        """
        token = token or self._token or CancellationToken()
        attempt = 0
        while True:
            token.raise_if_cancelled()
            attempt += 1
            try:
                self._ec2.terminate_instances(region, instance_id)
            except ProviderError as e:
                if not e.not_found:
                    log.warning(
                        "terminate {id} failed (cycle {n}): {error}",
                        id=instance_id, n=attempt, error=e,
                    )
            result = self.await_state(region, (instance_id,), NodeState.TERMINATED, policy, token)
            if result.success:
                return
            if cycles.exhausted(attempt):
                raise TerminationExhaustedError(instance_id, attempt)
            token.sleep(cycles.period)
