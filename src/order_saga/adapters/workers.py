"""Stage workers: simulated (demo) and HTTP.

The simulated worker reproduces the demo behaviour of random failures and
latency through pluggable strategies, so production code can replace it
with :class:`HttpStageWorker` (or any ``IStageWorker``) without touching
the orchestrator.
"""

from __future__ import annotations

import asyncio
import logging
import random
import uuid
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from ..exceptions import StageUnavailableError
from ..saga.outcomes import DomainFailure, Success

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger("order_saga.workers")

#: Business reasons reported by the simulated collaborators.
DEFAULT_FAILURE_REASONS: dict[str, str] = {
    "inventory": "Simulated inventory failure",
    "payment": "Payment declined",
    "shipping": "Shipping failed",
    "release_inventory": "Inventory release rejected",
    "refund_payment": "Refund rejected",
}

#: Domain statuses an HTTP stage endpoint uses for a business rejection.
DOMAIN_FAILURE_STATUSES = frozenset({409, 422})


class DecisionStrategy(Protocol):
    """Decides the outcome of one simulated step."""

    def __call__(
        self, step: str, order_id: str, correlation_id: str
    ) -> Success | DomainFailure: ...


class DelayStrategy(Protocol):
    """Seconds a simulated step takes."""

    def __call__(self, step: str) -> float: ...


def _success_payload(step: str) -> dict[str, Any]:
    if step == "payment":
        return {"authorized": True, "transaction_id": f"txn_{uuid.uuid4().hex[:12]}"}
    if step == "shipping":
        return {"shipped": True, "tracking_number": f"TRACK-{uuid.uuid4().hex[:10]}"}
    if step == "inventory":
        return {"reserved": True}
    return {"compensated": True}


class FailureRateDecision:
    """Fails each step with a fixed probability.

    Steps without a configured rate (e.g. compensations) always succeed.
    Pass a seeded ``random.Random`` for reproducible runs.
    """

    def __init__(
        self,
        rates: Mapping[str, float],
        rng: random.Random | None = None,
        reasons: Mapping[str, str] | None = None,
    ) -> None:
        self._rates = dict(rates)
        self._rng = rng or random.Random()
        self._reasons = {**DEFAULT_FAILURE_REASONS, **(reasons or {})}

    def __call__(
        self, step: str, order_id: str, correlation_id: str
    ) -> Success | DomainFailure:
        if self._rng.random() < self._rates.get(step, 0.0):
            return DomainFailure(self._reasons.get(step, f"{step} rejected"))
        return Success(_success_payload(step))


class UniformDelay:
    """Uniformly random latency per step, bounds in milliseconds."""

    def __init__(
        self,
        bounds_ms: Mapping[str, tuple[int, int]],
        rng: random.Random | None = None,
    ) -> None:
        self._bounds = dict(bounds_ms)
        self._rng = rng or random.Random()

    def __call__(self, step: str) -> float:
        low, high = self._bounds.get(step, (0, 0))
        return self._rng.uniform(low, high) / 1000.0


class SimulatedStageWorker:
    """In-process stand-in for the inventory/payment/shipping services."""

    def __init__(
        self,
        decide: DecisionStrategy,
        delay: DelayStrategy | None = None,
    ) -> None:
        self._decide = decide
        self._delay = delay

    async def invoke(
        self, step: str, order_id: str, correlation_id: str
    ) -> Success | DomainFailure:
        if self._delay is not None:
            seconds = self._delay(step)
            if seconds > 0:
                await asyncio.sleep(seconds)
        return self._decide(step, order_id, correlation_id)


class HttpStageWorker:
    """Calls a remote stage service over HTTP.

    ``POST {base_url}/{step}`` with ``{"orderId", "correlationId"}``:

    * 2xx → ``Success`` carrying the JSON body;
    * 409 / 422 → ``DomainFailure`` with the body's ``reason`` (or
      ``error``) field;
    * anything else, or a transport error → ``StageUnavailableError``.

    The deadline is imposed by the caller (the stage executor).
    """

    def __init__(
        self,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client
        self._headers = dict(headers or {})

    async def invoke(
        self, step: str, order_id: str, correlation_id: str
    ) -> Success | DomainFailure:
        if self._client is not None:
            return await self._post(self._client, step, order_id, correlation_id)
        async with httpx.AsyncClient() as client:
            return await self._post(client, step, order_id, correlation_id)

    async def _post(
        self,
        client: httpx.AsyncClient,
        step: str,
        order_id: str,
        correlation_id: str,
    ) -> Success | DomainFailure:
        url = f"{self._base_url}/{step}"
        headers = {"X-Correlation-ID": correlation_id, **self._headers}
        try:
            resp = await client.post(
                url,
                json={"orderId": order_id, "correlationId": correlation_id},
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise StageUnavailableError(f"{step} call failed: {exc}") from exc

        if resp.is_success:
            return Success(_json_body(resp))
        if resp.status_code in DOMAIN_FAILURE_STATUSES:
            body = _json_body(resp)
            reason = body.get("reason") or body.get("error") or resp.reason_phrase
            return DomainFailure(str(reason or f"{step} rejected"))
        logger.warning(
            "Stage %s returned HTTP %d for order %s",
            step,
            resp.status_code,
            order_id,
        )
        raise StageUnavailableError(f"{step} returned HTTP {resp.status_code}")


def _json_body(resp: httpx.Response) -> dict[str, Any]:
    if not resp.content:
        return {}
    try:
        body = resp.json()
    except ValueError:
        return {"body": resp.text}
    return body if isinstance(body, dict) else {"body": body}
