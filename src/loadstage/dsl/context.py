"""Per-iteration API handed to scenario functions."""

from __future__ import annotations

import asyncio
import dataclasses
import json as jsonlib
import time
from typing import TYPE_CHECKING, Any

from loadstage._internal.errors import RequestError, ScenarioError, TransportError
from loadstage._internal.logging import get_logger
from loadstage.dsl.http_client import Request
from loadstage.metrics.models import CheckResult, IterationResult, RequestOutcome

if TYPE_CHECKING:
    from loadstage._internal.types import CheckMap
    from loadstage.dsl.http_client import Response, Transport

logger = get_logger("dsl.context")


class IterationContext:
    """What a scenario function sees during one iteration.

    Requests go through the transport the virtual user was built with and
    are recorded in issue order together with any checks evaluated against
    their responses.  A failed request is recorded first and then raised as
    :class:`RequestError`, which ends the iteration without stopping the
    virtual user.

    Attributes:
        user_id: Id of the virtual user running this iteration.
        iteration: Zero-based iteration number within that user.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        user_id: int,
        iteration: int,
        base_url: str = "",
        headers: dict[str, str] | None = None,
    ) -> None:
        self.user_id = user_id
        self.iteration = iteration
        self._transport = transport
        self._base_url = base_url.rstrip("/")
        self._headers = dict(headers or {})
        self._outcomes: list[RequestOutcome] = []

    @property
    def last_response(self) -> Response | None:
        """Return the response to the most recent request, if it got one."""
        if not self._outcomes:
            return None
        return self._outcomes[-1].response

    @property
    def outcomes(self) -> tuple[RequestOutcome, ...]:
        """Return the outcomes recorded so far."""
        return tuple(self._outcomes)

    def result(self, duration_ms: float, *, aborted: bool = False) -> IterationResult:
        """Freeze the recorded outcomes into an :class:`IterationResult`."""
        return IterationResult(
            user_id=self.user_id,
            iteration=self.iteration,
            outcomes=tuple(self._outcomes),
            duration_ms=duration_ms,
            aborted=aborted,
        )

    def _resolve(self, url: str) -> str:
        if url.startswith(("http://", "https://")) or not self._base_url:
            return url
        return f"{self._base_url}/{url.lstrip('/')}"

    async def request(
        self,
        method: str,
        url: str,
        *,
        body: bytes | str | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
        name: str | None = None,
    ) -> Response:
        """Send a request and record its outcome.

        Args:
            method: HTTP method.
            url: Absolute URL, or a path joined to the scenario's base URL.
            body: Raw request body.
            json: Object serialised as a JSON body (overrides *body*).
            headers: Extra headers for this request.
            name: Logical name for metric grouping.  Defaults to the URL.

        Returns:
            The response.

        Raises:
            ScenarioError: If the request is malformed.
            RequestError: If the request failed; the outcome is recorded.
        """
        merged = {**self._headers, **(headers or {})}
        if json is not None:
            body = jsonlib.dumps(json).encode("utf-8")
            merged.setdefault("Content-Type", "application/json")

        request = Request(
            method=method,
            url=self._resolve(url),
            body=body,  # type: ignore[arg-type]
            headers=merged,
            name=name or "",
        )

        start = time.monotonic()
        try:
            response = await self._transport.send(request)
        except TransportError as exc:
            latency_ms = (time.monotonic() - start) * 1000
            self._outcomes.append(
                RequestOutcome(
                    request=request,
                    response=None,
                    latency_ms=latency_ms,
                    error_kind=exc.kind,
                    error=str(exc),
                )
            )
            logger.debug(
                "Request %s %s failed for user %d: %s",
                request.method,
                request.url,
                self.user_id,
                exc,
            )
            raise RequestError(exc.kind, str(exc)) from exc

        self._outcomes.append(
            RequestOutcome(request=request, response=response, latency_ms=response.latency_ms)
        )
        return response

    async def get(self, url: str, **kwargs: Any) -> Response:
        """Send a GET request.  See :meth:`request`."""
        return await self.request("GET", url, **kwargs)

    async def head(self, url: str, **kwargs: Any) -> Response:
        """Send a HEAD request.  See :meth:`request`."""
        return await self.request("HEAD", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> Response:
        """Send a POST request.  See :meth:`request`."""
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs: Any) -> Response:
        """Send a PUT request.  See :meth:`request`."""
        return await self.request("PUT", url, **kwargs)

    async def patch(self, url: str, **kwargs: Any) -> Response:
        """Send a PATCH request.  See :meth:`request`."""
        return await self.request("PATCH", url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> Response:
        """Send a DELETE request.  See :meth:`request`."""
        return await self.request("DELETE", url, **kwargs)

    def check(self, response: Response | None, checks: CheckMap) -> bool:
        """Evaluate named predicates against a response.

        Results are attached to the outcome of the request that produced
        *response* (the most recent request if it cannot be matched).  A
        predicate that raises counts as a failed check.

        Args:
            response: Response to check.
            checks: Predicates keyed by check name.

        Returns:
            True if every check passed.

        Raises:
            ScenarioError: If no request has been issued in this iteration.
        """
        if not self._outcomes:
            msg = "check() called before any request in this iteration"
            raise ScenarioError(msg)

        index = len(self._outcomes) - 1
        for i, outcome in enumerate(self._outcomes):
            if response is not None and outcome.response is response:
                index = i
                break

        results: list[CheckResult] = []
        for check_name, predicate in checks.items():
            try:
                passed = bool(predicate(response))
            except Exception:
                logger.debug(
                    "Check %r raised for user %d",
                    check_name,
                    self.user_id,
                    exc_info=True,
                )
                passed = False
            results.append(CheckResult(name=check_name, passed=passed))

        outcome = self._outcomes[index]
        self._outcomes[index] = dataclasses.replace(
            outcome, checks=(*outcome.checks, *results)
        )
        return all(r.passed for r in results)

    async def sleep(self, seconds: float) -> None:
        """Suspend this virtual user for *seconds* without blocking others.

        Raises:
            ScenarioError: If *seconds* is negative.
        """
        if seconds < 0:
            msg = f"sleep duration must be non-negative, got {seconds}"
            raise ScenarioError(msg)
        await asyncio.sleep(seconds)
