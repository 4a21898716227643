"""Health-check ramp: the canonical staged LoadStage scenario.

Ramps to 500 virtual users over 30 seconds, holds for a minute and a half,
then ramps down to zero.  Each user requests the health endpoint, checks
for a 200 and pauses for one second.  Run it with:

    loadstage run examples/health_check.py

Or with shorter stages against another host; ``--base-url`` replaces the
base URL declared below:

    loadstage run examples/health_check.py --base-url http://staging.internal:8080 \
        --stage 5s:20 --stage 10s:20 --stage 5s:0
"""

from __future__ import annotations

from loadstage import IterationContext, scenario


@scenario(
    name="Health Check",
    pause=1.0,
    stages=[("30s", 500), ("1m30s", 500), ("20s", 0)],
    base_url="http://localhost:8080",
)
async def health_check(vu: IterationContext) -> None:
    """GET the health endpoint and check the status."""
    res = await vu.get("/health")
    vu.check(res, {"status was 200": lambda r: r.status == 200})
