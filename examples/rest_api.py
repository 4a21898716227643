"""Multi-request REST API iteration.

Each iteration lists items, fetches one and creates another, checking
each response.  A failed request ends the iteration early; the user keeps
going on the next one.  Run with:

    loadstage run examples/rest_api.py --stage 20s:50 --stage 1m:50 --stage 10s:0
"""

from __future__ import annotations

import random

from loadstage import IterationContext, scenario


@scenario(
    name="REST API",
    pause=0.5,
    base_url="http://localhost:8080",
    default_headers={"Accept": "application/json"},
)
async def rest_api(vu: IterationContext) -> None:
    """List, read and create items."""
    res = await vu.get("/items", name="List Items")
    vu.check(res, {"list status was 200": lambda r: r.status == 200})

    item_id = random.randint(1, 1000)
    res = await vu.get(f"/items/{item_id}", name="Get Item")
    vu.check(res, {"item found": lambda r: r.status in (200, 404)})

    res = await vu.post(
        "/items",
        json={"name": f"Item-{random.randint(1, 10000)}"},
        name="Create Item",
    )
    vu.check(
        res,
        {
            "created": lambda r: r.status == 201,
            "has id": lambda r: "id" in r.json(),
        },
    )
