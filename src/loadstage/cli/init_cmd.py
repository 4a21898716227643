"""``loadstage init``: scaffold a new scenario file from a template."""

from __future__ import annotations

from pathlib import Path
from string import Template

import typer
from rich.console import Console

console = Console(stderr=True)

_SCENARIO_TEMPLATE = Template('''\
"""Load test scenario: $name.

Run with:
    loadstage run $filename
"""

from __future__ import annotations

from loadstage import IterationContext, scenario


@scenario(
    name="$name",
    pause=1.0,
    stages=[("30s", 500), ("1m30s", 500), ("20s", 0)],
)
async def $func_name(vu: IterationContext) -> None:
    """Hit the health endpoint and check it answers 200."""
    res = await vu.get("$url")
    vu.check(res, {"status was 200": lambda r: r.status == 200})
''')


def init_cmd(
    name: str = typer.Argument(
        "my_scenario",
        help="Name for the scenario (used as filename and function name).",
    ),
    url: str = typer.Option(
        "http://localhost:8080/health",
        "--url",
        help="Endpoint the generated scenario requests.",
    ),
) -> None:
    """Scaffold a new scenario file in the current directory."""
    # Sanitise the name for use as a Python identifier
    safe_name = "".join(c if c.isalnum() or c == "_" else "_" for c in name).lower()
    if not safe_name or safe_name[0].isdigit():
        safe_name = "scenario_" + safe_name

    filename = f"{safe_name}.py"
    display_name = name.replace("_", " ").replace("-", " ").title()

    target = Path.cwd() / filename
    if target.exists():
        console.print(f"[red]File already exists:[/red] {filename}")
        raise typer.Exit(code=1)

    content = _SCENARIO_TEMPLATE.substitute(
        name=display_name,
        filename=filename,
        func_name=safe_name,
        url=url,
    )
    target.write_text(content)
    console.print(f"[green]Created scenario:[/green] {filename}")
