"""Dynamic scenario file loading via importlib."""

from __future__ import annotations

import importlib.util
import sys
from pathlib import Path

from loadstage._internal.errors import ScenarioError
from loadstage.dsl.scenario import ScenarioDefinition


def load_scenario(file_path: str | Path, name: str | None = None) -> ScenarioDefinition:
    """Load a scenario from a Python file.

    Imports the file with ``importlib`` and scans the module globals for
    ``ScenarioDefinition`` instances (created by the ``@scenario``
    decorator).

    Args:
        file_path: Path to the Python scenario file.
        name: Scenario to pick when the file defines several.  Defaults to
            the first one found.

    Returns:
        The matching ``ScenarioDefinition``.

    Raises:
        ScenarioError: If the file does not exist, cannot be imported,
            contains no ``@scenario``-decorated function, or has no
            scenario called *name*.
    """
    path = Path(file_path)

    if not path.exists():
        msg = f"Scenario file not found: {path}"
        raise ScenarioError(msg)

    if path.suffix != ".py":
        msg = f"Scenario file must be a .py file, got: {path}"
        raise ScenarioError(msg)

    module_name = f"loadstage_scenario_{path.stem}"

    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        msg = f"Could not create module spec for: {path}"
        raise ScenarioError(msg)

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module

    try:
        spec.loader.exec_module(module)
    except Exception as exc:
        sys.modules.pop(module_name, None)
        msg = f"Failed to import scenario file {path}: {exc}"
        raise ScenarioError(msg) from exc

    definitions = [obj for obj in vars(module).values() if isinstance(obj, ScenarioDefinition)]

    if not definitions:
        sys.modules.pop(module_name, None)
        msg = (
            f"No @scenario-decorated function found in {path}. "
            f"Decorate an async function with @scenario."
        )
        raise ScenarioError(msg)

    if name is None:
        return definitions[0]

    for definition in definitions:
        if definition.name == name:
            return definition

    available = ", ".join(repr(d.name) for d in definitions)
    msg = f"Scenario {name!r} not found in {path}; available: {available}"
    raise ScenarioError(msg)
