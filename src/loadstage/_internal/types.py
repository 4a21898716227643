"""Shared type aliases for LoadStage."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

# Check predicates keyed by check name, evaluated against a response.
CheckMap = Mapping[str, Callable[[Any], bool]]

# Stage duration as given by users: seconds or a k6 duration string ("1m30s").
DurationLike = float | int | str
