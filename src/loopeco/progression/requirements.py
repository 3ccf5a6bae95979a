"""Achievement requirement kinds.

Requirements are stored on ``achievement_definitions.requirements`` either as
the legacy map form ``{"loops_created": 3}`` (every pair is a minimum-stat
requirement) or as a list of tagged objects::

    [{"kind": "min_stat", "stat": "gifts_sent", "threshold": 10},
     {"kind": "min_level", "level": 5}]

All requirements of a definition must hold (AND). An empty set always holds.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union

from loopeco.progression.level_curve import compute_level


@dataclass(frozen=True)
class MinStatRequirement:
    stat: str
    threshold: float


@dataclass(frozen=True)
class MinLevelRequirement:
    level: int


Requirement = Union[MinStatRequirement, MinLevelRequirement]


def parse_requirements(raw: Any) -> list[Requirement]:
    """Parse the stored JSON form into typed requirements."""
    if raw is None:
        return []

    if isinstance(raw, Mapping):
        return [MinStatRequirement(stat=str(k), threshold=float(v)) for k, v in raw.items()]

    if not isinstance(raw, list):
        raise ValueError(f"Unsupported requirements format: {type(raw).__name__}")

    parsed: list[Requirement] = []
    for item in raw:
        kind = item.get("kind")
        if kind == "min_stat":
            parsed.append(MinStatRequirement(stat=item["stat"], threshold=float(item["threshold"])))
        elif kind == "min_level":
            parsed.append(MinLevelRequirement(level=int(item["level"])))
        else:
            raise ValueError(f"Unknown requirement kind: {kind!r}")
    return parsed


def is_satisfied(requirement: Requirement, stats: Mapping[str, float]) -> bool:
    """Check a single requirement against a stat snapshot. Missing stats fail."""
    if isinstance(requirement, MinStatRequirement):
        value = stats.get(requirement.stat)
        return value is not None and value >= requirement.threshold

    if isinstance(requirement, MinLevelRequirement):
        xp_total = stats.get("xp_total")
        if xp_total is None:
            return False
        return compute_level(int(xp_total))["level"] >= requirement.level

    raise TypeError(f"Unhandled requirement type: {type(requirement).__name__}")


def all_satisfied(requirements: list[Requirement], stats: Mapping[str, float]) -> bool:
    return all(is_satisfied(r, stats) for r in requirements)
