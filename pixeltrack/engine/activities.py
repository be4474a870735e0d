"""
pixeltrack.engine.activities — Activity Accumulator
====================================================

Sums ``pixels × multiplier`` over the activities a member participates in.
A member participates when their multiplier entry exists and is non-zero.
Pure; no DB I/O.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from pixeltrack.engine.schema import coerce_int

__all__ = ["ActivityContribution", "ActivitySnapshot", "accumulate_activities"]


@dataclass(frozen=True, slots=True)
class ActivitySnapshot:
    id: str
    name: str = "Activity"
    type: str = "other"
    pixels: int = 0
    multipliers: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ActivityContribution:
    activity: ActivitySnapshot
    multiplier: int
    total: int

    @property
    def pixels_per(self) -> int:
        return coerce_int(self.activity.pixels)


def accumulate_activities(
    member_id: str, activities: Iterable[ActivitySnapshot]
) -> list[ActivityContribution]:
    """Return one contribution per activity the member takes part in."""
    contributions: list[ActivityContribution] = []
    for activity in activities:
        multiplier = coerce_int(activity.multipliers.get(member_id))
        if multiplier <= 0:
            continue
        contributions.append(ActivityContribution(
            activity=activity,
            multiplier=multiplier,
            total=coerce_int(activity.pixels) * multiplier,
        ))
    return contributions
