"""
Role resolution for VATSIM members.

Maps a member's VATSIM ratings and logged pilot time onto the Discord
roles configured in ``config.yaml``. Everything in here is pure: the
caller fetches the data and applies the resulting delta.
"""

from typing import Dict, Hashable, Iterable, Optional, Set

from .config import RoleConfig
from .vatsim import MemberData, PilotStats

# VATSIM ATC rating codes
ATC_RATINGS = {
    -1: "INA",
    0: "SUS",
    1: "OBS",
    2: "S1",
    3: "S2",
    4: "S3",
    5: "C1",
    6: "C2",
    7: "C3",
    8: "I1",
    9: "I2",
    10: "I3",
    11: "SUP",
    12: "ADM",
}

# VATSIM pilot rating codes (bit flags on the VATSIM side)
PILOT_RATINGS = {
    0: "NEW",
    1: "PPL",
    3: "IR",
    7: "CMEL",
    15: "ATPL",
    31: "FI",
    63: "FE",
}

OBSERVER_RATING = 1


def atc_label(rating: int) -> str:
    """Short name for an ATC rating code."""
    return ATC_RATINGS.get(rating, f"Unknown ({rating})")


def pilot_label(rating: int) -> str:
    """Short name for a pilot rating code."""
    return PILOT_RATINGS.get(rating, f"Unknown ({rating})")


def qualifying_hour_tier(total_hours: float, thresholds: Iterable[float]) -> Optional[float]:
    """
    Pick the highest hour tier a pilot has reached.

    Args:
        total_hours: Logged pilot hours
        thresholds: Configured hour thresholds

    Returns:
        The largest threshold not above ``total_hours``, or None when the
        pilot is below every threshold
    """
    for threshold in sorted(thresholds, reverse=True):
        if total_hours >= threshold:
            return threshold
    return None


class RoleResolution:
    """Roles to add and remove for one member, plus values for display."""

    def __init__(self, to_add: Set[Hashable], to_remove: Set[Hashable],
                 atc_label: str, pilot_label: str, total_hours: float):
        self.to_add = to_add
        self.to_remove = to_remove
        self.atc_label = atc_label
        self.pilot_label = pilot_label
        self.total_hours = total_hours

    @property
    def derived(self) -> Dict[str, object]:
        return {
            'atc_label': self.atc_label,
            'pilot_label': self.pilot_label,
            'total_hours': self.total_hours,
        }

    def pending(self, current_roles: Iterable[Hashable]) -> "RoleResolution":
        """Narrow the delta to the changes the member doesn't already reflect."""
        current = set(current_roles)
        return RoleResolution(
            self.to_add - current,
            self.to_remove & current,
            self.atc_label,
            self.pilot_label,
            self.total_hours,
        )

    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove

    def __repr__(self) -> str:
        return f"RoleResolution(to_add={self.to_add!r}, to_remove={self.to_remove!r})"


def _exclusive_category(role_map: Dict[object, Hashable], key: object,
                        current: Set[Hashable], remove_others: bool,
                        to_add: Set[Hashable], to_remove: Set[Hashable]) -> None:
    target = role_map.get(key)
    if target is not None:
        to_add.add(target)

    if remove_others:
        for role_id in role_map.values():
            if role_id != target and role_id in current:
                to_remove.add(role_id)


def resolve_roles(current_roles: Iterable[Hashable], member: MemberData,
                  stats: PilotStats, config: RoleConfig) -> RoleResolution:
    """
    Work out which roles a member should gain and lose.

    Each category (verified, ATC rating, default ATC, pilot rating, hour
    tier) is resolved on its own. Roles already held may appear in
    ``to_add``; use :meth:`RoleResolution.pending` to drop those.
    """
    current = set(current_roles)
    to_add: Set[Hashable] = set()
    to_remove: Set[Hashable] = set()

    if config.verified_role is not None:
        to_add.add(config.verified_role)

    _exclusive_category(config.atc_roles, member.rating, current,
                        config.remove_old_atc_roles, to_add, to_remove)

    if config.default_atc_role is not None:
        if member.rating > OBSERVER_RATING:
            to_add.add(config.default_atc_role)
        elif config.default_atc_role in current:
            to_remove.add(config.default_atc_role)

    _exclusive_category(config.pilot_rating_roles, member.pilotrating, current,
                        config.remove_old_pilot_rating_roles, to_add, to_remove)

    # Every other tier goes, higher ones included, when removal is enabled
    total_hours = stats.total_hours
    tier = qualifying_hour_tier(total_hours, config.pilot_hour_roles.keys())
    _exclusive_category(config.pilot_hour_roles, tier, current,
                        config.remove_lower_hour_roles, to_add, to_remove)

    # A role granted by one category is never taken away by another
    to_remove -= to_add

    return RoleResolution(
        to_add,
        to_remove,
        atc_label(member.rating),
        pilot_label(member.pilotrating),
        total_hours,
    )
