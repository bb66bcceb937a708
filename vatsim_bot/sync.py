"""
Applies resolved role changes to guild members.

Role mutations are attempted one at a time and every outcome is recorded,
so a single forbidden or rate-limited call never stops the rest of a sync.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Hashable, Iterable, List, Optional, TypeVar

import discord

from .config import RoleConfig
from .roles import RoleResolution, resolve_roles
from .vatsim import MemberData, NotLinkedError, PilotStats, VatsimClient, VatsimError

T = TypeVar('T')

ADD = "add"
REMOVE = "remove"
AUDIT_REASON = "VATSIM role sync"


class RoleChange:
    """Outcome of one add or remove call."""

    def __init__(self, role_id: Hashable, action: str, ok: bool, error: Optional[str] = None):
        self.role_id = role_id
        self.action = action
        self.ok = ok
        self.error = error

    def __repr__(self) -> str:
        status = "ok" if self.ok else f"failed: {self.error}"
        return f"RoleChange({self.action} {self.role_id}, {status})"


class SyncResult:
    """Everything that happened while syncing one member."""

    def __init__(self, member_data: Optional[MemberData] = None,
                 resolution: Optional[RoleResolution] = None):
        self.member_data = member_data
        self.resolution = resolution
        self.changes: List[RoleChange] = []

    def record(self, role_id: Hashable, action: str, ok: bool, error: Optional[str] = None) -> None:
        self.changes.append(RoleChange(role_id, action, ok, error))

    @property
    def added(self) -> List[Hashable]:
        return [c.role_id for c in self.changes if c.ok and c.action == ADD]

    @property
    def removed(self) -> List[Hashable]:
        return [c.role_id for c in self.changes if c.ok and c.action == REMOVE]

    @property
    def failed(self) -> List[RoleChange]:
        return [c for c in self.changes if not c.ok]


class BatchReport:
    """Tally of a full-guild sync pass."""

    def __init__(self):
        self.synced = 0
        self.not_linked = 0
        self.failed = 0
        self.changes = 0

    def __repr__(self) -> str:
        return (
            f"BatchReport(synced={self.synced}, not_linked={self.not_linked}, "
            f"failed={self.failed}, changes={self.changes})"
        )


async def apply_role_delta(member: discord.Member, resolution: RoleResolution,
                           result: Optional[SyncResult] = None) -> SyncResult:
    """
    Add and remove roles on a member, one call per role.

    Only changes the member doesn't already reflect are sent. Failures are
    logged and recorded on the result instead of raised.
    """
    result = result or SyncResult(resolution=resolution)
    pending = resolution.pending(role.id for role in member.roles)
    guild = member.guild

    for action, role_ids in ((ADD, pending.to_add), (REMOVE, pending.to_remove)):
        for role_id in sorted(role_ids):
            role = guild.get_role(role_id)
            if role is None:
                logging.warning(f"Role {role_id} not found in guild {guild.id}, skipping {action}")
                result.record(role_id, action, False, "role not found")
                continue

            try:
                if action == ADD:
                    await member.add_roles(role, reason=AUDIT_REASON)
                else:
                    await member.remove_roles(role, reason=AUDIT_REASON)
                result.record(role_id, action, True)
                logging.info(f"{action.capitalize()} role {role.name} ({role_id}) for {member}")
            except discord.Forbidden as e:
                logging.error(f"Missing permission to {action} role {role_id} for {member}: {e}")
                result.record(role_id, action, False, "forbidden")
            except discord.HTTPException as e:
                logging.error(f"Failed to {action} role {role_id} for {member}: {e}")
                result.record(role_id, action, False, str(e))

    return result


async def run_rate_limited(items: Iterable[T], worker: Callable[[T], Awaitable[None]],
                           delay: float,
                           sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> int:
    """
    Run ``worker`` over ``items`` one at a time with a pause between each.

    An exception from one item is logged and the loop moves on.

    Returns:
        Number of items the worker raised for
    """
    errors = 0
    first = True
    for item in items:
        if not first and delay > 0:
            await sleep(delay)
        first = False

        try:
            await worker(item)
        except Exception:
            errors += 1
            logging.exception(f"Error processing {item}")
    return errors


class RoleSyncer:
    """Fetches VATSIM data for members and reconciles their roles."""

    def __init__(self, client: VatsimClient, config: RoleConfig):
        self.client = client
        self.config = config

    async def fetch(self, discord_id: int):
        """
        Look up a Discord user's VATSIM record and pilot statistics.

        Raises:
            NotLinkedError: if the account isn't linked
            UpstreamUnavailableError: if VATSIM can't be reached
        """
        cid = await self.client.get_cid_for_discord(discord_id)
        member_data, stats = await asyncio.gather(
            self.client.get_member(cid),
            self.client.get_pilot_stats(cid),
        )
        return member_data, stats

    def resolve(self, member: discord.Member, member_data: MemberData,
                stats: PilotStats) -> RoleResolution:
        return resolve_roles((role.id for role in member.roles), member_data, stats, self.config)

    async def sync_member(self, member: discord.Member) -> SyncResult:
        """Bring one member's roles in line with their VATSIM record."""
        member_data, stats = await self.fetch(member.id)
        resolution = self.resolve(member, member_data, stats)

        result = SyncResult(member_data, resolution)
        await apply_role_delta(member, resolution, result)

        logging.info(
            f"Synced {member} (CID {member_data.cid}): "
            f"+{len(result.added)} -{len(result.removed)} failed {len(result.failed)}"
        )
        return result

    async def sync_members(self, members: Iterable[discord.Member],
                           delay: Optional[float] = None,
                           sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> BatchReport:
        """
        Sync many members sequentially, pausing between each.

        A failure on one member is logged and counted; the pass always
        runs to the end.
        """
        report = BatchReport()
        delay = self.config.sync_delay if delay is None else delay

        async def worker(member: discord.Member) -> None:
            try:
                result = await self.sync_member(member)
            except NotLinkedError:
                report.not_linked += 1
                logging.debug(f"{member} has no linked VATSIM account")
                return
            except VatsimError as e:
                report.failed += 1
                logging.warning(f"Could not sync {member}: {e}")
                return
            report.synced += 1
            report.changes += len(result.added) + len(result.removed)

        humans = [m for m in members if not m.bot]
        logging.info(f"Starting role sync for {len(humans)} member(s)")
        errors = await run_rate_limited(humans, worker, delay, sleep)
        report.failed += errors
        logging.info(f"Role sync finished: {report}")
        return report
