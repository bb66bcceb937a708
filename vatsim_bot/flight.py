"""
Discord embeds for flight status and role sync replies.
"""

from datetime import datetime, timezone
from typing import Optional

import discord

from .vatsim import PilotPosition

MAX_ROUTE_LENGTH = 200

COLOR_ONLINE = 0x00d26a
COLOR_OFFLINE = 0xff6b6b
COLOR_ERROR = 0xff0000
COLOR_SYNC = 0x2b7fff


def flight_duration(logon_time: datetime, now: Optional[datetime] = None) -> str:
    """Time since logon as whole hours and minutes, e.g. ``2h 5m``."""
    now = now or datetime.now(timezone.utc)
    elapsed = max(int((now - logon_time).total_seconds()), 0)
    hours, remainder = divmod(elapsed, 3600)
    return f"{hours}h {remainder // 60}m"


def truncate_route(route: str, limit: int = MAX_ROUTE_LENGTH) -> str:
    if len(route) > limit:
        return route[:limit] + '...'
    return route


def flight_embed(pilot: PilotPosition, now: Optional[datetime] = None) -> discord.Embed:
    """Build the status embed for a pilot who is online."""
    plan = pilot.flight_plan

    if plan:
        route_summary = f"{plan.departure or 'N/A'} -> {plan.arrival or 'N/A'}"
    else:
        route_summary = 'No flight plan filed'

    embed = discord.Embed(
        title=pilot.callsign,
        description=f"Pilot CID: **{pilot.cid}** is currently online!",
        color=COLOR_ONLINE,
        timestamp=now or datetime.now(timezone.utc)
    )
    embed.add_field(name="Route", value=route_summary, inline=False)
    embed.add_field(name="Aircraft", value=(plan and plan.aircraft) or 'Unknown', inline=True)
    embed.add_field(name="Altitude", value=f"{pilot.altitude:,} ft", inline=True)
    embed.add_field(name="Ground Speed", value=f"{pilot.groundspeed} kts", inline=True)
    embed.add_field(name="Heading", value=f"{pilot.heading}°", inline=True)
    embed.add_field(name="Transponder", value=pilot.transponder or 'N/A', inline=True)
    embed.add_field(name="Flight Time", value=flight_duration(pilot.logon_time, now), inline=True)

    if plan and plan.altitude:
        embed.add_field(name="Filed Altitude", value=str(plan.altitude), inline=True)

    if plan and plan.route:
        embed.add_field(name="Filed Route", value=truncate_route(plan.route), inline=False)

    embed.set_footer(text=f"Position: {pilot.latitude:.4f}, {pilot.longitude:.4f}")
    return embed


def offline_embed(cid: int) -> discord.Embed:
    return discord.Embed(
        title="Not Online",
        description=f"Pilot with CID **{cid}** is not currently flying on VATSIM.",
        color=COLOR_OFFLINE,
        timestamp=datetime.now(timezone.utc)
    )


def error_embed(description: str = "Failed to fetch VATSIM data. Please try again later.") -> discord.Embed:
    return discord.Embed(
        title="Error",
        description=description,
        color=COLOR_ERROR,
        timestamp=datetime.now(timezone.utc)
    )


def not_linked_embed() -> discord.Embed:
    return discord.Embed(
        title="VATSIM Account Not Linked",
        description=(
            "Your Discord account isn't linked to a VATSIM account.\n"
            "Link it from the VATSIM member area (my.vatsim.net) and try again."
        ),
        color=COLOR_OFFLINE,
        timestamp=datetime.now(timezone.utc)
    )


def _role_list(role_ids) -> str:
    return ", ".join(f"<@&{role_id}>" for role_id in sorted(role_ids)) or "None"


def sync_embed(result) -> discord.Embed:
    """Summarise a :class:`~vatsim_bot.sync.SyncResult` for the member."""
    member = result.member_data
    resolution = result.resolution

    embed = discord.Embed(
        title="Roles Synced",
        description=f"VATSIM CID **{member.cid}**" + (f" ({member.name})" if member.name else ""),
        color=COLOR_SYNC if not result.failed else COLOR_OFFLINE,
        timestamp=datetime.now(timezone.utc)
    )
    embed.add_field(name="ATC Rating", value=resolution.atc_label, inline=True)
    embed.add_field(name="Pilot Rating", value=resolution.pilot_label, inline=True)
    embed.add_field(name="Pilot Hours", value=f"{resolution.total_hours:.1f}", inline=True)
    embed.add_field(name="Added", value=_role_list(result.added), inline=False)
    embed.add_field(name="Removed", value=_role_list(result.removed), inline=False)

    if result.failed:
        embed.add_field(name="Failed", value=_role_list(c.role_id for c in result.failed), inline=False)

    return embed


def batch_embed(report) -> discord.Embed:
    """Summarise a full-guild :class:`~vatsim_bot.sync.BatchReport`."""
    embed = discord.Embed(
        title="Role Sync Complete",
        color=COLOR_SYNC,
        timestamp=datetime.now(timezone.utc)
    )
    embed.add_field(name="Synced", value=str(report.synced), inline=True)
    embed.add_field(name="Not Linked", value=str(report.not_linked), inline=True)
    embed.add_field(name="Failed", value=str(report.failed), inline=True)
    embed.add_field(name="Role Changes", value=str(report.changes), inline=True)
    return embed
