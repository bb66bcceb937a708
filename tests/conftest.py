"""
Test configuration for the VATSIM bot.

Shared fixtures and light stand-ins for the Discord objects the bot
touches (guilds, members, roles, channels).
"""
from types import SimpleNamespace

import discord
import pytest

from vatsim_bot.config import RoleConfig
from vatsim_bot.vatsim import MemberData, NotLinkedError, PilotStats, UpstreamUnavailableError


def http_response(status, reason):
    return SimpleNamespace(status=status, reason=reason)


def forbidden():
    return discord.Forbidden(http_response(403, "Forbidden"), "Missing Permissions")


def not_found():
    return discord.NotFound(http_response(404, "Not Found"), "Unknown Message")


class FakeRole:
    def __init__(self, role_id, name=None):
        self.id = role_id
        self.name = name or f"role-{role_id}"


class FakeGuild:
    def __init__(self, role_ids, guild_id=1, name="Test Guild"):
        self.id = guild_id
        self.name = name
        self._roles = {role_id: FakeRole(role_id) for role_id in role_ids}

    def get_role(self, role_id):
        return self._roles.get(role_id)


class FakeMember:
    def __init__(self, member_id, guild, role_ids=(), bot=False, fail_on=()):
        self.id = member_id
        self.guild = guild
        self.bot = bot
        self.roles = [guild.get_role(r) or FakeRole(r) for r in role_ids]
        self.fail_on = set(fail_on)
        self.calls = []

    @property
    def role_ids(self):
        return {role.id for role in self.roles}

    async def add_roles(self, *roles, reason=None):
        for role in roles:
            self.calls.append(('add', role.id))
            if role.id in self.fail_on:
                raise forbidden()
            self.roles.append(role)

    async def remove_roles(self, *roles, reason=None):
        for role in roles:
            self.calls.append(('remove', role.id))
            if role.id in self.fail_on:
                raise forbidden()
            self.roles = [r for r in self.roles if r.id != role.id]

    def __str__(self):
        return f"member-{self.id}"


class FakeVatsimClient:
    """In-memory replacement for VatsimClient."""

    def __init__(self, links=None, members=None, stats=None, down=()):
        self.links = links or {}
        self.members = members or {}
        self.stats = stats or {}
        self.down = set(down)

    async def get_cid_for_discord(self, discord_id):
        if discord_id in self.down:
            raise UpstreamUnavailableError("https://api.vatsim.net/v2/members/discord", status=503)
        if discord_id not in self.links:
            raise NotLinkedError(discord_id)
        return self.links[discord_id]

    async def get_member(self, cid):
        return self.members[cid]

    async def get_pilot_stats(self, cid):
        return self.stats[cid]


@pytest.fixture
def role_config():
    """Role ids as they would be parsed from config.yaml."""
    return RoleConfig(
        verified_role=100,
        atc_roles={2: 202, 3: 203, 5: 205},
        default_atc_role=200,
        pilot_rating_roles={0: 300, 1: 301, 3: 303},
        pilot_hour_roles={0: 400, 100: 410, 500: 450},
        remove_old_atc_roles=True,
        remove_old_pilot_rating_roles=True,
        remove_lower_hour_roles=True,
        sync_delay=0,
    )


@pytest.fixture
def guild(role_config):
    return FakeGuild(role_config.managed_roles)


@pytest.fixture
def controller():
    """A C1 controller with a private pilot licence and 120 hours."""
    return MemberData(cid=1234567, rating=5, pilotrating=1, name="Jane Doe"), PilotStats(7200)
