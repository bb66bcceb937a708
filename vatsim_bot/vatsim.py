"""
VATSIM API client and the records it returns.
"""

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional

import aiohttp

# Constants
VATSIM_API_URL = "https://api.vatsim.net/v2"
VATSIM_DATA_URL = "https://data.vatsim.net/v3/vatsim-data.json"
REQUEST_TIMEOUT = 15

_FRACTION = re.compile(r"\.(\d+)")


class VatsimError(Exception):
    """Base class for VATSIM lookup failures."""


class NotLinkedError(VatsimError):
    """The Discord account has no VATSIM account linked to it."""

    def __init__(self, discord_id: int):
        super().__init__(f"Discord user {discord_id} has no linked VATSIM account")
        self.discord_id = discord_id


class UpstreamUnavailableError(VatsimError):
    """A VATSIM endpoint answered with an error or could not be reached."""

    def __init__(self, url: str, status: Optional[int] = None, reason: str = ""):
        if status is not None:
            message = f"{url} returned status {status}"
        else:
            message = f"{url} unreachable: {reason}"
        super().__init__(message)
        self.url = url
        self.status = status


class MemberData:
    """A VATSIM member's certification record."""

    def __init__(self, cid: int, rating: int, pilotrating: int, name: str = ""):
        self.cid = cid
        self.rating = rating
        self.pilotrating = pilotrating
        self.name = name

    @classmethod
    def from_api(cls, raw: Dict) -> "MemberData":
        name = " ".join(
            part for part in (raw.get('name_first'), raw.get('name_last')) if part
        )
        return cls(
            cid=int(raw['id']),
            rating=int(raw.get('rating', 0)),
            pilotrating=int(raw.get('pilotrating', 0)),
            name=name or raw.get('name', ''),
        )

    def __repr__(self) -> str:
        return f"MemberData(cid={self.cid}, rating={self.rating}, pilotrating={self.pilotrating})"


class PilotStats:
    """Logged pilot time for a member."""

    def __init__(self, pilot_minutes: float):
        self.pilot_minutes = pilot_minutes

    @property
    def total_hours(self) -> float:
        return self.pilot_minutes / 60

    @classmethod
    def from_api(cls, raw: Dict) -> "PilotStats":
        # The v2 stats endpoint reports hours under "pilot"
        if 'pilotMinutes' in raw:
            return cls(float(raw['pilotMinutes'] or 0))
        return cls(float(raw.get('pilot') or 0) * 60)


class FlightPlan:
    """The subset of a filed flight plan the bot displays."""

    def __init__(self, raw: Dict):
        self.raw = raw
        self.departure = raw.get('departure') or None
        self.arrival = raw.get('arrival') or None
        self.aircraft_short = raw.get('aircraft_short') or None
        self.aircraft_faa = raw.get('aircraft_faa') or None
        self.altitude = raw.get('altitude') or None
        self.route = raw.get('route') or None

    @property
    def aircraft(self) -> Optional[str]:
        return self.aircraft_short or self.aircraft_faa


class PilotPosition:
    """A pilot currently connected to the network."""

    def __init__(self, raw: Dict):
        self.raw = raw
        self.cid = int(raw['cid'])
        self.callsign = raw.get('callsign', '')
        self.latitude = float(raw.get('latitude', 0.0))
        self.longitude = float(raw.get('longitude', 0.0))
        self.altitude = int(raw.get('altitude', 0))
        self.groundspeed = int(raw.get('groundspeed', 0))
        self.heading = int(raw.get('heading', 0))
        self.transponder = raw.get('transponder') or None
        self.logon_time = parse_timestamp(raw['logon_time'])

        plan = raw.get('flight_plan')
        self.flight_plan = FlightPlan(plan) if plan else None


def parse_timestamp(value: str) -> datetime:
    """Parse a VATSIM ISO-8601 timestamp into an aware datetime."""
    # Feed timestamps carry 7 fractional digits and a trailing Z
    value = value.replace('Z', '+00:00')
    value = _FRACTION.sub(lambda m: '.' + m.group(1)[:6].ljust(6, '0'), value)
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class VatsimClient:
    """Client for the VATSIM member API and live data feed."""

    def __init__(self, session: aiohttp.ClientSession,
                 api_url: str = VATSIM_API_URL, data_url: str = VATSIM_DATA_URL):
        self.session = session
        self.api_url = api_url.rstrip('/')
        self.data_url = data_url
        self.timeout = aiohttp.ClientTimeout(total=REQUEST_TIMEOUT)

    async def _get_json(self, url: str, not_found: Optional[Exception] = None):
        try:
            async with self.session.get(url, timeout=self.timeout) as response:
                if response.status == 404 and not_found is not None:
                    raise not_found
                if response.status != 200:
                    logging.error(f"VATSIM API returned status {response.status} for {url}")
                    raise UpstreamUnavailableError(url, status=response.status)
                return await response.json(content_type=None)

        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logging.error(f"Error fetching {url}: {e!r}")
            raise UpstreamUnavailableError(url, reason=repr(e)) from e

    async def get_cid_for_discord(self, discord_id: int) -> int:
        """
        Look up the VATSIM CID linked to a Discord account.

        Raises:
            NotLinkedError: if no VATSIM account is linked
            UpstreamUnavailableError: if the API cannot be reached
        """
        url = f"{self.api_url}/members/discord/{discord_id}"
        data = await self._get_json(url, not_found=NotLinkedError(discord_id))

        cid = data.get('user_id') if isinstance(data, dict) else None
        if not cid:
            raise NotLinkedError(discord_id)
        return int(cid)

    async def get_member(self, cid: int) -> MemberData:
        """Fetch a member's ratings and name."""
        data = await self._get_json(f"{self.api_url}/members/{cid}")
        return MemberData.from_api(data)

    async def get_pilot_stats(self, cid: int) -> PilotStats:
        """Fetch a member's logged pilot time."""
        data = await self._get_json(f"{self.api_url}/members/{cid}/stats")
        return PilotStats.from_api(data)

    async def get_online_pilots(self) -> List[Dict]:
        """Fetch every pilot currently connected to the network."""
        data = await self._get_json(self.data_url)
        return data.get('pilots', [])

    async def find_pilot(self, cid: int) -> Optional[PilotPosition]:
        """
        Find a connected pilot by CID.

        Returns:
            The pilot's live record, or None if they aren't flying
        """
        for raw in await self.get_online_pilots():
            if str(raw.get('cid')) == str(cid):
                try:
                    return PilotPosition(raw)
                except (KeyError, TypeError, ValueError) as e:
                    logging.error(f"Malformed pilot record for CID {cid}: {e!r}")
                    raise UpstreamUnavailableError(self.data_url, reason=f"malformed pilot record: {e!r}") from e
        return None
