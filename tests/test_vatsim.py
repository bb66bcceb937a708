"""Tests for the VATSIM API client against a local stand-in server."""
from datetime import datetime, timezone

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp import test_utils

from vatsim_bot.vatsim import (
    MemberData,
    NotLinkedError,
    PilotStats,
    UpstreamUnavailableError,
    VatsimClient,
    parse_timestamp,
)

PILOT = {
    "cid": 1234567,
    "name": "Jane Doe",
    "callsign": "BAW123",
    "latitude": 51.47123,
    "longitude": -0.45432,
    "altitude": 36000,
    "groundspeed": 462,
    "transponder": "2200",
    "heading": 271,
    "logon_time": "2024-05-01T10:15:00.1234567Z",
    "flight_plan": {
        "aircraft_faa": "H/B77W/L",
        "aircraft_short": "B77W",
        "departure": "EGLL",
        "arrival": "KJFK",
        "altitude": "36000",
        "route": "CPT3F CPT UL9 KENET",
    },
}


def make_app():
    async def discord_link(request):
        if request.match_info['discord_id'] == '42':
            return web.json_response({"id": "42", "user_id": "1234567"})
        return web.json_response({"detail": "Not Found"}, status=404)

    async def member(request):
        if request.match_info['cid'] == '500':
            return web.Response(status=500)
        return web.json_response({
            "id": int(request.match_info['cid']),
            "rating": 5,
            "pilotrating": 3,
            "name_first": "Jane",
            "name_last": "Doe",
        })

    async def stats(request):
        return web.json_response({"id": 1234567, "atc": 812.5, "pilot": 120.25})

    async def data(request):
        broken = {k: v for k, v in PILOT.items() if k != "logon_time"}
        return web.json_response({"pilots": [
            PILOT,
            dict(PILOT, cid=7654321, callsign="DLH4"),
            dict(broken, cid=1111),
            dict(PILOT, cid=2222, logon_time="yesterday"),
        ]})

    async def garbage(request):
        return web.Response(text="<html>maintenance</html>")

    app = web.Application()
    app.router.add_get('/v2/members/discord/{discord_id}', discord_link)
    app.router.add_get('/v2/members/{cid}', member)
    app.router.add_get('/v2/members/{cid}/stats', stats)
    app.router.add_get('/data.json', data)
    app.router.add_get('/garbage.json', garbage)
    return app


@pytest_asyncio.fixture
async def server():
    server = test_utils.TestServer(make_app())
    await server.start_server()
    yield server
    await server.close()


@pytest_asyncio.fixture
async def client(server):
    async with aiohttp.ClientSession() as session:
        yield VatsimClient(
            session,
            api_url=str(server.make_url('/v2')),
            data_url=str(server.make_url('/data.json')),
        )


async def test_cid_for_discord(client):
    assert await client.get_cid_for_discord(42) == 1234567


async def test_unlinked_discord_account(client):
    with pytest.raises(NotLinkedError) as exc_info:
        await client.get_cid_for_discord(99)
    assert exc_info.value.discord_id == 99


async def test_get_member(client):
    member = await client.get_member(1234567)

    assert member.cid == 1234567
    assert member.rating == 5
    assert member.pilotrating == 3
    assert member.name == "Jane Doe"


async def test_get_member_upstream_error(client):
    with pytest.raises(UpstreamUnavailableError) as exc_info:
        await client.get_member(500)
    assert exc_info.value.status == 500


async def test_get_pilot_stats_in_minutes(client):
    stats = await client.get_pilot_stats(1234567)

    assert stats.pilot_minutes == pytest.approx(7215)
    assert stats.total_hours == pytest.approx(120.25)


async def test_find_pilot(client):
    pilot = await client.find_pilot(7654321)

    assert pilot.callsign == "DLH4"
    assert pilot.flight_plan.departure == "EGLL"
    assert pilot.flight_plan.aircraft == "B77W"


async def test_find_pilot_offline(client):
    assert await client.find_pilot(1) is None


@pytest.mark.parametrize("cid", [1111, 2222])
async def test_malformed_pilot_record_is_upstream_error(client, cid):
    with pytest.raises(UpstreamUnavailableError):
        await client.find_pilot(cid)


async def test_invalid_json_is_upstream_error(server):
    async with aiohttp.ClientSession() as session:
        client = VatsimClient(session, data_url=str(server.make_url('/garbage.json')))
        with pytest.raises(UpstreamUnavailableError):
            await client.get_online_pilots()


async def test_unreachable_host():
    async with aiohttp.ClientSession() as session:
        client = VatsimClient(session, api_url="http://127.0.0.1:9/v2")
        with pytest.raises(UpstreamUnavailableError) as exc_info:
            await client.get_member(1)
    assert exc_info.value.status is None


def test_member_from_api_without_names():
    member = MemberData.from_api({"id": "810000", "rating": "1", "pilotrating": 0})

    assert member.cid == 810000
    assert member.rating == 1
    assert member.name == ""


def test_pilot_stats_prefers_minutes():
    assert PilotStats.from_api({"pilotMinutes": 7200, "pilot": 1}).total_hours == 120
    assert PilotStats.from_api({}).pilot_minutes == 0


def test_parse_timestamp():
    assert parse_timestamp("2024-05-01T10:15:00.1234567Z") == datetime(
        2024, 5, 1, 10, 15, 0, 123456, tzinfo=timezone.utc
    )
    assert parse_timestamp("2024-05-01T10:15:00Z") == datetime(2024, 5, 1, 10, 15, tzinfo=timezone.utc)
    assert parse_timestamp("2024-05-01T10:15:00.5") == datetime(
        2024, 5, 1, 10, 15, 0, 500000, tzinfo=timezone.utc
    )
