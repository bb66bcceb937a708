"""
Webhook HTTP API for pushing announcements into Discord.

External services POST schedule or rules updates here; the bot replaces
its previous announcement in the matching channel with the new one.
"""

import asyncio
import hmac
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import discord
from aiohttp import web

SECRET_HEADER = "X-Webhook-Secret"
EMBED_DESCRIPTION_LIMIT = 4096
EMBED_TOTAL_LIMIT = 6000
MAX_FIELDS = 25
DEFAULT_COLOR = 0x2b7fff

ROUTE_TITLES = {
    'schedule': "Schedule",
    'rules': "Rules",
}


class PayloadError(ValueError):
    """The announcement body is missing or malformed."""


class AnnouncementState:
    """Message ids of the last announcement posted for one route."""

    def __init__(self, channel_id: Optional[int]):
        self.channel_id = channel_id
        self.message_ids: List[int] = []
        self.lock = asyncio.Lock()


def split_text(text: str, limit: int = EMBED_DESCRIPTION_LIMIT) -> List[str]:
    """Split text into chunks no longer than ``limit``, preferring line breaks."""
    chunks: List[str] = []
    current = ""

    for line in text.splitlines(keepends=True):
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]

        if len(current) + len(line) > limit:
            chunks.append(current)
            current = ""
        current += line

    if current:
        chunks.append(current)
    return [chunk.rstrip('\n') for chunk in chunks if chunk.strip()]


def parse_color(value) -> int:
    if value is None:
        return DEFAULT_COLOR
    if isinstance(value, bool):
        raise PayloadError("color must be an integer or '#rrggbb'")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.lstrip('#'), 16)
        except ValueError:
            pass
    raise PayloadError("color must be an integer or '#rrggbb'")


def build_announcement(payload, default_title: str) -> Tuple[Optional[str], List[discord.Embed]]:
    """
    Turn a webhook body into message content and one embed per message.

    Returns:
        Tuple of (mention content for the first message, embeds)

    Raises:
        PayloadError: if the body isn't usable
    """
    if not isinstance(payload, dict):
        raise PayloadError("body must be a JSON object")

    text = payload.get('content') or payload.get('description')
    if not isinstance(text, str) or not text.strip():
        raise PayloadError("'content' is required")

    title = payload.get('title') or default_title
    color = parse_color(payload.get('color'))
    fields = payload.get('fields') or []
    if not isinstance(fields, list):
        raise PayloadError("'fields' must be a list")

    embeds = [discord.Embed(description=chunk, color=color) for chunk in split_text(text)]
    embeds[0].title = str(title)[:256]

    # Fields follow the text and spill onto extra embeds at the size limit
    for field in fields[:MAX_FIELDS]:
        if not isinstance(field, dict) or not field.get('name') or not field.get('value'):
            raise PayloadError("each field needs a 'name' and a 'value'")
        name = str(field['name'])[:256]
        value = str(field['value'])[:1024]

        if len(embeds[-1]) + len(name) + len(value) > EMBED_TOTAL_LIMIT:
            embeds.append(discord.Embed(color=color))
        embeds[-1].add_field(name=name, value=value, inline=bool(field.get('inline', False)))

    embeds[-1].timestamp = datetime.now(timezone.utc)

    mention = payload.get('mention')
    return (str(mention) if mention else None), embeds


class WebhookServer:
    """aiohttp server exposing /health, /schedule and /rules."""

    def __init__(self, client: discord.Client, secret: Optional[str],
                 schedule_channel_id: Optional[int], rules_channel_id: Optional[int],
                 host: str = "0.0.0.0", port: int = 8080):
        self.client = client
        self.secret = secret
        self.host = host
        self.port = port
        self.states: Dict[str, AnnouncementState] = {
            'schedule': AnnouncementState(schedule_channel_id),
            'rules': AnnouncementState(rules_channel_id),
        }
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

        if not secret:
            logging.warning("No webhook secret configured; announcement requests will be rejected")

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get('/health', self.handle_health)
        for route in self.states:
            app.router.add_post(f'/{route}', self._announcement_handler(route))
        return app

    async def start(self) -> None:
        self.runner = web.AppRunner(self.make_app())
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()
        logging.info(f"Webhook server listening on {self.host}:{self.port}")

    async def stop(self) -> None:
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
            self.site = None

    def is_authorized(self, request: web.Request) -> bool:
        if not self.secret:
            return False
        supplied = request.headers.get(SECRET_HEADER, "")
        return hmac.compare_digest(supplied.encode(), self.secret.encode())

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({'status': 'ok', 'discord': self.client.is_ready()})

    def _announcement_handler(self, route: str):
        async def handler(request: web.Request) -> web.Response:
            return await self.handle_announcement(route, request)
        return handler

    async def handle_announcement(self, route: str, request: web.Request) -> web.Response:
        if not self.is_authorized(request):
            logging.warning(f"Rejected unauthorized /{route} request from {request.remote}")
            return web.json_response({'error': 'unauthorized'}, status=401)

        try:
            payload = await request.json()
        except ValueError:
            return web.json_response({'error': 'invalid JSON'}, status=400)

        try:
            mention, embeds = build_announcement(payload, ROUTE_TITLES[route])
        except PayloadError as e:
            return web.json_response({'error': str(e)}, status=400)

        state = self.states[route]
        channel = self.client.get_channel(state.channel_id) if state.channel_id else None
        if channel is None:
            logging.error(f"Channel for /{route} is not configured or not visible ({state.channel_id})")
            return web.json_response({'error': 'channel unavailable'}, status=503)

        try:
            message_ids = await self.replace_announcement(state, channel, mention, embeds)
        except discord.HTTPException as e:
            logging.error(f"Failed to post /{route} announcement: {e}")
            return web.json_response({'error': 'discord error'}, status=502)

        logging.info(f"Posted /{route} announcement as {len(message_ids)} message(s)")
        return web.json_response({'status': 'posted', 'message_ids': [str(m) for m in message_ids]})

    async def replace_announcement(self, state: AnnouncementState, channel,
                                   mention: Optional[str], embeds: List[discord.Embed]) -> List[int]:
        """Delete the route's previous messages, post the new ones and remember them."""
        async with state.lock:
            for message_id in state.message_ids:
                try:
                    await channel.get_partial_message(message_id).delete()
                except discord.NotFound:
                    logging.debug(f"Announcement message {message_id} already deleted")
                except discord.HTTPException as e:
                    logging.warning(f"Could not delete announcement message {message_id}: {e}")
            state.message_ids = []

            posted: List[int] = []
            for index, embed in enumerate(embeds):
                content = mention if index == 0 else None
                message = await channel.send(content=content, embed=embed)
                posted.append(message.id)
                state.message_ids = list(posted)

            return posted
