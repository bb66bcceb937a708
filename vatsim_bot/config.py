"""
Configuration for the VATSIM bot.

Settings live in ``config.yaml``; secrets may instead come from the
environment (or a ``.env`` file) so they stay out of the YAML.
"""

import logging
import os
import sys
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Hashable, Mapping, Optional

import yaml
from dotenv import load_dotenv

DEFAULT_CONFIG_PATH = "config.yaml"

# Environment variables that take precedence over config.yaml
ENV_OVERRIDES = {
    'DISCORD_TOKEN': ('discord', 'bot_token'),
    'DISCORD_CLIENT_ID': ('discord', 'client_id'),
    'DISCORD_GUILD_ID': ('discord', 'guild_id'),
    'VATSIM_CID': ('vatsim', 'cid'),
    'WEBHOOK_SECRET': ('webhook', 'secret'),
    'WEBHOOK_PORT': ('webhook', 'port'),
}


def _optional_int(value) -> Optional[int]:
    return int(value) if value not in (None, '') else None


def _int_mapping(raw: Optional[Dict], key_type=int) -> Dict:
    if not raw:
        return {}
    return {key_type(k): int(v) for k, v in raw.items()}


def _threshold(value):
    number = float(value)
    return int(number) if number.is_integer() else number


class RoleConfig:
    """
    Role ids and removal settings used for role sync.

    Built once at startup and never modified afterwards.
    """

    def __init__(self, verified_role: Optional[Hashable] = None,
                 atc_roles: Optional[Dict] = None,
                 default_atc_role: Optional[Hashable] = None,
                 pilot_rating_roles: Optional[Dict] = None,
                 pilot_hour_roles: Optional[Dict] = None,
                 remove_old_atc_roles: bool = False,
                 remove_old_pilot_rating_roles: bool = False,
                 remove_lower_hour_roles: bool = False,
                 auto_sync_interval: int = 0,
                 sync_delay: float = 2.0):
        self._verified_role = verified_role
        self._atc_roles = MappingProxyType(dict(atc_roles or {}))
        self._default_atc_role = default_atc_role
        self._pilot_rating_roles = MappingProxyType(dict(pilot_rating_roles or {}))
        self._pilot_hour_roles = MappingProxyType(dict(pilot_hour_roles or {}))
        self._remove_old_atc_roles = remove_old_atc_roles
        self._remove_old_pilot_rating_roles = remove_old_pilot_rating_roles
        self._remove_lower_hour_roles = remove_lower_hour_roles
        self._auto_sync_interval = auto_sync_interval
        self._sync_delay = sync_delay

    @property
    def verified_role(self) -> Optional[Hashable]:
        return self._verified_role

    @property
    def atc_roles(self) -> Mapping:
        """ATC rating code -> role id."""
        return self._atc_roles

    @property
    def default_atc_role(self) -> Optional[Hashable]:
        return self._default_atc_role

    @property
    def pilot_rating_roles(self) -> Mapping:
        """Pilot rating code -> role id."""
        return self._pilot_rating_roles

    @property
    def pilot_hour_roles(self) -> Mapping:
        """Hour threshold -> role id."""
        return self._pilot_hour_roles

    @property
    def remove_old_atc_roles(self) -> bool:
        return self._remove_old_atc_roles

    @property
    def remove_old_pilot_rating_roles(self) -> bool:
        return self._remove_old_pilot_rating_roles

    @property
    def remove_lower_hour_roles(self) -> bool:
        return self._remove_lower_hour_roles

    @property
    def auto_sync_interval(self) -> int:
        """Minutes between full syncs; 0 disables them."""
        return self._auto_sync_interval

    @property
    def sync_delay(self) -> float:
        return self._sync_delay

    @classmethod
    def from_dict(cls, roles: Optional[Dict], settings: Optional[Dict]) -> "RoleConfig":
        """Build from the ``roles`` and ``settings`` sections of config.yaml."""
        roles = roles or {}
        settings = settings or {}
        return cls(
            verified_role=_optional_int(roles.get('verified_role')),
            atc_roles=_int_mapping(roles.get('atc_roles')),
            default_atc_role=_optional_int(roles.get('default_atc_role')),
            pilot_rating_roles=_int_mapping(roles.get('pilot_rating_roles')),
            pilot_hour_roles=_int_mapping(roles.get('pilot_hour_roles'), key_type=_threshold),
            remove_old_atc_roles=bool(settings.get('remove_old_atc_roles', False)),
            remove_old_pilot_rating_roles=bool(settings.get('remove_old_pilot_rating_roles', False)),
            remove_lower_hour_roles=bool(settings.get('remove_lower_hour_roles', False)),
            auto_sync_interval=int(settings.get('auto_sync_interval', 0) or 0),
            sync_delay=float(settings.get('sync_delay', 2.0)),
        )

    @property
    def managed_roles(self) -> set:
        """Every role id the sync may touch."""
        managed = set(self.atc_roles.values())
        managed.update(self.pilot_rating_roles.values())
        managed.update(self.pilot_hour_roles.values())
        managed.update(r for r in (self.verified_role, self.default_atc_role) if r is not None)
        return managed


class Config:
    """Configuration manager for the bot."""

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Dict] = None):
        self.config_path = Path(
            config_path or os.environ.get('VATSIM_BOT_CONFIG', DEFAULT_CONFIG_PATH)
        )
        self.environ = os.environ if environ is None else environ
        self.load()

    def load(self) -> None:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {self.config_path}\n"
                "Please copy config.yaml.example to config.yaml and configure it."
            )

        with open(self.config_path, 'r', encoding='utf-8') as f:
            self._config = yaml.safe_load(f) or {}

        self._apply_env()
        self._validate()
        self.roles = RoleConfig.from_dict(self._config.get('roles'), self._config.get('settings'))

    def _apply_env(self) -> None:
        for var, (section, key) in ENV_OVERRIDES.items():
            value = self.environ.get(var)
            if value:
                if not isinstance(self._config.get(section), dict):
                    self._config[section] = {}
                self._config[section][key] = value

    def _validate(self) -> None:
        """Validate configuration has required fields."""
        discord_section = self._config.get('discord') or {}
        if not discord_section.get('bot_token'):
            raise ValueError("Missing required config: discord.bot_token (or DISCORD_TOKEN)")

        for section in ('roles', 'settings'):
            value = self._config.get(section)
            if value is not None and not isinstance(value, dict):
                raise ValueError(f"Config section '{section}' must be a mapping")

        for key in ('atc_roles', 'pilot_rating_roles', 'pilot_hour_roles'):
            value = (self._config.get('roles') or {}).get(key)
            if value is not None and not isinstance(value, dict):
                raise ValueError(f"Config roles.{key} must be a mapping")

    def _section(self, name: str) -> Dict:
        return self._config.get(name) or {}

    @property
    def bot_token(self) -> str:
        return self._config['discord']['bot_token']

    @property
    def client_id(self) -> Optional[int]:
        return _optional_int(self._section('discord').get('client_id'))

    @property
    def guild_id(self) -> Optional[int]:
        return _optional_int(self._section('discord').get('guild_id'))

    @property
    def schedule_channel_id(self) -> Optional[int]:
        return _optional_int(self._section('discord').get('schedule_channel_id'))

    @property
    def rules_channel_id(self) -> Optional[int]:
        return _optional_int(self._section('discord').get('rules_channel_id'))

    @property
    def vatsim_cid(self) -> Optional[int]:
        return _optional_int(self._section('vatsim').get('cid'))

    @property
    def webhook_enabled(self) -> bool:
        return bool(self._section('webhook').get('enabled', True))

    @property
    def webhook_host(self) -> str:
        return self._section('webhook').get('host', '0.0.0.0')

    @property
    def webhook_port(self) -> int:
        return int(self._section('webhook').get('port', 8080))

    @property
    def webhook_secret(self) -> Optional[str]:
        return self._section('webhook').get('secret') or None

    @property
    def log_level(self) -> str:
        return self._section('logging').get('level', 'INFO')

    @property
    def log_file(self) -> Optional[str]:
        return self._section('logging').get('file', 'vatsim_bot.log')


def load_config(config_path: Optional[str] = None) -> Config:
    """Read ``.env`` into the environment, then load config.yaml."""
    load_dotenv()
    return Config(config_path)


def setup_logging(config: Config) -> None:
    """Configure logging for the bot."""
    log_level = getattr(logging, config.log_level.upper(), logging.INFO)

    # Create formatter
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.addHandler(console_handler)

    # File handler
    if config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding='utf-8')
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Reduce noise from libraries
    logging.getLogger('discord').setLevel(logging.WARNING)
    logging.getLogger('aiohttp').setLevel(logging.WARNING)
    logging.getLogger('apscheduler').setLevel(logging.WARNING)
