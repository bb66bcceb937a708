"""VATSIM flight status, role sync and announcement bot for Discord."""

__version__ = "1.0.0"
