"""Telegram channel directory with similar-channel discovery and enrichment."""

__version__ = "0.1.0"
