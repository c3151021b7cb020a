"""Operational configuration."""

from tether.lib.config.settings import TetherConfig, load_config

__all__ = ["TetherConfig", "load_config"]
