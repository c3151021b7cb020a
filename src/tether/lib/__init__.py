"""Core tether library exports."""

from tether.lib.exec import Process, ProcessStatus, SpawnOptions, spawn

__all__ = ["Process", "ProcessStatus", "SpawnOptions", "spawn"]
