"""Simulated chat backend and participants."""

from .backend import SimBackend, SimClient
from .sim import SCRIPT, VIRTUAL_USERS, ISim, Sim

__all__ = ["SimBackend", "SimClient", "Sim", "ISim", "SCRIPT", "VIRTUAL_USERS"]
