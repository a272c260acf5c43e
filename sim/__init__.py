"""Simulator: scripted virtual chat users."""

from .sim import ISim, Sim

__all__ = ["ISim", "Sim"]
