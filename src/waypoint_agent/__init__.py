"""Waypoint agent - polls a control plane and runs configured actions."""

__version__ = "0.1.0"
