"""Deployment lifecycle tracker for the VPS control panel."""

__version__ = "1.0.0"
