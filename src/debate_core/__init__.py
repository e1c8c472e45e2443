"""Asynchronous job orchestration core for multi-party conversations."""

__version__ = "0.1.0"
