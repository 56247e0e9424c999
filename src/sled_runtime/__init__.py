"""Sled runtime: drives ACP coding agents and streams their turns to a browser."""

__version__ = "0.1.0"
