"""
HTTP API
========

FastAPI surface over the scenario engine.

Components:
- ScenarioLabServer: application wiring and routes
- create_server: build a server from an EngineConfig
"""

from __future__ import annotations

from api.server import ScenarioLabServer, create_server

__all__ = [
    "ScenarioLabServer",
    "create_server",
]
