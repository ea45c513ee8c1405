#!/usr/bin/env python3
"""
Core Module for Microservices Architecture

Shared infrastructure components for the campaign delivery service.

COMPONENTS:
    - config/: Dataclass configuration loaded from environment (+ .env files)
    - logging_setup.py: Root logging configuration
    - nats_client.py: NATS event bus for event-driven architecture

USAGE:
    from core.config import get_settings
    from core.logging_setup import setup_logging

    settings = get_settings()
    setup_logging(settings.logging)
"""

__version__ = "2.0.0"
