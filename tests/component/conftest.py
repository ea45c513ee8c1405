"""
Component Test Layer Configuration

Structure:
    tests/component/
    └── campaign_delivery/   Worker, dispatcher, HTTP clients and the FastAPI
                             app, with in-memory fakes for every collaborator

Usage:
    pytest tests/component -v
"""
import os
import sys

# Set testing environment BEFORE any imports
os.environ["ENV"] = "testing"
os.environ["ENVIRONMENT"] = "testing"
os.environ["NATS_ENABLED"] = "false"

# Add project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))


def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line(
        "markers", "component: marks tests as component tests"
    )
