"""
Unit Test Fixtures for Campaign Delivery Service

Uses DeliveryTestDataFactory from the data contract.
"""

import pytest
from datetime import datetime, timezone

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from tests.contracts.campaign_delivery.data_contract import DeliveryTestDataFactory


@pytest.fixture
def factory():
    """Provide test data factory"""
    return DeliveryTestDataFactory()


@pytest.fixture
def now():
    """Fixed evaluation time"""
    return datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
