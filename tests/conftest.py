"""
Pytest fixtures for the A/B testing service tests.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


@pytest.fixture
def event_log(tmp_path):
    from event_log import EventLog

    return EventLog(str(tmp_path / "data" / "events.jsonl"))


@pytest.fixture
def config_store(tmp_path):
    from config_store import ConfigStore

    return ConfigStore(str(tmp_path / "ab-test-config.json"))


@pytest.fixture
def client(event_log, config_store):
    from fastapi.testclient import TestClient

    from api_service import app, get_config_store, get_event_log

    app.dependency_overrides[get_event_log] = lambda: event_log
    app.dependency_overrides[get_config_store] = lambda: config_store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def sample_config():
    """Config document with one inactive and one active ad placement test."""
    return {
        "activeTests": [
            {
                "id": "old_test",
                "name": "Retired layout",
                "status": "inactive",
                "variants": [{"id": "X", "name": "Old", "weight": 100, "config": {}}],
                "metrics": [],
            },
            {
                "id": "ad_placement_v1",
                "name": "Ad placement",
                "status": "active",
                "variants": [
                    {
                        "id": "A",
                        "name": "Banner every 3",
                        "weight": 50,
                        "config": {"adType": "banner", "positions": [5], "showInterval": 3},
                    },
                    {
                        "id": "B",
                        "name": "Rewarded at end",
                        "weight": 50,
                        "config": {"adType": "rewarded", "positions": [10], "showInterval": 0,
                                   "reward": "bonus_result"},
                    },
                ],
                "metrics": ["completion_rate", "share_rate"],
            },
        ],
        "globalSettings": {
            "userIdCookie": "ab_user_id",
            "variantCookie": "ab_variant",
            "cookieExpirationDays": 30,
            "trackingEndpoint": "/api/ab-track",
            "analytics": {"enabled": True},
        },
    }
