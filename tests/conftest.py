"""
Pytest Configuration and Fixtures

Shared fixtures for the triage queue tests. The environment is prepared
before any application module is imported, so the database and encryption
singletons pick up the test settings.
"""
import base64
import os
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict

import pytest

# Add repo root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

_TEST_DIR = tempfile.mkdtemp(prefix="walkin_triage_tests_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{Path(_TEST_DIR) / 'test.db'}"
os.environ["HEALTH_DATA_ENCRYPTION_KEY"] = base64.b64encode(b"k" * 32).decode()
os.environ["AUTHORITY_URL"] = ""
os.environ.pop("QUEUE_CONFIG_PATH", None)

from triage.types import Demographics, VitalSigns  # noqa: E402


@pytest.fixture
def stable_vitals() -> Dict[str, Any]:
    """Vitals of Scenario A: nothing out of range."""
    return {
        "heart_rate": 75,
        "respiratory_rate": 16,
        "body_temperature": 36.6,
        "oxygen_saturation": 98,
        "systolic_bp": 120,
        "diastolic_bp": 80,
    }


@pytest.fixture
def critical_vitals() -> Dict[str, Any]:
    """Vitals of Scenario B: every vital in its severe band."""
    return {
        "heart_rate": 130,
        "respiratory_rate": 28,
        "body_temperature": 39.5,
        "oxygen_saturation": 85,
        "systolic_bp": 190,
        "diastolic_bp": 100,
    }


@pytest.fixture
def adult_demographics() -> Dict[str, Any]:
    return {"age": 30, "gender": 1, "weight_kg": 70, "height_m": 1.75}


@pytest.fixture
def stable_patient(stable_vitals, adult_demographics):
    return VitalSigns(**stable_vitals), Demographics(**adult_demographics)


@pytest.fixture
def critical_patient(critical_vitals, adult_demographics):
    return VitalSigns(**critical_vitals), Demographics(**{**adult_demographics, "age": 45})
