from __future__ import annotations

import os
import tempfile

import pytest


# Point settings at a throwaway SQLite file before any psagate module builds the engine.
_DB_DIR = tempfile.mkdtemp(prefix="psagate-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/psagate.db"
os.environ["CREDENTIALS_KEY"] = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
os.environ["CW_CLIENT_ID"] = "test-client-id"

from psagate.core.config import get_settings  # noqa: E402
from psagate.services import telemetry  # noqa: E402

get_settings.cache_clear()


@pytest.fixture(autouse=True)
def reset_telemetry() -> None:
    # Telemetry buffers are module-level; keep counters from leaking between tests.
    telemetry.reset()
    yield
    telemetry.reset()
