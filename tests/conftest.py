from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def _reset_settings_caches():
    from ingestion.settings import reset_settings_cache
    from llm.settings import reset_oracle_settings_cache

    reset_settings_cache()
    reset_oracle_settings_cache()
    yield
    reset_settings_cache()
    reset_oracle_settings_cache()
