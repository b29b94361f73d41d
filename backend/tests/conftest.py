import os

# configuration is read once at import time, so set it before the app loads
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["CRON_SECRET"] = "test-cron-secret"

import pytest

from expense_tracker.store import store


@pytest.fixture(autouse=True)
def clean_store():
    store.reset()
    yield
    store.reset()
