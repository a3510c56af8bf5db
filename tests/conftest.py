"""Shared test setup."""

import os

# The app builds its payment provider at import time; the API tests run
# against the in-memory fake.
os.environ["PAYMENT_PROVIDER"] = "memory"
os.environ.pop("PAYMENT_WEBHOOK_ALLOW_UNSIGNED", None)
