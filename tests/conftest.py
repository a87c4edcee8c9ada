"""Pytest configuration."""

import os

# Ensure test environment: never talk to the real rule/telemetry service
os.environ.setdefault("CRAWLGATE_API_URL", "http://crawlgate.test")
os.environ.setdefault("CRAWLGATE_API_KEY", "bb-sk-test")
os.environ.setdefault("CRAWLGATE_TELEMETRY_ENABLED", "false")
os.environ.setdefault("CRAWLGATE_DEBUG", "true")
