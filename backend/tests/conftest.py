"""Shared pytest configuration for LQS tests."""

from fixtures import *  # noqa: F401,F403
