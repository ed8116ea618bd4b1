"""
Test Suite

Structure:
- tests/unit/: Tests for individual components, run against in-memory fake sockets

Uses pytest with pytest-asyncio for testing async functionality.
"""
