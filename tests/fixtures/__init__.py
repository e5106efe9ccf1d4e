"""
Pytest fixtures for the TerraMirror test suite.

Fixtures are organized by subsystem:
- registry_mocking: in-memory registry served through HTTPX MockTransport
"""
