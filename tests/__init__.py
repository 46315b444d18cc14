"""Test suite for the MCP bridge."""
