"""Core business logic for aggregation and ranking.

This module is framework-agnostic. It has no dependency on MCP, FastMCP,
SQLAlchemy or any server framework. The datastore services and the MCP
server both import from here.
"""
