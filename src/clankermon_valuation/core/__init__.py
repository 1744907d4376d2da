"""Core business logic — execution engine, Dune client, formatting and models.

This module is framework-agnostic. It has no dependency on MCP, Starlette,
or any server framework.
"""
