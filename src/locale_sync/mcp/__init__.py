"""MCP stdio server exposing reconciliation tools."""
