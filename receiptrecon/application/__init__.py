"""Workflow orchestration shared by the CLI and the HTTP server."""
