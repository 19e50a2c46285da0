"""
observability/ — structlog setup and per-connection log context.
"""
