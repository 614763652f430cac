"""HTTP API for Cachewire.

Routers:
- /cache: cache administration
- /cache/metadata: per-key freshness registry
- /cache-events: Server-Sent Events invalidation stream
- /health, /metrics: operational endpoints

Build the application with ``cachewire.api.app.create_app``.
"""
