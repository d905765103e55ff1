"""PrintCraft asynchronous generation pipeline.

The package accepts image generation requests, persists them as jobs, drives
them through the external provider from a pool of queue workers and exposes
their state over HTTP.
"""

__all__: list[str] = []
