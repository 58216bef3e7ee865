"""Durable storage tiers for the snapshot cache.

The cache service depends on the abstract tier only, so the JSON file tier
can be replaced (e.g., object storage) without touching the read path.
"""
