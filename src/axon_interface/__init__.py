"""
Axon Interface - API Endpoints for the Synapse Feed Cache

This module exposes the feed cache over HTTP:
- Entries of a single feed, refreshed when stale
- A merged, paginated entry stream across several feeds
- A health check covering database reachability
"""
