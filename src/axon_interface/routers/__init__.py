"""
API Routers for the Synapse Feed Cache Axon Interface

- rss: single-feed entries and the paginated multi-feed stream
"""
