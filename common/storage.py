"""
In-memory storage shared across routers.

Lives for the lifetime of the process; persistent state goes through the
file/Redis settings backends and Postgres.
"""

# Key/value blobs for the "memory" storage backend (storage key -> JSON)
device_storage = {}
# Emergency sequencers, one per user id
emergency_sequencers = {}
