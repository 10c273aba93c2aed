"""Pipeline stages: normalization (identity, tags, dedup) and chunking.

Each stage exposes a small, pure function API; the transport and queue
layers decide when to call them.
"""
