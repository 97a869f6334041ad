"""GitHub webhook queue: ingest, payload parsing, processing and recompute."""
