"""REST API for the ingestion service."""
