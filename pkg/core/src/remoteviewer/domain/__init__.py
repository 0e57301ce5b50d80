"""
Domain layer - schedule and media index documents.

Pydantic models for the JSON documents persisted by the stores, with the
validation rules applied on every load.
"""
