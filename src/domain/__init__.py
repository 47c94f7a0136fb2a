"""
Domain layer for email relay business logic.

This layer contains:
- Data models (type-safe structures)
- Parsers for address lists and relay tags in subjects
- Sender authorization and metadata sanitizers
- The relay decision engine and processing pipeline
"""
