"""Database-backed business operations."""
