"""Authentication and user mirror."""
