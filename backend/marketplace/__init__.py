"""Property marketplace backend: listings, reservations and publication payments."""
