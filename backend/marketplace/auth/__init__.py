"""Authentication: JWT bearer tokens and bcrypt passwords."""
