"""Push and in-app notifications."""
