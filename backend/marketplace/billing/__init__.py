"""Payment processors: hosted checkout and App Store receipts."""
