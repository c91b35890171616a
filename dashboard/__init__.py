"""HTTP API for feedback capture and budget status."""
