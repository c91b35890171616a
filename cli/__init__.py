"""circletrace command-line interface."""
