"""HTTP API for promptforge."""
