"""HTTP API for the clinic calendar."""
