"""HTTP API for submissions, review, and template analysis."""
