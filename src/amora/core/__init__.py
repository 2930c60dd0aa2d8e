"""Cross-cutting pieces: exceptions, token verification, resilience."""
