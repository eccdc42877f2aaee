"""HTTP API: the forms portal Blueprint and its route modules."""
