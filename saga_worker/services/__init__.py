"""Pipeline services: extraction, illustration, persistence orchestration and the queue."""
