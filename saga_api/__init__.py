"""HTTP API for submitting sagas and polling their status."""
