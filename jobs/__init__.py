"""Background jobs: dramatiq actors and the APScheduler process that enqueues them."""
