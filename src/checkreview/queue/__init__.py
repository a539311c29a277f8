"""Per-credential AI task queue: service, workers, executor, bootstrap."""
