"""Background job queue, worker pool and scheduled sweeps."""
