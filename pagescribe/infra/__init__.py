"""Infrastructure modules: logging, concurrency and progress reporting."""
