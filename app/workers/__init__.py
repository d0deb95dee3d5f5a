"""Background workers: the task scheduler that owns every periodic ticker."""
