"""External services and the job submission facade."""
