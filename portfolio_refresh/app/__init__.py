"""Portfolio refresh application: serving path, queue worker and scheduler."""
