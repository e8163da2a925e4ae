from tvtracker.services.catalog import TVMazeClient, with_rate_limit_retry

__all__ = [
    "TVMazeClient",
    "with_rate_limit_retry"
]
