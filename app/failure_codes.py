"""Failure reason labels recorded on import runs."""

FETCH_FAILED = "Fetch failed"
PARSE_FAILED = "Parse failed"
ENQUEUE_FAILED = "Enqueue failed"
SETUP_FAILED = "Import setup failed"
DATABASE_ERROR = "Database error"
BATCH_RETRIES_EXHAUSTED = "Batch failed after retries"
STALLED_RUN_TIMED_OUT = "Stalled run timed out"
