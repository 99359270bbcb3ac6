import os

# Keep test runs out of the user's master log.
os.environ.setdefault("FILESTORE_CLEANUP_LOG_DISABLED", "1")
