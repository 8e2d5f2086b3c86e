from __future__ import annotations

# GH / API operations
GH_TIMEOUT_SECONDS = 60.0
GH_WATCH_TIMEOUT_SECONDS = 4 * 60 * 60.0

# Idempotent GH read retry policy
GH_READ_RETRY_ATTEMPTS = 3
GH_READ_RETRY_DELAY_SECONDS = 1.0

# Dispatch run list snapshot size
DISPATCH_SNAPSHOT_LIMIT = 20
