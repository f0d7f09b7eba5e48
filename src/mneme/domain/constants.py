"""Centralized constants for the mneme engine.

All magic numbers and configuration defaults live here so every layer
imports from a single source of truth.
"""

# ---------- Ease factor (fixed point, x100) ----------
DEFAULT_EASE_FACTOR = 250
MIN_EASE_FACTOR = 130

# ---------- Intervals ----------
DEFAULT_INTERVAL = 0
DEFAULT_REPETITIONS = 0
LAPSE_REVIEW_DELAY_DAYS = 1  # quality-scale lapse projects the review one day out

# ---------- Rating scales ----------
QUALITY_MIN = 0
QUALITY_MAX = 5
QUALITY_PASS = 3
BUTTON_MIN = 1
BUTTON_MAX = 4
BUTTON_AGAIN = 1
BUTTON_GOOD = 3

# ---------- Study sessions ----------
DEFAULT_NEW_CARD_LIMIT = 20
DEFAULT_DUE_CARD_LIMIT = 50
DEFAULT_REQUEUE_OFFSET = 10
DEFAULT_STALE_SESSION_HOURS = 12

# ---------- Server ----------
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8787
DEFAULT_USER_ID = 1
