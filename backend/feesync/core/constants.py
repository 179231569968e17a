"""
Sync constants — fee categories, SyncLog vocabulary, provider limits.
"""

SYNC_TYPE_FINANCIAL_EVENTS: str = "financial-events"

# SyncLog status values
SYNC_LOG_SUCCESS: str = "success"
SYNC_LOG_FAILED: str = "failed"
SYNC_LOG_CANCELLED: str = "cancelled"

# Fee line classification, checked in order; first substring match wins
REFERRAL_FEE_MARKERS: tuple[str, ...] = ("Commission", "Referral")
FULFILLMENT_FEE_MARKERS: tuple[str, ...] = ("FBA", "Fulfillment")

# Raw provider error bodies are cut to this length before surfacing
MAX_ERROR_MESSAGE_LENGTH: int = 200

# Hard cap for POST ?days=N
MAX_SYNC_DAYS: int = 730
