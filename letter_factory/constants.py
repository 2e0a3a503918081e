"""Constants for the Rejoinder letter factory.

Centralizes thresholds and limits for easier tuning.
"""

# LLM Token Limits
MAX_TOKENS_EXTRACTION = 8192
MAX_TOKENS_CLASSIFICATION = 512
MAX_TOKENS_DRAFT = 2048
MAX_TOKENS_SECTION = 4096
MAX_TOKENS_COMPLETE_LETTER = 16000

# Letter Assembly
SINGLE_PASS_MAX_REQUESTS = 5  # Single-pass output degrades past this many requests
MIN_WORDS_PER_REQUEST = 100  # Truncation proxy for the completeness check

# Request topic extraction
TOPIC_MAX_WORDS = 10
TOPIC_MAX_CHARS = 50

# Conclusion
SUPPLEMENT_DEADLINE_DAYS = 14  # Days the opponent is given to supplement

# Taxonomy
FALLBACK_CATEGORY = "unclassifiable"

# Storage
CURRENT_SCHEMA_VERSION = "1.1"
MAX_BACKUPS_PER_CASE = 5

# Uploads
MAX_DOCUMENT_BYTES = 25 * 1024 * 1024  # 25MB
