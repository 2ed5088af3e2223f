"""Project-wide constants (collection names, batching defaults, PII field paths)."""

SOURCE_COLLECTION_NAME: str = "customers"
REPLICA_COLLECTION_NAME: str = "customers_anonymised"
DEFAULT_DATABASE_NAME: str = "customers_db"

FLUSH_SIZE: int = 1000
FLUSH_INTERVAL_MS: int = 1000
RECONCILE_BATCH_SIZE: int = 1000
SUBSTITUTE_LENGTH: int = 8
EVENT_QUEUE_SIZE: int = 10000

SUBSTITUTE_ALPHABET: str = (
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
)

# Dotted paths into the customer document.
PII_FIELDS = (
    "firstName",
    "lastName",
    "address.line1",
    "address.line2",
    "address.postcode",
)
EMAIL_FIELD: str = "email"

CHECKPOINT_PATH: str = "./data/checkpoints.db"
