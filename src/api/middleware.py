"""Request rate limiting (slowapi), keyed by client address."""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)

DEFAULT_LIMIT = "100/minute"
INGEST_LIMIT = "600/minute"  # devices post logs every few seconds
ADMIN_LIMIT = "10/minute"
