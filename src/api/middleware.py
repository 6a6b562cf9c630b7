"""Rate limiting (slowapi), keyed on the client address."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from src.config import settings

limiter = Limiter(key_func=get_remote_address)

PUBLIC_LIMIT = settings.rate_limit
ADMIN_LIMIT = settings.admin_rate_limit
