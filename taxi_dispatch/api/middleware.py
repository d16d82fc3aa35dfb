"""Blanket per-IP request limit shared by every router."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from taxi_dispatch.config import settings

limiter = Limiter(key_func=get_remote_address, default_limits=[settings.api_rate_limit])
