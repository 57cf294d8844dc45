from __future__ import annotations

import os

from slowapi import Limiter
from slowapi.util import get_remote_address

from forum_sitemap.config import DEFAULT_RATE_LIMIT_SITEMAP


def sitemap_rate_limit() -> str:
    return os.getenv("RATE_LIMIT_SITEMAP", DEFAULT_RATE_LIMIT_SITEMAP)


limiter = Limiter(key_func=get_remote_address)
