from slowapi import Limiter
from slowapi.util import get_remote_address

from tourbook.core.settings import get_settings

_settings = get_settings()

# default limit covers every route; login adds its own stricter limit
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[_settings.RATE_LIMIT_API],
    enabled=_settings.ENABLE_RATE_LIMITING,
)
