# FILE: ecohunt-backend/extensions.py

from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

limiter = Limiter(
    # The default key is the IP address of the user making the request.
    key_func=get_remote_address,
    # Passed to the Redis client so it decodes responses to strings.
    storage_options={"decode_responses": True},
    # Storage is set in create_app() from RATELIMIT_STORAGE_URI.
    default_limits=["1000 per day", "300 per hour"]
)
