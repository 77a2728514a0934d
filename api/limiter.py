"""
api/limiter.py -- Per-client rate limiter for the credential endpoints.

api/main.py mounts it as middleware; api/routes/v1/auth.py applies it to
sign-in and forgot-password, the two endpoints an attacker would hammer to
guess passwords or flood a mailbox with reset codes. Limit strings come from
Settings at request time so they can be tuned through the environment.

Counters live in process memory, keyed by client IP. Several API workers
each keep their own counters; point storage_uri at a shared backend
(e.g. redis://) when that matters.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://", headers_enabled=False)
