"""Request guards for comment submissions.

Components:
- GuardPipeline: Ordered checks from method to post existence
- Rejection: Outcome of a failed check (status, message, safe redirect)
- SlidingWindowRateLimiter: Per-IP request ledger
- validators / spam: Pure check functions
"""

from staticomment.guard.pipeline import GuardPipeline, Rejection
from staticomment.guard.rate_limit import SlidingWindowRateLimiter
from staticomment.guard.validators import is_valid_slug

__all__ = [
    "GuardPipeline",
    "Rejection",
    "SlidingWindowRateLimiter",
    "is_valid_slug",
]
