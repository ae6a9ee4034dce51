import time
from collections import defaultdict, deque
from typing import Deque, Dict, Optional, Tuple

from fastapi import HTTPException, Request

# (requests_per_window, window_seconds)
LIMITS: Dict[str, Tuple[int, int]] = {
    'default': (100, 60),
    'calculate': (30, 60),  # public calculator, keyed by IP
    'submit': (10, 60),     # week submissions rewrite the goal
    'jobs': (6, 60),
}

class RateLimiter:
    """Sliding-window limiter kept in process memory"""

    def __init__(self, limits: Optional[Dict[str, Tuple[int, int]]] = None):
        self.limits = dict(limits or LIMITS)
        self.requests: Dict[str, Deque[float]] = defaultdict(deque)
        self.cleanup_interval = 300
        self.last_cleanup = time.time()

    def get_identifier(self, request: Request, user_id: Optional[str] = None) -> str:
        if user_id:
            return f"user:{user_id}"

        client_ip = request.client.host if request.client else "unknown"
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            client_ip = forwarded_for.split(",")[0].strip()
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            client_ip = real_ip
        return f"ip:{client_ip}"

    def hit(self, identifier: str, limit_type: str = 'default') -> Tuple[bool, Dict]:
        """Record one request; returns (allowed, info)"""
        now = time.time()
        if now - self.last_cleanup > self.cleanup_interval:
            self._cleanup(now)
            self.last_cleanup = now

        max_requests, window = self.limits.get(limit_type, self.limits['default'])
        # Separate buckets per limit type so cheap reads don't starve submissions
        history = self.requests[f"{limit_type}:{identifier}"]
        while history and history[0] < now - window:
            history.popleft()

        if len(history) >= max_requests:
            retry_after = max(1, int(history[0] + window - now))
            return False, {'limit': max_requests, 'window': window, 'retry_after': retry_after}

        history.append(now)
        return True, {
            'limit': max_requests,
            'window': window,
            'remaining': max_requests - len(history),
        }

    def reset(self):
        self.requests.clear()

    def _cleanup(self, now: float):
        cutoff = now - max(window for _, window in self.limits.values())
        for key in list(self.requests):
            history = self.requests[key]
            while history and history[0] < cutoff:
                history.popleft()
            if not history:
                del self.requests[key]

rate_limiter = RateLimiter()

def check_rate_limit(request: Request, user_id: Optional[str] = None, limit_type: str = 'default') -> Dict:
    """Raise 429 with Retry-After when the caller is over its limit"""
    allowed, info = rate_limiter.hit(rate_limiter.get_identifier(request, user_id), limit_type)
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail={
                "error": "RATE_LIMIT_EXCEEDED",
                "message": f"Rate limit exceeded. Try again in {info['retry_after']} seconds.",
                "limit": info['limit'],
                "window_seconds": info['window'],
                "retry_after": info['retry_after'],
            },
            headers={
                "Retry-After": str(info['retry_after']),
                "X-RateLimit-Limit": str(info['limit']),
                "X-RateLimit-Remaining": "0",
            },
        )
    return info
