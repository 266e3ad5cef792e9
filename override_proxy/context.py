import itertools
import time
from dataclasses import dataclass, field
from typing import Optional

from aiohttp import web


@dataclass
class RequestContext:
    """Per-request bookkeeping. Only log lines read it."""
    seq: int
    method: str = ''
    url: str = ''
    started: float = field(default_factory=time.monotonic)
    via: Optional[str] = None
    matched: Optional[str] = None

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


# where the request log middleware stores the context on a request
CONTEXT_KEY = web.RequestKey("context", RequestContext)


class RequestCounter:
    """Hands out request sequence numbers, starting at 1"""

    def __init__(self):
        self._seq = itertools.count(1)

    def next(self) -> int:
        return next(self._seq)

    def context_for(self, request) -> RequestContext:
        return RequestContext(self.next(), request.method, str(request.rel_url))


def context_of(request) -> RequestContext:
    context = request.get(CONTEXT_KEY)
    if context is None:
        context = RequestContext(0, request.method, str(request.rel_url))
        request[CONTEXT_KEY] = context
    return context
