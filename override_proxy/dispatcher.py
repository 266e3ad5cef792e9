import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Optional

from aiohttp import web

from . import console
from .registry import RegisteredRule, Registry
from .sink import ResponseSink

logger = logging.getLogger("Dispatcher")


@dataclass
class DispatchOutcome:
    """Result of one dispatch. `response` is None when the request should be proxied."""
    response: Optional[web.StreamResponse] = None
    rule: Optional[RegisteredRule] = None

    @property
    def passthrough(self) -> bool:
        return self.response is None


def override_failed(err) -> web.Response:
    return web.json_response({'error': 'override_failed', 'detail': str(err)}, status=500)


def override_timeout(timeout) -> web.Response:
    detail = f"override handler did not finish within {timeout}s"
    return web.json_response({'error': 'override_timeout', 'detail': detail}, status=504)


async def _resolve(value):
    if inspect.isawaitable(value):
        return await value
    return value


class Dispatcher:
    """Walk the registry in order and let the first matching rule answer.

    Rules after the first match are never tested. Anything a predicate or
    handler raises becomes a 500 ``override_failed`` response; it is never
    retried and never falls through to the proxy.
    """

    def __init__(self, registry=None, timeout=None):
        self.registry = registry if registry is not None else Registry()
        self.timeout = timeout

    def replace_registry(self, registry):
        # in-flight dispatches keep the tuple they started with
        self.registry = registry

    async def dispatch(self, request, context) -> DispatchOutcome:
        registry = self.registry
        for entry in registry:
            try:
                if not await _resolve(entry.rule.test(request)):
                    continue
            except Exception as e:
                return self._failed(entry, context, e)

            context.via = 'override'
            context.matched = entry.display_name
            console.log_request_match(context, entry)
            return await self._serve(entry, request, context)
        return DispatchOutcome()

    async def _serve(self, entry, request, context) -> DispatchOutcome:
        sink = ResponseSink()
        deferred = []

        def proceed():
            deferred.append(True)

        call = self._invoke(entry, request, sink, proceed)
        try:
            if self.timeout:
                try:
                    result = await asyncio.wait_for(call, self.timeout)
                except asyncio.TimeoutError:
                    console.log_error(context.seq, f"timed out after {self.timeout}s", entry.display_name)
                    return DispatchOutcome(override_timeout(self.timeout), entry)
            else:
                result = await call
        except Exception as e:
            return self._failed(entry, context, e)

        if deferred:
            # proceed() hands the request straight to the proxy
            context.via = 'proxy'
            logger.debug("Rule %s deferred request %s to passthrough", entry.display_name, context.seq)
            return DispatchOutcome(None, entry)
        if isinstance(result, web.StreamResponse):
            return DispatchOutcome(result, entry)
        return DispatchOutcome(sink.to_response(), entry)

    async def _invoke(self, entry, request, sink, proceed):
        return await _resolve(entry.rule.invoke(request, sink, proceed))

    def _failed(self, entry, context, err) -> DispatchOutcome:
        console.log_error(context.seq, err, entry.display_name)
        logger.debug("Override %s failed", entry.source, exc_info=err)
        return DispatchOutcome(override_failed(err), entry)
