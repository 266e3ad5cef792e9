import asyncio
import logging
from urllib.parse import urlsplit

import aiohttp
from aiohttp import web

from . import console
from .context import context_of

logger = logging.getLogger("Passthrough")

# never forwarded in either direction
HOP_BY_HOP = frozenset({
    'connection', 'keep-alive', 'proxy-authenticate', 'proxy-authorization',
    'te', 'trailer', 'trailers', 'transfer-encoding', 'upgrade', 'host', 'content-length',
})


def proxy_error(err) -> web.Response:
    detail = str(err) or err.__class__.__name__
    return web.json_response({'error': 'proxy_error', 'detail': detail}, status=502)


class ReverseProxy:
    """Forward a request to the upstream target and relay the reply as is"""

    def __init__(self, target, timeout=None, session=None):
        parsed = urlsplit(target)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(f"proxy target must be an absolute URL, got {target!r}")
        self.target = target
        self.origin = f"{parsed.scheme}://{parsed.netloc}"
        self.host = parsed.netloc
        self.base_path = parsed.path.rstrip('/')
        self.timeout = timeout
        self.session = session
        self._owns_session = session is None

    async def start(self):
        if self.session is None:
            # keep upstream bytes untouched, Content-Encoding is relayed too
            self.session = aiohttp.ClientSession(
                auto_decompress=False,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
            self._owns_session = True

    async def close(self):
        if self.session and self._owns_session:
            await self.session.close()
        self.session = None

    async def cleanup_ctx(self, app):
        await self.start()
        yield
        await self.close()

    def upstream_url(self, request) -> str:
        rel = request.rel_url
        path = rel.raw_path if rel.raw_path.startswith('/') else '/' + rel.raw_path
        url = f"{self.origin}{self.base_path}{path}"
        if rel.raw_query_string:
            url += '?' + rel.raw_query_string
        return url

    def upstream_headers(self, request) -> list:
        # pairs, so repeated headers are all forwarded
        headers = [(k, v) for k, v in request.headers.items() if k.lower() not in HOP_BY_HOP]
        headers.append(('Host', self.host))
        return headers

    async def handle(self, request) -> web.StreamResponse:
        context = context_of(request)
        context.via = 'proxy'
        url = self.upstream_url(request)
        if self.session is None:
            await self.start()

        try:
            body = await request.read()
            async with self.session.request(
                request.method,
                url,
                headers=self.upstream_headers(request),
                data=body or None,
                allow_redirects=False,
                skip_auto_headers=('User-Agent', 'Accept-Encoding', 'Content-Type'),
            ) as upstream:
                payload = await upstream.read()
                headers = [
                    (k, v) for k, v in upstream.headers.items() if k.lower() not in HOP_BY_HOP
                ]
                return web.Response(
                    status=upstream.status, reason=upstream.reason, headers=headers, body=payload)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            console.log_error(context.seq, e)
            logger.debug("Upstream request to %s failed", url, exc_info=e)
            return proxy_error(e)
