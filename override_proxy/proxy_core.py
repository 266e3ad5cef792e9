import asyncio
import logging

from aiohttp import web
from rich.markup import escape

from . import console
from .config import DEFAULT_PORT, DEFAULT_TARGET, env_snapshot
from .context import CONTEXT_KEY, RequestCounter
from .cors import cors_middleware
from .dispatcher import Dispatcher
from .passthrough import ReverseProxy
from .rule_loader import RuleLoader

# Setup Logging
logger = logging.getLogger("ProxyServer")

ENV_ROUTE = 'env'
PORT_ATTEMPTS = 10
MAX_PORT = 65535


class ProxyServer:
    """Serve overrides first, proxy everything else to `target`.

    Middleware order: request log -> CORS -> override dispatcher. The
    catch-all route behind them is the reverse proxy.
    """

    def __init__(self, host='127.0.0.1', port=DEFAULT_PORT, target=DEFAULT_TARGET,
                 rules_dir='rules', cors_origins=None, override_timeout=None,
                 proxy_timeout=None, registry=None, cors_origins_raw=None):
        self.host = host
        self.port = port
        self.preferred_port = port
        self.target = target
        self.cors_origins = cors_origins
        self.cors_origins_raw = cors_origins_raw or (','.join(cors_origins) if cors_origins else None)
        self.loader = RuleLoader(rules_dir)
        self.dispatcher = Dispatcher(registry, timeout=override_timeout)
        self.proxy = ReverseProxy(target, timeout=proxy_timeout)
        self.counter = RequestCounter()
        self.runner = None
        self.running = False
        self._stopped = None
        self._loaded = registry is not None

    @classmethod
    def from_settings(cls, settings, **overrides):
        options = dict(
            host=settings.host,
            port=settings.port,
            target=settings.proxy_target,
            rules_dir=settings.rules_dir,
            cors_origins=settings.cors_origins,
            cors_origins_raw=settings.cors_origins_raw,
            override_timeout=settings.override_timeout,
        )
        options.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**options)

    @property
    def registry(self):
        return self.dispatcher.registry

    def log(self, message):
        logger.info("%s", escape(message))

    def load_rules(self):
        registry = self.loader.load()
        self.dispatcher.replace_registry(registry)
        self._loaded = True
        return registry

    def reload_rules(self):
        """Rebuild the whole registry from disk and swap it in"""
        registry = self.load_rules()
        self.log(f"Reloaded {len(registry)} override(s)")
        return registry

    # -- middleware ----------------------------------------------------

    @web.middleware
    async def request_log_middleware(self, request, handler):
        context = self.counter.context_for(request)
        request[CONTEXT_KEY] = context
        console.log_request_start(context)
        try:
            response = await handler(request)
        except web.HTTPException as e:
            console.log_request_end(context, e.status)
            raise
        except Exception as e:
            console.log_error(context.seq, e, context.matched)
            raise
        console.log_request_end(context, response.status)
        return response

    @web.middleware
    async def override_middleware(self, request, handler):
        if request.match_info.route.name == ENV_ROUTE:
            return await handler(request)
        outcome = await self.dispatcher.dispatch(request, request[CONTEXT_KEY])
        if outcome.passthrough:
            return await handler(request)
        return outcome.response

    async def serve_env(self, request):
        return web.json_response({'env': env_snapshot(self.target, self.preferred_port, self.cors_origins_raw)})

    # -- app / lifecycle ----------------------------------------------

    def build_app(self) -> web.Application:
        if not self._loaded:
            self.load_rules()
        app = web.Application(middlewares=[
            self.request_log_middleware,
            cors_middleware(self.cors_origins),
            self.override_middleware,
        ])
        app.router.add_get('/__env', self.serve_env, name=ENV_ROUTE)
        app.router.add_route('*', '/{tail:.*}', self.proxy.handle)
        app.cleanup_ctx.append(self.proxy.cleanup_ctx)
        return app

    async def _bind(self):
        last_error = None
        last_port = min(self.preferred_port + PORT_ATTEMPTS, MAX_PORT + 1)
        for port in range(self.preferred_port, last_port):
            site = web.TCPSite(self.runner, self.host, port)
            try:
                await site.start()
            except OSError as e:
                last_error = e
                await site.stop()
                continue
            if port != self.preferred_port:
                self.log(f"Port {self.preferred_port} busy -> selected {port}")
            return port
        raise OSError(f"no free port in {self.preferred_port}-{last_port - 1}: {last_error}")

    def banner(self):
        lines = [
            f"Server listening http://{self.host}:{self.port}",
            f"Target: {self.target}",
            "Overrides:",
        ]
        return lines + (self.registry.describe() or ["  (none)"])

    async def start(self):
        self.running = True
        self._stopped = asyncio.Event()
        self.runner = web.AppRunner(self.build_app())
        await self.runner.setup()
        try:
            self.port = await self._bind()
            for line in self.banner():
                self.log(line)
            await self._stopped.wait()
        finally:
            self.running = False
            await self.runner.cleanup()
            self.runner = None

    def stop(self):
        self.running = False
        if self._stopped:
            self._stopped.set()
