from aiohttp import web

ALLOW_METHODS = 'GET,HEAD,PUT,PATCH,POST,DELETE'


def parse_origins(value):
    """Comma separated origins -> list, or None (allow any) when unset or blank"""
    if not value:
        return None
    origins = [o.strip() for o in value.split(',') if o.strip()]
    return origins or None


def cors_middleware(allowed_origins=None):
    """Reflect the caller's Origin, restricted to `allowed_origins` when given.

    Requests without an Origin header (curl, same-origin) always pass.
    Preflight requests are answered here with 204 and never reach a rule.
    """
    allowed = frozenset(allowed_origins) if allowed_origins else None

    def apply(response, origin):
        if response.prepared:
            return response
        if origin:
            response.headers['Access-Control-Allow-Origin'] = origin
            response.headers['Vary'] = 'Origin'
        response.headers['Access-Control-Allow-Credentials'] = 'true'
        return response

    @web.middleware
    async def middleware(request, handler):
        origin = request.headers.get('Origin')
        if origin and allowed is not None and origin not in allowed:
            return web.json_response(
                {'error': 'cors_rejected', 'detail': 'Not allowed by CORS'}, status=403)

        if request.method == 'OPTIONS' and 'Access-Control-Request-Method' in request.headers:
            preflight = web.Response(status=204)
            preflight.headers['Access-Control-Allow-Methods'] = ALLOW_METHODS
            requested = request.headers.get('Access-Control-Request-Headers')
            if requested:
                preflight.headers['Access-Control-Allow-Headers'] = requested
            return apply(preflight, origin)

        response = await handler(request)
        return apply(response, origin)

    return middleware
