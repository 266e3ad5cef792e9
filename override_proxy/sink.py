import json

from aiohttp import web


class ResponseSink:
    """What an override handler writes its answer into.

    Calls chain the way a handler reads::

        response.status(201).json({'id': 1})
        response.header('X-Mock', 'yes').text('hello')

    Nothing is sent until the dispatcher turns the sink into an
    ``aiohttp.web.Response``.
    """

    def __init__(self):
        self.status_code = 200
        self.headers = {}
        self.body = b''
        self.written = False

    def status(self, code: int):
        self.status_code = int(code)
        return self

    def header(self, name: str, value):
        self.headers[name] = str(value)
        return self

    def send(self, body=b'', status=None, content_type=None):
        if status is not None:
            self.status(status)
        if content_type:
            self.headers['Content-Type'] = content_type
        if isinstance(body, str):
            body = body.encode('utf-8')
        self.body = body or b''
        self.written = True
        return self

    def text(self, text: str, status=None, content_type='text/plain; charset=utf-8'):
        return self.send(text, status=status, content_type=content_type)

    def json(self, data, status=None):
        return self.send(json.dumps(data), status=status, content_type='application/json')

    def to_response(self) -> web.Response:
        return web.Response(status=self.status_code, headers=self.headers, body=self.body)
