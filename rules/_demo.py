from datetime import datetime, timezone

from override_proxy.rules import rule


# Simple demo endpoint to check that rule loading works
def hello(request, response):
    response.json({'message': 'hello', 'ts': datetime.now(timezone.utc).isoformat()})


rules = rule('GET', '/__demo/hello', hello, name='DemoHello')
