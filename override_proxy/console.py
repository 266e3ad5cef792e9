import logging

from rich.errors import MarkupError
from rich.logging import RichHandler
from rich.markup import escape
from rich.text import Text

logger = logging.getLogger("ProxyServer")

STATUS_COLORS = ((500, 'red'), (400, 'yellow'), (300, 'magenta'), (200, 'green'))


def fmt_status(status) -> str:
    if status is None:
        return ''
    for floor, color in STATUS_COLORS:
        if status >= floor:
            return f"[{color}]{status}[/{color}]"
    return str(status)


def log_request_start(context):
    logger.info("[dim]%s[/dim]", escape(f"[{context.seq}] -> {context.method} {context.url}"))


def log_request_match(context, entry):
    name = entry.display_name or 'override'
    extra = f" ({entry.provenance.id})" if entry.provenance else ''
    logger.info("[cyan]%s[/cyan]", escape(f"[{context.seq}] match {name}{extra}"))


def log_request_end(context, status):
    parts = [f"[{context.seq}] <- {fmt_status(status)} {context.elapsed_ms()}ms"]
    if context.via:
        parts.append(f"[blue]{escape(context.via)}[/blue]")
    if context.matched:
        parts.append(f"[cyan]{escape(context.matched)}[/cyan]")
    logger.info(' '.join(parts))


def log_error(seq, err, match=None):
    prefix = f"{match} " if match else ''
    logger.error("[red]%s[/red]", escape(f"[{seq}] ERROR {prefix}{err}"))


class QueueLogHandler(logging.Handler):
    """Mirror log lines, without markup, into an asyncio.Queue (used by the TUI)"""

    def __init__(self, queue, level=logging.NOTSET):
        super().__init__(level)
        self.queue = queue

    def emit(self, record):
        try:
            message = record.getMessage()
            try:
                message = Text.from_markup(message).plain
            except MarkupError:
                pass
            self.queue.put_nowait(message)
        except Exception:
            self.handleError(record)


def setup_logging(level='INFO', log_queue=None, console=True):
    """Install the console and/or TUI handlers on the root logger"""
    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        if getattr(handler, '_override_proxy', False):
            root.removeHandler(handler)

    handlers = []
    if console:
        handlers.append(RichHandler(markup=True, show_path=False, rich_tracebacks=True))
    if log_queue is not None:
        handlers.append(QueueLogHandler(log_queue))
    for handler in handlers:
        handler._override_proxy = True
        root.addHandler(handler)
    return root
