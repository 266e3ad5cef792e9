from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal, VerticalScroll
from textual.widgets import Button, DataTable, Footer, Header, Input, Label, Switch, TextArea
import asyncio
import logging

from .console import setup_logging
from .proxy_core import ProxyServer


class OverrideTui(App):
    CSS = """
    Screen {
        layout: grid;
        grid-size: 2;
        grid-columns: 2fr 5fr;
        grid-rows: 1fr;
    }

    .sidebar {
        height: 100%;
        overflow-y: auto;
    }

    .main {
        height: 100%;
        padding: 1;
    }

    .control-box {
        background: $panel;
        border: solid $accent;
        padding: 1 2;
        margin: 1;
        height: auto;
    }

    .box-title {
        color: $accent;
        text-style: bold;
        margin-bottom: 1;
        padding-bottom: 1;
    }

    Input {
        width: 100%;
        margin-bottom: 1;
    }

    Horizontal {
        margin-bottom: 1;
        height: auto;
    }

    Switch {
        margin-right: 1;
    }

    .status-on {
        color: $success;
        text-style: bold;
    }

    .status-off {
        color: $error;
        text-style: bold;
    }

    #rules {
        height: 2fr;
        border: solid $accent;
    }

    #logs {
        height: 3fr;
        border: solid $accent;
    }
    """

    BINDINGS = [("r", "reload_rules", "Reload rules"), ("q", "quit", "Quit")]

    def __init__(self, settings=None, **server_options):
        super().__init__()
        self.settings = settings
        self.server_options = server_options
        self.proxy_server = None
        self.proxy_worker = None
        self.log_queue = asyncio.Queue()

    def _default(self, key, fallback):
        value = self.server_options.get(key)
        if value is None and self.settings is not None:
            value = getattr(self.settings, key, None)
        return value if value is not None else fallback

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)

        with VerticalScroll(classes="sidebar"):
            with Container(classes="control-box"):
                yield Label(" Proxy Control", classes="box-title")
                with Horizontal():
                    yield Switch(id="toggle_proxy")
                    yield Label(" OFFLINE", id="status_label", classes="status-off")
                yield Label("Listen Port (next 9 are tried if busy)")
                port = self._default("port", 4000)
                yield Input(placeholder="4000", value=str(port), id="port", type="integer")
                yield Label("Target (upstream for unmatched requests)")
                target = self._default("target", self._default("proxy_target", ""))
                yield Input(placeholder="https://pokeapi.co/api/v2/", value=target, id="target")

            with Container(classes="control-box"):
                yield Label(" Overrides", classes="box-title")
                yield Label("Rules Directory")
                yield Input(placeholder="rules", value=self._default("rules_dir", "rules"), id="rules_dir")
                yield Button("Reload rules", id="reload", variant="primary")

        with Container(classes="main"):
            yield Label("Loaded Overrides (first match wins)")
            yield DataTable(id="rules", zebra_stripes=True)
            yield Label("Traffic Logs (Select text, Ctrl+C to copy)")
            yield TextArea(id="logs", read_only=True, show_line_numbers=False)

        yield Footer()

    async def on_mount(self):
        table = self.query_one("#rules", DataTable)
        table.add_columns("#", "Name", "Methods", "Enabled", "Source")
        level = self.settings.log_level if self.settings is not None else "INFO"
        setup_logging(level, log_queue=self.log_queue, console=False)
        self.log_worker = self.run_worker(self.process_logs(), exclusive=True)

    async def process_logs(self):
        log_widget = self.query_one("#logs", TextArea)
        while True:
            msg = await self.log_queue.get()
            log_widget.load_text(log_widget.text + msg + "\n")
            log_widget.scroll_end(animate=False)

    def refresh_rules(self):
        table = self.query_one("#rules", DataTable)
        table.clear()
        if not self.proxy_server:
            return
        for index, entry in enumerate(self.proxy_server.registry):
            table.add_row(
                str(index),
                entry.display_name or "<unnamed>",
                ",".join(entry.rule.methods),
                "on" if entry.rule.enabled else "off",
                entry.source,
            )

    async def on_switch_changed(self, event: Switch.Changed) -> None:
        if event.switch.id == "toggle_proxy":
            status_label = self.query_one("#status_label", Label)
            if event.value:
                status_label.update(" ONLINE")
                status_label.remove_class("status-off")
                status_label.add_class("status-on")
                await self.start_proxy()
            else:
                status_label.update(" OFFLINE")
                status_label.remove_class("status-on")
                status_label.add_class("status-off")
                self.stop_proxy()

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "reload":
            self.action_reload_rules()

    def action_reload_rules(self):
        if self.proxy_server:
            self.proxy_server.reload_rules()
            self.refresh_rules()
        else:
            self.log_queue.put_nowait("Proxy is offline, nothing to reload")

    async def start_proxy(self):
        options = dict(self.server_options)
        options["port"] = int(self.query_one("#port", Input).value or "4000")
        options["target"] = self.query_one("#target", Input).value or None
        options["rules_dir"] = self.query_one("#rules_dir", Input).value or None

        try:
            if self.settings is not None:
                self.proxy_server = ProxyServer.from_settings(self.settings, **options)
            else:
                self.proxy_server = ProxyServer(**{k: v for k, v in options.items() if v is not None})
        except ValueError as e:
            self.log_queue.put_nowait(f"✗ Cannot start proxy: {e}")
            return

        self.proxy_server.load_rules()
        self.refresh_rules()
        self.proxy_worker = asyncio.create_task(self.proxy_server.start())
        self.proxy_worker.add_done_callback(self._proxy_finished)
        await self.log_queue.put(f"✓ Proxy starting on port {options['port']}")

    def _proxy_finished(self, task):
        if not task.cancelled() and task.exception():
            logging.getLogger("ProxyServer").error("Proxy stopped: %s", task.exception())

    def stop_proxy(self):
        if self.proxy_server:
            self.proxy_server.stop()
        self.proxy_worker = None
        self.log_queue.put_nowait("✗ Proxy stopped")
