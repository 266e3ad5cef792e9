import argparse
import asyncio
import os
import sys

# Allow running as "python override_proxy/" by adding parent to path
if __package__ in (None, '') and not hasattr(sys, "frozen"):
    path = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    sys.path.insert(0, path)

from override_proxy.config import Settings, load_env_files
from override_proxy.console import setup_logging
from override_proxy.errors import ConfigError
from override_proxy.proxy_core import ProxyServer


def build_parser():
    parser = argparse.ArgumentParser(
        prog="override_proxy",
        description="Serve mocked responses for matching override rules, proxy everything else.",
    )
    parser.add_argument("--tui", action="store_true", help="run the terminal UI")
    parser.add_argument("--port", type=int, help="preferred listen port (env PORT)")
    parser.add_argument("--target", help="upstream base URL (env PROXY_TARGET)")
    parser.add_argument("--rules-dir", help="directory of rule modules (env RULES_DIR)")
    return parser


# command line flag -> environment variable it takes precedence over
FLAG_ENV = (('port', 'PORT'), ('target', 'PROXY_TARGET'), ('rules_dir', 'RULES_DIR'))


def settings_from_args(args, environ=None):
    """Settings with flags layered over the environment, validated the same way"""
    environ = dict(os.environ if environ is None else environ)
    for flag, key in FLAG_ENV:
        value = getattr(args, flag)
        if value is not None:
            environ[key] = str(value)
    return Settings(environ)


def main(argv=None):
    args = build_parser().parse_args(argv)
    load_env_files()
    try:
        settings = settings_from_args(args)
    except ConfigError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    if args.tui:
        from override_proxy.tui import OverrideTui

        OverrideTui(settings).run()
        return 0

    setup_logging(settings.log_level)
    server = ProxyServer.from_settings(settings)
    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        pass
    except OSError as e:
        print(f"Cannot start server: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
