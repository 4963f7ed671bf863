import argparse
import logging
import signal
import sys

from .settings import SettingsError, apply_overrides, load_settings
from .source import load_client_config


def build_parser(description):
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument("--kubeconfig", help="Path to a kubeconfig file, defaults to in-cluster config")
    parser.add_argument("--config", help="Path to the YAML settings file (default: config.yaml)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every received node event")
    return parser


def configure_logging(verbose=False):
    # stderr so that `kubectl logs` shows everything
    logging.basicConfig(
        stream=sys.stderr,
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(threadName)s: %(message)s",
    )


def start(args, **overrides):
    configure_logging(args.verbose)

    try:
        settings = apply_overrides(load_settings(args.config), **overrides)
    except SettingsError as e:
        logging.error(f"Invalid settings: {e}")
        sys.exit(2)

    load_client_config(args.kubeconfig)
    return settings


def stop_on_signal(cache):
    def handle(signum, frame):
        logging.info(f"Received signal {signum}, shutting down")
        cache.stop()

    signal.signal(signal.SIGTERM, handle)
    signal.signal(signal.SIGINT, handle)
