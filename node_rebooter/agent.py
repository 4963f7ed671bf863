import logging
import os
import sys
import time

from .cache import ReconcilingCache, default_resync_period_seconds
from .daemon import build_parser, configure_logging, start, stop_on_signal
from .reboot import build_reboot_method
from .source import NodeSource, name_selector
from .state import (
    RebootState,
    copy_node,
    current_boot_id,
    mark_in_progress,
    mark_rebooted,
    node_name,
    reboot_in_progress_annotation,
    reboot_state,
    recorded_boot_id,
)


node_name_env = "NODE_NAME"


class RebootAgent:
    def __init__(
        self,
        name,
        source,
        reboot_method,
        resync_period=default_resync_period_seconds,
        verify_boot_id=False,
    ):
        self.name = name
        self.source = source
        self.reboot_method = reboot_method
        self.verify_boot_id = verify_boot_id
        self.rebooting = False
        # We only care about updates to ourselves
        self.cache = ReconcilingCache(
            source,
            resync_period,
            on_update=self.handle_update,
            field_selector=name_selector(name),
        )

    def run(self):
        self.cache.run()

    def handle_update(self, old, new):
        if self.rebooting:
            return

        # Work on a copy, the cached object must only change through the API
        node = copy_node(new)
        name = node_name(node)
        if name != self.name:
            logging.warning(f"Ignoring update for node {name}, this agent manages {self.name}")
            return

        logging.debug(f"Received update for node: {name}")

        state = reboot_state(node)
        if state is RebootState.APPROVED:
            self.reboot(node)
        elif state is RebootState.IN_PROGRESS:
            self.finish_reboot(node)

    def reboot(self, node):
        logging.info("Reboot requested...")

        boot_id = current_boot_id(node) if self.verify_boot_id else None
        mark_in_progress(node, boot_id=boot_id)

        try:
            self.source.update(node)
        except Exception as e:
            # Never reboot without recording that we are about to
            logging.error(f"Failed to set {reboot_in_progress_annotation} annotation: {e}")
            return

        logging.info("Rebooting node...")
        try:
            self.reboot_method.reboot_now()
        except Exception as e:
            logging.critical(f"Failed to reboot node {self.name}: {e}")
            sys.exit(1)

        self.rebooting = True
        self.cache.stop()

    def finish_reboot(self, node):
        if self.verify_boot_id:
            boot_id = recorded_boot_id(node)
            if boot_id and boot_id == current_boot_id(node):
                logging.info(f"Node {self.name} still reports boot id {boot_id}, waiting for the reboot")
                return

        logging.info("Clearing in-progress reboot annotation")
        mark_rebooted(node)

        try:
            self.source.update(node)
        except Exception as e:
            logging.error(f"Failed to remove {reboot_in_progress_annotation} annotation: {e}")


def wait_for_restart(grace_seconds):
    logging.info(f"Waiting up to {grace_seconds}s for the host to restart")
    time.sleep(grace_seconds)
    logging.critical("Host did not restart after the reboot was triggered")
    sys.exit(1)


def main(argv=None):
    parser = build_parser("Reboot this node once the reboot controller approves it")
    args = parser.parse_args(argv)

    name = os.environ.get(node_name_env)
    if not name:
        configure_logging(args.verbose)
        logging.critical(f"Missing required environment variable {node_name_env}")
        sys.exit(2)

    settings = start(args)

    agent = RebootAgent(
        name,
        NodeSource(),
        build_reboot_method(name, settings),
        resync_period=settings["resync_period_seconds"],
        verify_boot_id=settings["verify_boot_id"],
    )
    stop_on_signal(agent.cache)

    logging.info(f"Starting reboot agent for node {name}")
    agent.run()

    if agent.rebooting:
        wait_for_restart(settings["reboot_grace_seconds"])

    logging.info("Reboot agent stopped")


if __name__ == "__main__":
    main()
