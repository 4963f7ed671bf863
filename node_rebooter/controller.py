import logging

from .cache import ReconcilingCache, default_resync_period_seconds
from .daemon import build_parser, start, stop_on_signal
from .source import ConflictError, NodeSource
from .state import (
    RebootState,
    copy_node,
    count_unavailable,
    mark_approved,
    node_name,
    reboot_annotation,
    reboot_requested,
    reboot_state,
)


class RebootController:
    """Approve reboot requests while fewer than max_unavailable nodes are down.

    Every add, update and delete of any node re-evaluates that node. The
    unavailable count is recomputed from the whole cache each time.
    """

    def __init__(self, source, max_unavailable=1, resync_period=default_resync_period_seconds):
        self.source = source
        self.max_unavailable = max_unavailable
        # No field selector, we need every node to count the unavailable ones
        self.cache = ReconcilingCache(
            source,
            resync_period,
            on_add=self.handle_node,
            on_update=lambda old, new: self.handle_node(new),
            on_delete=self.handle_node,
        )

    def run(self):
        self.cache.run()

    def unavailable_node_count(self):
        return count_unavailable(self.cache.list())

    def handle_node(self, node):
        name = node_name(node)
        logging.debug(f"Received update of node: {name}")

        if not reboot_requested(node):
            return

        if self.cache.get(name) is None:
            logging.debug(f"Node {name} no longer exists, nothing to approve")
            return

        state = reboot_state(node)
        if state is not RebootState.REQUESTED:
            logging.debug(f"Node {name} is already {state.value}")
            return

        unavailable = self.unavailable_node_count()
        if unavailable >= self.max_unavailable:
            logging.info(
                f"Too many nodes unavailable ({unavailable}/{self.max_unavailable}). Skipping reboot of {name}"
            )
            return

        # Never modify the cached object, it has not been persisted
        node_copy = mark_approved(copy_node(node))

        logging.info(f"Marking node {name} for reboot")
        try:
            updated = self.source.update(node_copy)
        except ConflictError as e:
            logging.info(f"{e}, will re-evaluate on the next update")
            return
        except Exception as e:
            logging.error(f"Failed to set {reboot_annotation} annotation on {name}: {e}")
            return

        # Count the approval right away instead of waiting for the watch
        self.cache.assume(updated)


def main(argv=None):
    parser = build_parser("Approve node reboots while keeping enough nodes available")
    parser.add_argument("--max-unavailable", type=int, help="Maximum number of nodes unavailable at once")
    parser.add_argument("--resync-period", type=float, help="Seconds between full resyncs of every node")
    args = parser.parse_args(argv)

    settings = start(
        args,
        max_unavailable=args.max_unavailable,
        resync_period_seconds=args.resync_period,
    )

    controller = RebootController(
        NodeSource(),
        max_unavailable=settings["max_unavailable"],
        resync_period=settings["resync_period_seconds"],
    )
    stop_on_signal(controller.cache)

    logging.info(f"Starting reboot controller (max unavailable: {controller.max_unavailable})")
    controller.run()
    logging.info("Reboot controller stopped")


if __name__ == "__main__":
    main()
