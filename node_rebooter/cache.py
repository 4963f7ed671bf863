import logging
import queue
import threading
import time

from .state import node_name


default_resync_period_seconds = 10
relist_backoff_seconds = 1
max_relist_backoff_seconds = 30


class ReconcilingCache:
    """In-memory mirror of a node collection driving add/update/delete callbacks.

    A background reflector thread lists the source, then watches it from the
    list's resource version and queues everything it sees. Whenever the watch
    ends or fails it starts over with a fresh list. All cache mutations and all
    callbacks happen on the thread calling ``run``, one at a time, so handlers
    need no locking and always see a complete snapshot through ``list``.

    Every ``resync_period`` seconds each cached node is delivered again as
    ``on_update(node, node)``, whether or not anything changed.
    """

    def __init__(
        self,
        source,
        resync_period=default_resync_period_seconds,
        on_add=None,
        on_update=None,
        on_delete=None,
        field_selector=None,
    ):
        self.source = source
        self.resync_period = resync_period
        self.on_add = on_add
        self.on_update = on_update
        self.on_delete = on_delete
        self.field_selector = field_selector

        self._items = {}
        self._synced = False
        self._queue = queue.Queue()
        self._stopped = threading.Event()

    def list(self):
        return list(self._items.values())

    def get(self, name):
        return self._items.get(name)

    def __len__(self):
        return len(self._items)

    @property
    def has_synced(self):
        return self._synced

    @property
    def stopped(self):
        return self._stopped.is_set()

    def stop(self):
        self._stopped.set()
        self._queue.put(None)

    def run(self):
        reflector = threading.Thread(
            target=self._reflect, name="node-reflector", daemon=True
        )
        reflector.start()

        next_resync = time.monotonic() + self.resync_period
        while not self._stopped.is_set():
            timeout = max(0, next_resync - time.monotonic())
            try:
                item = self._queue.get(timeout=timeout)
            except queue.Empty:
                self.resync()
                next_resync = time.monotonic() + self.resync_period
                continue

            if item is None:
                continue

            kind, payload = item
            if kind == "replace":
                self.replace(payload)
            else:
                self.apply(*payload)

            # A busy queue must not hold back the periodic resync
            if time.monotonic() >= next_resync:
                self.resync()
                next_resync = time.monotonic() + self.resync_period

    def replace(self, nodes):
        fresh = {}
        for node in nodes:
            name = node_name(node)
            if not name:
                logging.warning("Skipping listed node without a name")
                continue
            fresh[name] = node

        previous = self._items
        self._items = fresh
        self._synced = True

        for name, node in previous.items():
            if name not in fresh:
                self._call(self.on_delete, node)

        for name, node in list(fresh.items()):
            old = previous.get(name)
            if old is None:
                self._call(self.on_add, node)
            else:
                self._call(self.on_update, old, node)

    def apply(self, event_type, node):
        name = node_name(node)
        if not name:
            logging.warning(f"Skipping {event_type} event for a node without a name")
            return

        if event_type == "DELETED":
            self._items.pop(name, None)
            self._call(self.on_delete, node)
            return

        if event_type not in ("ADDED", "MODIFIED"):
            logging.warning(f"Skipping unknown event type {event_type} for node {name}")
            return

        old = self._items.get(name)
        self._items[name] = node
        if old is None:
            self._call(self.on_add, node)
        else:
            self._call(self.on_update, old, node)

    def assume(self, node):
        """Record the result of our own successful update before the watch echoes it.

        Only replaces a cached node with a newer resource version; no callbacks.
        """
        name = node_name(node)
        cached = self._items.get(name)
        if cached is None:
            return

        if _resource_version(node) > _resource_version(cached):
            self._items[name] = node

    def resync(self):
        if not self._synced:
            return

        logging.debug(f"Resyncing {len(self._items)} cached nodes")
        for node in list(self._items.values()):
            if self._stopped.is_set():
                return
            self._call(self.on_update, node, node)

    def _call(self, callback, *args):
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logging.exception(f"Handler failed for node {node_name(args[-1])}")

    def _reflect(self):
        failures = 0
        while not self._stopped.is_set():
            try:
                nodes, resource_version = self.source.list(self.field_selector)
                failures = 0
                self._queue.put(("replace", nodes))

                for event_type, node in self.source.watch(
                    resource_version, self.field_selector
                ):
                    if self._stopped.is_set():
                        return
                    self._queue.put(("event", (event_type, node)))

                logging.debug("Watch stream ended, relisting nodes")
            except Exception as e:
                failures += 1
                delay = min(max_relist_backoff_seconds, relist_backoff_seconds * failures)
                logging.warning(f"List/watch of nodes failed, retrying in {delay}s: {e}")
                self._stopped.wait(delay)


def _resource_version(node):
    # Resource versions are opaque strings, but the API server hands out
    # increasing integers.
    try:
        return int(node.get("metadata", {}).get("resourceVersion"))
    except (TypeError, ValueError):
        return -1
