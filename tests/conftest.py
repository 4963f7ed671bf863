import copy
import threading

import pytest

from node_rebooter.source import ConflictError, UpdateError


def make_node(name, annotations=None, ready="True", boot_id=None, resource_version="1"):
    node = {
        "metadata": {"name": name, "resourceVersion": resource_version},
        "status": {"conditions": [{"type": "Ready", "status": ready}]},
    }
    if annotations is not None:
        node["metadata"]["annotations"] = dict(annotations)
    if boot_id is not None:
        node["status"]["nodeInfo"] = {"bootID": boot_id}
    return node


class FakeNodeSource:
    """In-memory node store with resource versions and name field selectors."""

    def __init__(self, nodes=(), events=()):
        self.nodes = {}
        self.version = 0
        self.events = list(events)
        self.updates = []
        self.fail_updates = None
        self.list_calls = 0
        self.watch_calls = 0
        self.released = threading.Event()
        for node in nodes:
            self.put(node)

    def put(self, node):
        self.version += 1
        node = copy.deepcopy(node)
        node["metadata"]["resourceVersion"] = str(self.version)
        self.nodes[node["metadata"]["name"]] = node
        return copy.deepcopy(node)

    def _matches(self, node, field_selector):
        if not field_selector:
            return True
        return field_selector == f"metadata.name={node['metadata']['name']}"

    def list(self, field_selector=None):
        self.list_calls += 1
        nodes = [copy.deepcopy(n) for n in self.nodes.values() if self._matches(n, field_selector)]
        return nodes, str(self.version)

    def watch(self, resource_version, field_selector=None):
        # The first stream delivers the queued events and disconnects, later
        # streams stay open until the test releases them.
        self.watch_calls += 1
        if self.watch_calls > 1:
            self.released.wait(5)
            return

        for event_type, node in self.events:
            if self._matches(node, field_selector):
                yield event_type, copy.deepcopy(node)

    def update(self, node):
        if self.fail_updates is not None:
            raise self.fail_updates

        name = node["metadata"]["name"]
        stored = self.nodes.get(name)
        if stored is None:
            raise UpdateError(f"Failed to update node {name}: Not Found")
        if stored["metadata"]["resourceVersion"] != node["metadata"].get("resourceVersion"):
            raise ConflictError(name)

        self.updates.append(copy.deepcopy(node))
        return self.put(node)

    def annotations(self, name):
        return self.nodes[name]["metadata"].get("annotations") or {}


class FakeReboot:
    def __init__(self, error=None):
        self.calls = 0
        self.error = error

    def reboot_now(self):
        self.calls += 1
        if self.error is not None:
            raise self.error


@pytest.fixture
def source():
    return FakeNodeSource()
