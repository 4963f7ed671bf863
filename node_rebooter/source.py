import logging

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException


event_types = ("ADDED", "MODIFIED", "DELETED")
watch_timeout_seconds = 300


class UpdateError(Exception):
    pass


class ConflictError(UpdateError):
    def __init__(self, name):
        super().__init__(f"Node {name} was modified since it was read")
        self.name = name


class WatchError(Exception):
    pass


def load_client_config(kubeconfig=None):
    # A kubeconfig is only needed outside the cluster, in-cluster we use the
    # pod's service account.
    if kubeconfig:
        config.load_kube_config(config_file=kubeconfig)
    else:
        config.load_incluster_config()


def name_selector(name):
    return f"metadata.name={name}"


class NodeSource:
    """List, watch and update nodes through the Kubernetes API.

    Nodes are handed out as plain dicts using the API's own field names, the
    same shape the watch stream delivers in ``raw_object``.
    """

    def __init__(self, api=None, timeout_seconds=watch_timeout_seconds):
        self.api = api or client.CoreV1Api()
        self.timeout_seconds = timeout_seconds

    def _to_dict(self, node):
        return self.api.api_client.sanitize_for_serialization(node)

    def list(self, field_selector=None):
        kwargs = {}
        if field_selector:
            kwargs["field_selector"] = field_selector

        node_list = self.api.list_node(**kwargs)
        nodes = [self._to_dict(node) for node in node_list.items]

        return nodes, node_list.metadata.resource_version

    def watch(self, resource_version, field_selector=None):
        kwargs = {
            "resource_version": resource_version,
            "timeout_seconds": self.timeout_seconds,
        }
        if field_selector:
            kwargs["field_selector"] = field_selector

        stream = watch.Watch()
        try:
            for event in stream.stream(self.api.list_node, **kwargs):
                event_type = event["type"]

                if event_type == "ERROR":
                    status = event.get("raw_object") or {}
                    raise WatchError(
                        f"Watch failed ({status.get('code')}): {status.get('message')}"
                    )

                if event_type not in event_types:
                    logging.debug(f"Ignoring {event_type} watch event")
                    continue

                yield event_type, event["raw_object"]
        finally:
            stream.stop()

    def update(self, node):
        name = node["metadata"]["name"]

        try:
            updated = self.api.replace_node(name, node)
        except ApiException as e:
            if e.status == 409:
                raise ConflictError(name) from e
            raise UpdateError(f"Failed to update node {name}: {e.reason}") from e

        return self._to_dict(updated)
