import copy
import enum
import logging


annotation_prefix = "me.danielhall.node-rebooter"
needs_reboot_annotation = f"{annotation_prefix}/needs-reboot"
reboot_annotation = f"{annotation_prefix}/reboot"
reboot_in_progress_annotation = f"{annotation_prefix}/reboot-in-progress"
boot_id_annotation = f"{annotation_prefix}/reboot-boot-id"


class RebootState(enum.Enum):
    IDLE = "idle"
    REQUESTED = "requested"
    APPROVED = "approved"
    IN_PROGRESS = "in-progress"


def node_name(node):
    return node.get("metadata", {}).get("name")


def get_annotations(node):
    return node.get("metadata", {}).get("annotations") or {}


def copy_node(node):
    """Return a private copy of a cached node that is safe to mutate.

    The copy always has an annotations mapping so transitions can write to it.
    """
    node = copy.deepcopy(node)
    metadata = node.setdefault("metadata", {})
    if metadata.get("annotations") is None:
        metadata["annotations"] = {}
    return node


def reboot_state(node):
    annotations = get_annotations(node)

    if reboot_in_progress_annotation in annotations:
        if reboot_annotation in annotations:
            logging.warning(
                f"Node {node_name(node)} carries both {reboot_annotation} and "
                f"{reboot_in_progress_annotation}, treating it as in progress"
            )
        return RebootState.IN_PROGRESS

    if reboot_annotation in annotations:
        return RebootState.APPROVED

    if needs_reboot_annotation in annotations:
        return RebootState.REQUESTED

    return RebootState.IDLE


def reboot_requested(node):
    return needs_reboot_annotation in get_annotations(node)


# Transitions operate on a copy made by copy_node and always leave at most one
# of the reboot / reboot-in-progress markers behind.


def mark_approved(node):
    annotations = node["metadata"]["annotations"]
    annotations.pop(reboot_in_progress_annotation, None)
    annotations[reboot_annotation] = ""
    return node


def mark_in_progress(node, boot_id=None):
    annotations = node["metadata"]["annotations"]
    annotations.pop(needs_reboot_annotation, None)
    annotations.pop(reboot_annotation, None)
    annotations[reboot_in_progress_annotation] = ""
    if boot_id:
        annotations[boot_id_annotation] = boot_id
    return node


def mark_rebooted(node):
    annotations = node["metadata"]["annotations"]
    annotations.pop(reboot_in_progress_annotation, None)
    annotations.pop(reboot_annotation, None)
    annotations.pop(boot_id_annotation, None)
    return node


def recorded_boot_id(node):
    return get_annotations(node).get(boot_id_annotation)


def current_boot_id(node):
    return node.get("status", {}).get("nodeInfo", {}).get("bootID")


def is_not_ready(node):
    conditions = node.get("status", {}).get("conditions") or []

    return any(
        condition.get("type") == "Ready" and condition.get("status") == "False"
        for condition in conditions
    )


def is_unavailable(node):
    if reboot_state(node) in (RebootState.APPROVED, RebootState.IN_PROGRESS):
        return True

    return is_not_ready(node)


def count_unavailable(nodes):
    return sum(1 for node in nodes if is_unavailable(node))
