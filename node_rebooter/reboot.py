import logging
import subprocess

import amt.client
import amt.wsman


default_reboot_command = ["systemctl", "reboot"]
amt_power_on_state = "2"
amt_required_keys = {"address", "password", "username"}


class RebootError(Exception):
    pass


class CommandReboot:
    def __init__(self, command=None):
        self.command = list(command or default_reboot_command)

    def reboot_now(self):
        logging.info(f"Running reboot command: {' '.join(self.command)}")
        try:
            subprocess.run(self.command, check=True)
        except (OSError, subprocess.CalledProcessError) as e:
            raise RebootError(f"Reboot command failed: {e}") from e


class AmtReboot:
    """Power cycle a node out-of-band through its Intel AMT controller."""

    def __init__(self, name, amt_nodes):
        self.name = name
        self.node_config = (amt_nodes or {}).get(name)

    def reboot_now(self):
        name = self.name
        node_config = self.node_config

        if node_config is None:
            raise RebootError(f'Could not find "{name}" in AMT configuration')

        if len(amt_required_keys.intersection(node_config.keys())) != 3:
            raise RebootError(f'Invalid AMT configuration for node "{name}"')

        client = amt.client.Client(
            node_config.get("address"),
            node_config.get("password"),
            node_config.get("username"),
        )

        try:
            power_state = client.power_status()
        except Exception as e:
            raise RebootError(f'Could not read power state of node "{name}": {e}') from e

        if power_state != amt_power_on_state:
            friendly_power_state = amt.wsman.friendly_power_state(power_state)
            raise RebootError(
                f'Node "{name}" found in unexpected power state "{friendly_power_state}", not rebooting'
            )

        logging.info(f"Power cycling node {name} through AMT")
        try:
            client.power_cycle()
        except Exception as e:
            raise RebootError(f'Failed to power cycle node "{name}": {e}') from e


def build_reboot_method(name, settings):
    method = settings["reboot_method"]

    if method == "amt":
        return AmtReboot(name, settings["amt_nodes"])

    return CommandReboot(settings["reboot_command"])
