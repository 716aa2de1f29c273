"""
Failover cluster operations backed by the FailoverClusters and Storage cmdlets.
"""

import os
import socket
from datetime import datetime
from typing import List, Optional

from dateutil import parser as date_parser
from loguru import logger

from .models import ClusterNodeStatus, StorageJob
from .powershell import PowerShellError, PowerShellRunner, ps_quote


class ClusterCommandError(Exception):
    """Raised when a cluster query or action cannot be completed."""


# Raised while mapping PowerShell JSON rows that lack fields or have the wrong shape
MALFORMED_OUTPUT_ERRORS = (KeyError, TypeError, AttributeError, ValueError)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp emitted by PowerShell; naive values are taken as local time."""
    if not value:
        return None
    parsed = date_parser.isoparse(value)
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


class FailoverClusterClient:
    """Queries and drives the local failover cluster."""

    def __init__(self, runner: Optional[PowerShellRunner] = None):
        self.runner = runner or PowerShellRunner()

    def local_node_name(self) -> str:
        """Name of the machine this process runs on, as the cluster knows it."""
        return os.environ.get("COMPUTERNAME") or socket.gethostname().split(".")[0]

    def cluster_name(self) -> str:
        try:
            data = self.runner.run_json("Get-Cluster | Select-Object Name")
        except PowerShellError as e:
            raise ClusterCommandError(f"Failed to query cluster name: {e}") from e
        if not isinstance(data, dict) or not data.get("Name"):
            raise ClusterCommandError("Get-Cluster returned no cluster - is this node a cluster member?")
        return data["Name"]

    def list_nodes(self) -> List[ClusterNodeStatus]:
        """Return every cluster node with its state and status information."""
        script = (
            "Get-ClusterNode | Select-Object Name, "
            "@{n='State';e={$_.State.ToString()}}, "
            "@{n='StatusInformation';e={$_.StatusInformation.ToString()}}"
        )
        try:
            items = self.runner.run_json_list(script)
        except PowerShellError as e:
            raise ClusterCommandError(f"Failed to list cluster nodes: {e}") from e

        try:
            nodes = [
                ClusterNodeStatus(
                    name=item["Name"],
                    state=item.get("State") or "Unknown",
                    status_information=item.get("StatusInformation") or "Normal",
                )
                for item in items
            ]
        except MALFORMED_OUTPUT_ERRORS as e:
            raise ClusterCommandError(f"Unexpected Get-ClusterNode output: {e!r}") from e
        logger.debug(f"Cluster nodes: {[(n.name, n.state, n.status_information) for n in nodes]}")
        return nodes

    def get_node(self, name: str) -> ClusterNodeStatus:
        for node in self.list_nodes():
            if node.name.lower() == name.lower():
                return node
        raise ClusterCommandError(f"Node {name} is not a member of the cluster")

    def list_storage_jobs(self) -> List[StorageJob]:
        script = (
            "Get-StorageJob | Select-Object Name, "
            "@{n='JobState';e={$_.JobState.ToString()}}, PercentComplete"
        )
        try:
            items = self.runner.run_json_list(script)
        except PowerShellError as e:
            raise ClusterCommandError(f"Failed to query storage jobs: {e}") from e

        try:
            return [
                StorageJob(
                    name=item.get("Name") or "unnamed",
                    job_state=item.get("JobState") or "Unknown",
                    percent_complete=item.get("PercentComplete"),
                )
                for item in items
            ]
        except MALFORMED_OUTPUT_ERRORS as e:
            raise ClusterCommandError(f"Unexpected Get-StorageJob output: {e!r}") from e

    def last_boot_time(self) -> datetime:
        script = (
            "(Get-CimInstance -ClassName Win32_OperatingSystem).LastBootUpTime"
            ".ToUniversalTime().ToString('yyyy-MM-ddTHH:mm:ssZ')"
        )
        try:
            output = self.runner.run(script).strip()
        except PowerShellError as e:
            raise ClusterCommandError(f"Failed to query last boot time: {e}") from e

        try:
            boot_time = parse_timestamp(output)
        except ValueError as e:
            raise ClusterCommandError(f"Unexpected last boot time '{output}': {e}") from e
        if boot_time is None:
            raise ClusterCommandError("Win32_OperatingSystem returned no last boot time")
        return boot_time

    def suspend_node(self, name: str) -> None:
        """Pause the node and start draining its roles; does not wait for the drain."""
        logger.info(f"Suspending cluster node {name} (drain)")
        try:
            self.runner.run(f"Suspend-ClusterNode -Name {ps_quote(name)} -Drain | Out-Null")
        except PowerShellError as e:
            raise ClusterCommandError(f"Failed to suspend node {name}: {e}") from e

    def resume_node(self, name: str) -> None:
        """Resume the node without failing roles back to it."""
        logger.info(f"Resuming cluster node {name} (no failback)")
        try:
            self.runner.run(f"Resume-ClusterNode -Name {ps_quote(name)} -Failback NoFailback | Out-Null")
        except PowerShellError as e:
            raise ClusterCommandError(f"Failed to resume node {name}: {e}") from e

    def restart_computer(self) -> None:
        """Force an OS restart of the local machine. The process does not survive it."""
        logger.warning("Restarting the local computer")
        try:
            self.runner.run("Restart-Computer -Force")
        except PowerShellError as e:
            raise ClusterCommandError(f"Failed to restart computer: {e}") from e

    def path_exists_on_node(self, node: str, path: str) -> bool:
        script = (
            f"Invoke-Command -ComputerName {ps_quote(node)} "
            f"-ArgumentList {ps_quote(path)} "
            "-ScriptBlock { param($p) Test-Path -LiteralPath $p -PathType Leaf }"
        )
        try:
            output = self.runner.run(script).strip()
        except PowerShellError as e:
            raise ClusterCommandError(f"Failed to check path {path} on node {node}: {e}") from e
        return output.lower() == "true"
