"""
Clustered scheduled task management (ScheduledTasks + FailoverClusters cmdlets).
"""

from typing import Optional

from loguru import logger

from .cluster import MALFORMED_OUTPUT_ERRORS, ClusterCommandError, parse_timestamp
from .models import ClusteredTaskInfo
from .powershell import PowerShellError, PowerShellRunner, ps_quote


class ClusteredTaskClient:
    """Reads and updates the clustered scheduled task definition."""

    def __init__(self, runner: Optional[PowerShellRunner] = None):
        self.runner = runner or PowerShellRunner()

    def get_task(self, task_name: str) -> Optional[ClusteredTaskInfo]:
        """Return the task, or None when no task with that name is registered."""
        script = (
            f"Get-ScheduledTask -TaskName {ps_quote(task_name)} -ErrorAction SilentlyContinue | "
            "Select-Object -First 1 TaskName, Description, "
            "@{n='Enabled';e={$_.Settings.Enabled}}, "
            "@{n='StartBoundary';e={if ($_.Triggers -and $_.Triggers[0].StartBoundary) "
            "{ ([datetime]$_.Triggers[0].StartBoundary).ToUniversalTime().ToString('yyyy-MM-ddTHH:mm:ssZ') }}}"
        )
        try:
            data = self.runner.run_json(script)
        except PowerShellError as e:
            raise ClusterCommandError(f"Failed to query scheduled task {task_name}: {e}") from e

        if not data:
            return None

        try:
            return ClusteredTaskInfo(
                task_name=data.get("TaskName") or task_name,
                description=data.get("Description"),
                enabled=bool(data.get("Enabled", True)),
                start_boundary=parse_timestamp(data.get("StartBoundary")),
            )
        except MALFORMED_OUTPUT_ERRORS as e:
            raise ClusterCommandError(f"Unexpected Get-ScheduledTask output for {task_name}: {e!r}") from e

    def set_description(self, task_name: str, description: str) -> None:
        """Replace the task description; replicated to every node by the cluster."""
        script = (
            f"$task = Get-ScheduledTask -TaskName {ps_quote(task_name)}; "
            f"$task.Description = {ps_quote(description)}; "
            f"Set-ClusteredScheduledTask -TaskName {ps_quote(task_name)} -TaskDefinition $task | Out-Null"
        )
        try:
            self.runner.run(script)
        except PowerShellError as e:
            raise ClusterCommandError(f"Failed to update description of task {task_name}: {e}") from e

    def register(
        self,
        task_name: str,
        execute: str,
        argument: str,
        description: str,
        interval_minutes: int,
        duration_days: int,
        enabled: bool = True,
    ) -> None:
        """Register a cluster-wide task that fires now and repeats for duration_days."""
        logger.info(
            f"Registering clustered task {task_name}: every {interval_minutes} minute(s) "
            f"for {duration_days} day(s), enabled={enabled}"
        )
        script = (
            f"$action = New-ScheduledTaskAction -Execute {ps_quote(execute)} -Argument {ps_quote(argument)}; "
            "$trigger = New-ScheduledTaskTrigger -Once -At (Get-Date) "
            f"-RepetitionInterval (New-TimeSpan -Minutes {int(interval_minutes)}) "
            f"-RepetitionDuration (New-TimeSpan -Days {int(duration_days)}); "
            f"$settings = New-ScheduledTaskSettingsSet -MultipleInstances IgnoreNew; "
            f"$settings.Enabled = ${'true' if enabled else 'false'}; "
            "$principal = New-ScheduledTaskPrincipal -UserId 'SYSTEM' -LogonType ServiceAccount -RunLevel Highest; "
            "$task = New-ScheduledTask -Action $action -Trigger $trigger -Settings $settings "
            f"-Principal $principal -Description {ps_quote(description)}; "
            f"Register-ClusteredScheduledTask -TaskName {ps_quote(task_name)} -TaskType ClusterWide "
            "-TaskDefinition $task | Out-Null"
        )
        try:
            self.runner.run(script)
        except PowerShellError as e:
            raise ClusterCommandError(f"Failed to register clustered task {task_name}: {e}") from e

    def unregister(self, task_name: str) -> None:
        logger.info(f"Unregistering clustered task {task_name}")
        try:
            self.runner.run(f"Unregister-ClusteredScheduledTask -TaskName {ps_quote(task_name)}")
        except PowerShellError as e:
            raise ClusterCommandError(f"Failed to unregister clustered task {task_name}: {e}") from e

    def set_enabled(self, task_name: str, enabled: bool) -> None:
        logger.info(f"{'Enabling' if enabled else 'Disabling'} clustered task {task_name}")
        script = (
            f"$task = Get-ScheduledTask -TaskName {ps_quote(task_name)}; "
            f"$task.Settings.Enabled = ${'true' if enabled else 'false'}; "
            f"Set-ClusteredScheduledTask -TaskName {ps_quote(task_name)} -TaskDefinition $task | Out-Null"
        )
        try:
            self.runner.run(script)
        except PowerShellError as e:
            raise ClusterCommandError(f"Failed to change enabled state of task {task_name}: {e}") from e
