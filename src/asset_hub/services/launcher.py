"""Start a located build executable as a detached process."""

from __future__ import annotations

import logging
import subprocess
import sys
from pathlib import Path

from asset_hub.models.build import LaunchFailure, LaunchResult

logger = logging.getLogger(__name__)


class ProcessLauncher:
    """Spawns executables and reports whether they started.

    The process is given ``startup_grace`` seconds; exiting with a non-zero
    code inside that window counts as a failed launch.
    """

    def __init__(self, startup_grace: float = 2.0) -> None:
        self.startup_grace = startup_grace

    def launch(self, executable: Path) -> LaunchResult:
        """Start *executable* in its own directory.

        Raises:
            LaunchFailure: If the process cannot be spawned or exits with an
                error during the startup window.
        """
        kwargs: dict = {"cwd": executable.parent}
        if sys.platform.startswith("win"):
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True

        logger.info("Launching %s", executable)
        try:
            process = subprocess.Popen(  # noqa: S603
                [str(executable)],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                **kwargs,
            )
        except OSError as exc:
            logger.exception("Failed to launch %s", executable)
            raise LaunchFailure(f"Failed to launch: {exc}") from exc

        try:
            exit_code = process.wait(timeout=self.startup_grace)
        except subprocess.TimeoutExpired:
            return LaunchResult(
                success=True, message="Build launched successfully", pid=process.pid
            )

        if exit_code != 0:
            logger.warning("%s exited with code %d during startup", executable, exit_code)
            raise LaunchFailure(f"Failed to launch: process exited with code {exit_code}")
        return LaunchResult(success=True, message="Build ran and exited", pid=process.pid)
