"""systemd timers that re-trigger the recurring tasks."""

import subprocess
from dataclasses import dataclass
from pathlib import Path

from swarm_manager.exceptions import ConfigurationError, SwarmManagerError
from swarm_manager.logging_config import get_logger
from swarm_manager.models.cluster import NodeRole
from swarm_manager.models.config import SwarmConfig

logger = get_logger(__name__)

SERVICE_TEMPLATE = """[Unit]
Description={description}
After=docker.service network-online.target
Wants=network-online.target

[Service]
Type=oneshot
EnvironmentFile={env_file}
ExecStart={exec_start}
"""

TIMER_TEMPLATE = """[Unit]
Description={description} timer

[Timer]
OnBootSec=1min
OnUnitActiveSec={interval}
Unit={name}.service

[Install]
WantedBy=timers.target
"""


@dataclass
class ScheduledTask:
    name: str
    description: str
    command: str
    interval: str

    def render_service(self, env_file: Path, executable: str) -> str:
        return SERVICE_TEMPLATE.format(
            description=self.description,
            env_file=env_file,
            exec_start=f"{executable} {self.command}",
        )

    def render_timer(self) -> str:
        return TIMER_TEMPLATE.format(
            description=self.description, interval=self.interval, name=self.name
        )


def tasks_for(config: SwarmConfig) -> list[ScheduledTask]:
    """Recurring tasks for this node's role; only managers rotate certificates."""
    tasks = [
        ScheduledTask(
            name="swarm-join",
            description="Swarm join daemon",
            command="join",
            interval=config.schedule.join_interval,
        )
    ]
    if config.role == NodeRole.MANAGER:
        tasks.append(
            ScheduledTask(
                name="swarm-certificates",
                description="Swarm certificate lifecycle manager",
                command="certs rotate",
                interval=config.schedule.certificate_interval,
            )
        )
    return tasks


def write_env_file(config: SwarmConfig, path: Path) -> Path:
    """Write the config as a systemd EnvironmentFile (mode 0600)."""
    lines = [f"{key}={value}" for key, value in sorted(config.to_env().items())]
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n")
    path.chmod(0o600)
    return path


def _systemctl(*args: str) -> None:
    cmd = ["systemctl", *args]
    try:
        subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=60)
    except FileNotFoundError:
        raise SwarmManagerError(
            "systemctl not found", "Recurring tasks can only be installed on systemd hosts"
        )
    except subprocess.TimeoutExpired:
        raise SwarmManagerError(f"{' '.join(cmd)} timed out")
    except subprocess.CalledProcessError as e:
        logger.error(f"{' '.join(cmd)} failed: {e.stderr}")
        raise SwarmManagerError(f"{' '.join(cmd)} failed", (e.stderr or "").strip())


def install_schedules(config: SwarmConfig, enable: bool = True) -> list[Path]:
    """Render unit files, write the environment file and enable the timers.

    Args:
        config: Node configuration; written to the environment file
        enable: If False only write the files (no systemctl calls)

    Returns:
        Paths of every file written
    """
    settings = config.schedule
    unit_dir = Path(settings.unit_dir)
    try:
        unit_dir.mkdir(parents=True, exist_ok=True)
        written = [write_env_file(config, Path(settings.env_file))]
        tasks = tasks_for(config)
        for task in tasks:
            service = unit_dir / f"{task.name}.service"
            timer = unit_dir / f"{task.name}.timer"
            service.write_text(task.render_service(settings.env_file, settings.executable))
            timer.write_text(task.render_timer())
            written.extend([service, timer])
            logger.info(f"Wrote {service.name} and {timer.name} (every {task.interval})")
    except OSError as e:
        raise ConfigurationError(f"Cannot write systemd units to {unit_dir}", str(e))

    if enable:
        _systemctl("daemon-reload")
        for task in tasks:
            _systemctl("enable", "--now", f"{task.name}.timer")
            logger.info(f"Enabled {task.name}.timer")
    return written
