"""One-line status artifacts for operator inspection.

Each recurring task writes `<STATE>: <message> at <timestamp>` after every
step so the last outcome survives independently of the exit code.
"""

import re
from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel

from swarm_manager.logging_config import get_logger

logger = get_logger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
_STATUS_LINE = re.compile(r"^(?P<state>[A-Z_]+): (?P<message>.*) at (?P<ts>\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2})$")


class RunState(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class StatusRecord(BaseModel):
    """Last recorded outcome of a task."""

    state: RunState
    message: str
    timestamp: datetime

    def to_line(self) -> str:
        return f"{self.state.value}: {self.message} at {self.timestamp.strftime(TIMESTAMP_FORMAT)}"


class StatusFile:
    """Status artifact for one component."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def record(self, state: RunState, message: str) -> StatusRecord:
        """Overwrite the status artifact with the given outcome."""
        status = StatusRecord(state=state, message=message, timestamp=datetime.now())
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(status.to_line() + "\n")
        except OSError as e:
            # Non-fatal
            logger.warning(f"Could not write status file {self.path}: {e}")
        logger.info(f"STATUS {state.value}: {message}")
        return status

    def read(self) -> StatusRecord | None:
        """Parse the last status, or None if missing or unreadable."""
        try:
            line = self.path.read_text().strip()
        except OSError:
            return None
        match = _STATUS_LINE.match(line)
        if not match:
            return None
        return StatusRecord(
            state=RunState(match["state"]),
            message=match["message"],
            timestamp=datetime.strptime(match["ts"], TIMESTAMP_FORMAT),
        )
