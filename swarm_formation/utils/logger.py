"""
Logging configuration
"""

import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Union

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Chatty third-party loggers kept at WARNING
QUIET_LOGGERS = ("werkzeug", "urllib3")


def resolve_level(level: Union[int, str]) -> int:
    """Accept a logging level number or a name such as "debug" """
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: Union[int, str] = logging.INFO,
                  log_file: Optional[str] = None,
                  log_format: str = LOG_FORMAT):
    """
    Configure the root logger with a console handler and an optional file

    Args:
        level: Logging level number or name (from interface.log_level)
        log_file: Optional path to log file; parent directories are created
        log_format: Format string shared by every handler
    """
    level = resolve_level(level)
    formatter = logging.Formatter(log_format, datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


class MissionDataLogger:
    """
    Per-tick mission data logger for post-mission analysis.

    Writes one CSV row per tracking tick:
    - Coordinator state and composite status
    - Sampled centroid position
    - Distance to next waypoint reported by the path action
    - Compact per-agent status summary
    """

    COLUMNS = [
        "time_s", "tick", "state", "composite",
        "centroid_x", "centroid_y", "centroid_z",
        "distance_to_next_wp",
        "agents",
    ]

    def __init__(self, log_dir: str = None):
        """
        Initialize mission data logger.

        Args:
            log_dir: Directory for mission logs (default: ~/.swarm_formation/logs)
        """
        if log_dir is None:
            log_dir = Path.home() / ".swarm_formation" / "logs"
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.log_file: Optional[Path] = None
        self._file = None
        self._start_time: float = 0.0
        self._tick_count: int = 0

    @property
    def is_logging(self) -> bool:
        """Check if currently logging."""
        return self._file is not None

    def start(self, mission_name: str = None) -> Path:
        """
        Start a new mission log.

        Args:
            mission_name: Optional mission name for the filename

        Returns:
            Path to the log file
        """
        if self._file is not None:
            self.stop()

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        if mission_name:
            safe_name = "".join(c if c.isalnum() or c in "-_" else "_" for c in mission_name)
            filename = f"swarm_{timestamp}_{safe_name}.csv"
        else:
            filename = f"swarm_{timestamp}.csv"

        self.log_file = self.log_dir / filename
        self._file = open(self.log_file, 'w', buffering=1)  # Line buffering
        self._start_time = time.monotonic()
        self._tick_count = 0

        self._file.write("# Swarm Formation Mission Log\n")
        self._file.write(f"# Started: {datetime.now().isoformat()}\n")
        self._file.write(f"# Mission: {mission_name or 'None'}\n")
        self._file.write("#\n")
        self._file.write(",".join(self.COLUMNS) + "\n")

        logging.getLogger(__name__).info(f"Mission log started: {self.log_file}")
        return self.log_file

    def log(self,
            state: str = "",
            composite: str = "",
            centroid_x: float = 0.0, centroid_y: float = 0.0, centroid_z: float = 0.0,
            distance_to_next_wp: Optional[float] = None,
            agents: Optional[Dict[str, str]] = None):
        """Log one tick."""
        if self._file is None:
            return

        elapsed = time.monotonic() - self._start_time
        self._tick_count += 1

        agent_summary = ";".join(f"{k}={v}" for k, v in sorted((agents or {}).items()))
        values = [
            f"{elapsed:.3f}",
            str(self._tick_count),
            state,
            composite,
            f"{centroid_x:.3f}",
            f"{centroid_y:.3f}",
            f"{centroid_z:.3f}",
            "" if distance_to_next_wp is None else f"{distance_to_next_wp:.3f}",
            agent_summary,
        ]
        self._file.write(",".join(values) + "\n")

    def stop(self):
        """Stop logging and close file."""
        if self._file:
            self._file.write(f"# Ended: {datetime.now().isoformat()}\n")
            self._file.write(f"# Total ticks: {self._tick_count}\n")
            self._file.close()
            self._file = None
            logging.getLogger(__name__).info(f"Mission log stopped: {self._tick_count} ticks")
