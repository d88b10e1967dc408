"""
Configuration management for the swarm formation coordinator

All parameters are configurable and can be overridden via:
1. config/default.yaml
2. Environment variables (prefixed with SWARM_)
3. Command line arguments
"""

import os
import yaml
from dataclasses import dataclass, field
from typing import List, Optional
from pathlib import Path


@dataclass
class SwarmConfig:
    """Formation roster and frame naming"""
    drone_ids: List[str] = field(default_factory=lambda: ["drone0", "drone1"])
    reference_frame: str = "earth"          # World frame goals are normalised into
    formation_frame: str = "Swarm"          # Moving frame on the centroid

    # Formation geometry
    layout: str = "line"                    # "line", "circle", "v"
    spacing_m: float = 1.0

    # Centroid used to place the static agent frames at startup
    initial_centroid: List[float] = field(default_factory=lambda: [6.0, 0.0, 1.5])


@dataclass
class AgentConfig:
    """Per-agent reference-following goal parameters"""
    max_speed_x: float = 0.5                # m/s
    max_speed_y: float = 0.5
    max_speed_z: float = 0.5
    yaw_mode: str = "keep_yaw"


@dataclass
class ControlConfig:
    """Coordinator tick and remote endpoint timing"""
    tick_period_s: float = 0.02             # 50Hz scheduler tick
    endpoint_timeout_s: float = 5.0         # Bounded wait for action servers
    parallel_agent_init: bool = False       # Start agents from a thread pool


@dataclass
class TrajectoryConfig:
    """Trajectory sampling"""
    lookahead_points: int = 10
    sample_dt_s: float = 0.1
    default_speed_ms: float = 1.0           # Used when a goal asks for max_speed 0


@dataclass
class SimulationConfig:
    """In-process simulated action servers"""
    enabled: bool = True
    agent_speed_ms: float = 1.0
    path_speed_ms: float = 1.0
    goal_tolerance_m: float = 0.05


@dataclass
class InterfaceConfig:
    """Interface configuration"""

    # REST API
    rest_enabled: bool = False
    rest_host: str = "0.0.0.0"
    rest_port: int = 8080

    # Logging
    log_file: str = ""
    log_level: str = "INFO"
    data_log_dir: str = ""                  # Empty disables per-tick CSV logs


@dataclass
class Config:
    """Main configuration container"""

    swarm: SwarmConfig = field(default_factory=SwarmConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    control: ControlConfig = field(default_factory=ControlConfig)
    trajectory: TrajectoryConfig = field(default_factory=TrajectoryConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    interface: InterfaceConfig = field(default_factory=InterfaceConfig)

    SECTIONS = ('swarm', 'agent', 'control', 'trajectory', 'simulation', 'interface')

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "Config":
        """Load configuration from YAML file and environment"""
        config = cls()

        # Load from file if exists
        if config_path is None:
            config_path = Path(__file__).parent.parent / "config" / "default.yaml"

        if Path(config_path).exists():
            with open(config_path, 'r') as f:
                yaml_config = yaml.safe_load(f)
                if yaml_config:
                    config._update_from_dict(yaml_config)

        # Override from environment variables
        config._update_from_env()

        return config

    def _update_from_dict(self, d: dict):
        """Update config from dictionary (e.g., YAML)"""
        for section_name, section_data in d.items():
            if section_name in self.SECTIONS and isinstance(section_data, dict):
                section = getattr(self, section_name)
                for key, value in section_data.items():
                    if hasattr(section, key):
                        setattr(section, key, value)

    def _update_from_env(self):
        """Override config from environment variables"""
        prefix = "SWARM_"
        for key, value in os.environ.items():
            if key.startswith(prefix):
                # Parse SWARM_SECTION_KEY format
                parts = key[len(prefix):].lower().split("_", 1)
                if len(parts) == 2:
                    section_name, param_name = parts
                    if section_name in self.SECTIONS:
                        section = getattr(self, section_name)
                        if hasattr(section, param_name):
                            # Type conversion
                            current_value = getattr(section, param_name)
                            if isinstance(current_value, bool):
                                setattr(section, param_name, value.lower() in ('true', '1', 'yes'))
                            elif isinstance(current_value, int):
                                setattr(section, param_name, int(value))
                            elif isinstance(current_value, float):
                                setattr(section, param_name, float(value))
                            elif isinstance(current_value, list):
                                items = [v.strip() for v in value.split(",") if v.strip()]
                                if current_value and isinstance(current_value[0], float):
                                    items = [float(v) for v in items]
                                setattr(section, param_name, items)
                            else:
                                setattr(section, param_name, value)

    def to_dict(self) -> dict:
        """Configuration as nested dictionaries"""
        return {
            section_name: dict(getattr(self, section_name).__dict__)
            for section_name in self.SECTIONS
        }

    def save(self, config_path: str):
        """Save current configuration to YAML file"""
        with open(config_path, 'w') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False)


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance"""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config):
    """Set the global configuration instance"""
    global _config
    _config = config
