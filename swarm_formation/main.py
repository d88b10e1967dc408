#!/usr/bin/env python3
"""
Swarm Formation - Main Entry Point

Runs the formation coordinator against the simulated action servers.
"""

import argparse
import json
import signal
import sys
import time
import logging

from .config import Config, set_config
from .errors import SwarmError
from .runner import FormationRunner
from .sim.action_servers import SimulatedSwarm
from .swarm.coordinator import FormationCoordinator
from .swarm.frames import FrameTree
from .utils.logger import MissionDataLogger, setup_logging

# Global runner instance for signal handling
_runner: FormationRunner = None


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully"""
    logging.info(f"Received signal {signum}, shutting down...")

    if _runner:
        _runner.coordinator.deactivate()
        _runner.stop()

    sys.exit(0)


def parse_args():
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="Swarm Formation - Formation path-following coordinator"
    )

    parser.add_argument(
        "-c", "--config",
        type=str,
        default=None,
        help="Path to configuration file (YAML)"
    )

    parser.add_argument(
        "-g", "--goal",
        type=str,
        default=None,
        help="Goal JSON file to submit at startup"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )

    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Log file path"
    )

    parser.add_argument(
        "--rest-api",
        action="store_true",
        default=False,
        help="Enable REST API"
    )

    parser.add_argument(
        "--rest-port",
        type=int,
        default=None,
        help="REST API port (default: from config)"
    )

    parser.add_argument(
        "--data-log-dir",
        type=str,
        default=None,
        help="Directory for per-tick mission CSV logs"
    )

    return parser.parse_args()


def main():
    """Main entry point"""
    global _runner

    args = parse_args()

    # Load configuration
    config = Config.load(args.config)

    if args.rest_api:
        config.interface.rest_enabled = True
    if args.rest_port is not None:
        config.interface.rest_port = args.rest_port
    if args.log_file:
        config.interface.log_file = args.log_file
    if args.data_log_dir:
        config.interface.data_log_dir = args.data_log_dir

    set_config(config)

    # Setup logging
    log_level = logging.DEBUG if args.verbose else config.interface.log_level
    setup_logging(level=log_level, log_file=config.interface.log_file or None)

    logger = logging.getLogger(__name__)
    logger.info("Swarm Formation starting...")

    if not config.simulation.enabled:
        logger.error("No action backend configured: enable simulation in the config")
        sys.exit(1)

    # Setup signal handlers
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    frame_tree = FrameTree()
    sim = SimulatedSwarm(config, frame_tree)

    data_logger = None
    if config.interface.data_log_dir:
        data_logger = MissionDataLogger(config.interface.data_log_dir)

    coordinator = FormationCoordinator(
        config,
        sim.agent_clients(),
        sim.path_client(),
        frame_tree=frame_tree,
        data_logger=data_logger,
    )
    sim.connect_pose_feed(coordinator.record_agent_pose)
    coordinator.on_result(lambda r: logger.info(f"Result: swarm_success={r.swarm_success} ({r.reason})"))

    sim.start()
    _runner = FormationRunner(coordinator, config.control.tick_period_s)
    _runner.start()

    if config.interface.rest_enabled:
        from .interfaces.rest_api import create_api_server
        create_api_server(coordinator, config.interface.rest_port, config.interface.rest_host)

    if args.goal:
        with open(args.goal, 'r') as f:
            goal_data = json.load(f)
        try:
            coordinator.submit_goal(goal_data)
        except SwarmError as e:
            logger.error(f"Goal rejected: {e}")

    logger.info("Coordinator running. Press Ctrl+C to stop.")

    try:
        while True:
            time.sleep(1)

            status = coordinator.get_status()
            centroid = status['centroid']['position']
            logger.debug(
                f"State: {status['state']}, Composite: {status['composite']}, "
                f"Centroid: ({centroid['x']:.2f}, {centroid['y']:.2f}, {centroid['z']:.2f})"
            )

            # One-shot goal from the command line: exit when it is done
            if args.goal and not config.interface.rest_enabled and status['result'] is not None:
                break

    except KeyboardInterrupt:
        pass
    finally:
        logger.info("Shutting down...")

        coordinator.deactivate()
        _runner.stop()
        sim.stop()


if __name__ == "__main__":
    main()
