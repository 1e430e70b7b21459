import argparse
import json
import sys
import logging
import threading
from uvicorn import Config, Server
from ..protocol.config import params
from ..protocol.config.params import WatcherConfig
from ..protocol.types.errors import PlanFileError
from ..upgrade.height import StaticHeightProbe
from ..upgrade.watcher import UpgradeFileWatcher, InvalidPlanPolicy, EXIT_INVALID_PLAN
from ..rpc import api # import module to set globals

logger = logging.getLogger(__name__)

EXIT_NOT_READY = 1
EXIT_CONFIG_ERROR = 3


def get_help_text() -> str:
    return f"""Chainvisor - upgrade watcher for Cosmos SDK style node daemons (Cosmovisor compatible layout)

Chainvisor polls {params.UPGRADE_INFO_FILENAME} in the node's data directory and reports
when a new upgrade plan is due, either because its height has been reached or because
the running binary belongs to a different upgrade.

Configuration is read from environment variables:
  {params.ENV_HOME:<28} home directory of the daemon (required, absolute path)
  {params.ENV_NAME:<28} name of the daemon binary (required)
  {params.ENV_DATA_DIR:<28} directory holding {params.UPGRADE_INFO_FILENAME} (default: $DAEMON_HOME/data)
  {params.ENV_POLL_INTERVAL:<28} poll interval, milliseconds or a duration like 300ms, 1s (default: 300ms)
  {params.ENV_DISABLE_RECASE:<28} keep upgrade names as written instead of lower-casing them
  {params.ENV_HEIGHT_PROBE_TIMEOUT:<28} timeout in seconds for `<daemon> status`
  {params.ENV_CALLBACK_API:<28} base URL of the deployment backend receiving callbacks
  {params.ENV_NODE_ID:<28} node identifier used in callback URLs
  {params.ENV_DEPLOYMENT_ID:<28} deployment identifier used in callback URLs
  {params.ENV_CALLBACK_TIMEOUT:<28} timeout in seconds for callback requests (default: 10)

Commands:
  watch    poll until an upgrade is due, then print the plan and exit
  check    run a single check; exit code 0 when an upgrade is due, 1 otherwise
  help     show this text

Documentation: {params.DOCS_URL}
"""


def build_watcher(args, cfg: WatcherConfig) -> UpgradeFileWatcher:
    probe = StaticHeightProbe() if args.skip_height_probe else None
    policy = InvalidPlanPolicy.PROPAGATE if args.propagate_errors else InvalidPlanPolicy.ABORT
    return UpgradeFileWatcher.from_config(cfg, height_probe=probe, on_invalid_plan=policy)


def start_rpc(watcher: UpgradeFileWatcher, host: str, port: int) -> threading.Thread:
    """Serve /status and /metrics on a background thread."""
    api.watcher = watcher
    config = Config(app=api.app, host=host, port=port, log_level="warning")
    server = Server(config)
    thread = threading.Thread(target=server.run, name="chainvisor-rpc", daemon=True)
    thread.start()
    logger.info(f"RPC: {host}:{port}")
    return thread


def cmd_watch(args) -> int:
    cfg = WatcherConfig.from_env()
    watcher = build_watcher(args, cfg)
    current = cfg.current_upgrade()

    if args.rpc_port:
        start_rpc(watcher, args.rpc_host, args.rpc_port)

    done = watcher.monitor_update(current)
    try:
        done.result()
    except PlanFileError as e:
        logger.error(f"Invalid upgrade info file: {e}")
        return EXIT_INVALID_PLAN
    except KeyboardInterrupt:
        watcher.stop()
        return 130

    plan = watcher.snapshot().current_info
    print(plan.model_dump_json(indent=2))
    return 0


def cmd_check(args) -> int:
    cfg = WatcherConfig.from_env()
    watcher = build_watcher(args, cfg)
    current = cfg.current_upgrade()

    try:
        ready = watcher.check_update(current)
    except PlanFileError as e:
        logger.error(f"Invalid upgrade info file: {e}")
        return EXIT_INVALID_PLAN

    snapshot = watcher.snapshot()
    print(json.dumps({
        "ready": ready,
        "current_upgrade": current.name,
        "plan": snapshot.current_info.model_dump() if snapshot.initialized else None,
        "height": snapshot.last_height,
    }, indent=2))
    return 0 if ready else EXIT_NOT_READY


def cmd_help(args) -> int:
    print(get_help_text())
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="chainvisor", description="Chainvisor upgrade watcher")
    parser.add_argument("--log-level", default="INFO", help="Logging level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (("watch", "Poll until an upgrade is due"), ("check", "Run a single upgrade check")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--skip-height-probe", action="store_true",
                         help="Do not query the daemon for its block height")
        sub.add_argument("--propagate-errors", action="store_true",
                         help="Report an invalid upgrade info file instead of aborting")
        if name == "watch":
            sub.add_argument("--rpc-host", default="127.0.0.1", help="RPC Host")
            sub.add_argument("--rpc-port", type=int, default=0, help="RPC Port (0 = disabled)")

    subparsers.add_parser("help", help="Show help text")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level.upper(),
        format='%(asctime)s %(levelname)s: %(message)s',
        datefmt='%H:%M:%S'
    )

    commands = {"watch": cmd_watch, "check": cmd_check, "help": cmd_help}
    try:
        return commands[args.command](args)
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR


if __name__ == "__main__":
    sys.exit(main())
