#!/usr/bin/env python3
"""
ZooKeeper facade demo.

This example demonstrates:
1. Resolving a server from an environment label (or an explicit server)
2. Typed reads and writes with the string and properties serializers
3. Node and children caches delivering change events
4. Action records reaching a custom subscriber

Usage:
    python examples/zk_demo.py --server 127.0.0.1:2181
    python examples/zk_demo.py --env dev    # needs DEV.zookeeper.server configured

Configuration may also come from a .env file in the project root, e.g.:
    zookeeper.env=dev
    DEV.zookeeper.server=127.0.0.1:2181
"""

import argparse
import logging
import sys
import time
import uuid
from pathlib import Path

from dotenv import load_dotenv

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from zkfacade import (
    ActionMonitor,
    PropertiesSerializer,
    StringSerializer,
    get_client,
    get_client_for_server,
)


def setup_logging() -> None:
    """Console logging for the demo."""
    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)
    root_logger.addHandler(console_handler)

    # kazoo logs every connection attempt
    logging.getLogger("kazoo").setLevel(logging.WARNING)


def main():
    parser = argparse.ArgumentParser(description="ZooKeeper facade demo")
    parser.add_argument("--server", type=str, help="ZooKeeper connect string")
    parser.add_argument("--auth", type=str, help="Digest credential (user:password)")
    parser.add_argument("--env", type=str, help="Environment label to resolve the server from")
    args = parser.parse_args()

    env_file = Path(__file__).parent.parent / ".env"
    if env_file.exists():
        load_dotenv(env_file)
    else:
        load_dotenv()

    setup_logging()
    logger = logging.getLogger("zkfacade.demo")

    # Quiet the per-action log lines; print our own summary instead
    monitor = ActionMonitor.get_instance()
    monitor.remove_subscriber(monitor.default_listener)
    monitor.add_subscriber(
        lambda record: print(f"[ACTION] {record.action_type.name:<22} {record.path}")
    )

    if args.server:
        client = get_client_for_server(args.server, args.auth)
    else:
        client = get_client(args.env)

    base = f"/zkfacade-demo-{uuid.uuid4().hex[:8]}"
    strings = StringSerializer.get_instance()
    properties = PropertiesSerializer.get_instance()

    with client:
        logger.info(f"Connected to {client.server}, demo root {base}")

        node_cache = client.add_node_cache_listener(
            f"{base}/config",
            lambda: print(f"[NODE]   {base}/config -> {node_cache.current_data}"),
        )
        client.add_children_cache_listener(
            f"{base}/members",
            lambda event: print(
                f"[CHILD]  {event.event_type.name} "
                f"{event.data.path if event.data else ''}"
            ),
        )

        client.create_or_set(f"{base}/config", {"timeout": "30", "mode": "demo"}, properties)
        time.sleep(0.5)
        client.create_or_set(f"{base}/config", {"timeout": "60", "mode": "demo"}, properties)
        time.sleep(0.5)
        logger.info(f"Config now: {client.get(f'{base}/config', properties)}")

        first = client.create_ephemeral_sequential(f"{base}/members/member-", "alpha", strings)
        second = client.create_ephemeral_sequential(f"{base}/members/member-", "beta", strings)
        time.sleep(0.5)
        logger.info(f"Members: {client.get_children(f'{base}/members')}")

        client.delete(first)
        time.sleep(0.5)
        logger.info(f"Still registered: {client.get(second, strings)}")

        client.delete(base, recursive=True)
        time.sleep(0.5)

    monitor.flush(timeout=2)
    print("Demo complete")


if __name__ == "__main__":
    main()
