#!/usr/bin/env python3
"""Run a local simulation session.

Starts one session with the default fleet (or a YAML fleet file), lets it
tick, optionally triggers a scenario and a whale mid-run, then prints the
final snapshot as JSON.

Usage:
    python scripts/run_simulation.py --ticks 30 --interval-ms 200 --seed 42
    python scripts/run_simulation.py --scenario crash --scenario-after 10
    python scripts/run_simulation.py --fleet fleet.yaml --whale buy --record sessions.jsonl
    python scripts/run_simulation.py --hermes --scenario pyth-volatile
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import orjson
from prometheus_client.registry import CollectorRegistry

from perpsim.bots.executor import BoundedRetryExecutor, SimulatedExecutor
from perpsim.bots.presets import default_fleet, load_fleet_config
from perpsim.config import SimulationSettings
from perpsim.connectors.exporter import SimulationMetricsExporter
from perpsim.connectors.metrics_server import MetricsServer
from perpsim.contracts.session import SessionConfig
from perpsim.contracts.types import PriceModelKind, WhaleAction
from perpsim.errors import SimulationError
from perpsim.logging_config import setup_logging
from perpsim.oracle.reference import PythPriceReference
from perpsim.oracle.scenarios import DEFAULT_REFERENCE_FEED
from perpsim.session.manager import SessionManager
from perpsim.session.recorder import JsonlSessionRecorder

logger = logging.getLogger("run_simulation")


async def run(args: argparse.Namespace, settings: SimulationSettings) -> int:
    """Drive one session to completion."""
    interval_ms = args.interval_ms or settings.interval_ms

    if args.no_bots:
        bots = []
    elif args.fleet is not None:
        bots = load_fleet_config(args.fleet, market_id=args.market)
    else:
        bots = default_fleet(args.market)

    config = SessionConfig.model_validate(
        {
            "market_id": args.market,
            "start_price_e6": args.start_price_e6,
            "model": args.model,
            "interval_ms": interval_ms,
            "seed": args.seed,
            "bots": bots,
        }
    )

    reference: PythPriceReference | None = None
    if args.hermes:
        reference = PythPriceReference(settings.reference_config())
        await reference.start_polling([DEFAULT_REFERENCE_FEED])

    registry = CollectorRegistry()
    exporter = SimulationMetricsExporter(registry=registry)
    recorder = JsonlSessionRecorder(args.record) if args.record is not None else None
    executor = BoundedRetryExecutor(SimulatedExecutor(args.success_rate, seed=args.seed))

    manager = SessionManager(
        reference=reference,
        executor=executor,
        recorder=recorder,
        metrics=exporter,
    )

    metrics_port = args.metrics_port if args.metrics_port is not None else settings.metrics_port
    metrics_server: MetricsServer | None = None
    if metrics_port:
        metrics_server = MetricsServer(registry, health_fn=manager.health, port=metrics_port)
        await metrics_server.start()

    try:
        snapshot = await manager.start(config)
        logger.info("Session %s started on %s", snapshot.session_id, args.market)

        scenario_sent = args.scenario is None
        whale_sent = args.whale is None
        while True:
            await asyncio.sleep(interval_ms / 1000)
            engine = manager.engine
            if engine is None or not engine.running:
                break
            updates = engine.updates_count
            if not scenario_sent and updates >= args.scenario_after:
                echo = manager.trigger_scenario(args.scenario)
                logger.info("Scenario %s applied at update %d", echo.name, echo.updates_count)
                scenario_sent = True
            if not whale_sent and updates >= args.whale_after:
                count = manager.trigger_whale(args.whale)
                logger.info("Triggered %d whale(s): %s", count, args.whale)
                whale_sent = True
            if updates >= args.ticks:
                break

        final = await manager.stop()
    except SimulationError as e:
        logger.error("Simulation failed: %s", e)
        return 1
    finally:
        if metrics_server is not None:
            await metrics_server.stop()
        if reference is not None:
            await reference.stop_polling()
            await reference.close()

    output = orjson.dumps(final.model_dump(mode="json"), option=orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS)
    if args.output is not None:
        args.output.write_bytes(output)
        logger.info("Final snapshot written to %s", args.output)
    else:
        sys.stdout.write(output.decode() + "\n")
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Run a local perpsim session.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--market", type=str, default="sim-market", help="Market id (default: sim-market)")
    parser.add_argument(
        "--model",
        type=str,
        default=PriceModelKind.RANDOM_WALK.value,
        choices=[k.value for k in PriceModelKind if k != PriceModelKind.CUSTOM],
        help="Base price model (default: random-walk)",
    )
    parser.add_argument(
        "--start-price-e6",
        type=int,
        default=100_000_000,
        help="Starting price in E6 units (default: 100000000 = 100.0)",
    )
    parser.add_argument(
        "--interval-ms",
        type=int,
        default=None,
        help="Tick interval in ms (default: PERPSIM_INTERVAL_MS or 2000)",
    )
    parser.add_argument("--seed", type=int, default=None, help="Seed for a reproducible run")
    parser.add_argument("--ticks", type=int, default=30, help="Stop after N price updates (default: 30)")
    parser.add_argument("--scenario", type=str, default=None, help="Scenario to trigger mid-run")
    parser.add_argument(
        "--scenario-after",
        type=int,
        default=10,
        help="Trigger the scenario after N updates (default: 10)",
    )
    parser.add_argument(
        "--whale",
        type=str,
        default=None,
        choices=[a.value for a in WhaleAction],
        help="Trigger every whale with this action mid-run",
    )
    parser.add_argument(
        "--whale-after",
        type=int,
        default=5,
        help="Trigger whales after N updates (default: 5)",
    )
    parser.add_argument("--fleet", type=Path, default=None, help="YAML fleet file (default: built-in fleet)")
    parser.add_argument("--no-bots", action="store_true", help="Run the price engine alone")
    parser.add_argument(
        "--success-rate",
        type=float,
        default=0.95,
        help="Simulated executor acceptance rate (default: 0.95)",
    )
    parser.add_argument("--hermes", action="store_true", help="Poll Hermes for correlated scenarios")
    parser.add_argument("--record", type=Path, default=None, help="Append session start/end to this JSONL file")
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Prometheus /metrics port (0 to disable, default: PERPSIM_METRICS_PORT or 0)",
    )
    parser.add_argument("--output", "-o", type=Path, default=None, help="Write the final snapshot here")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    args = parser.parse_args()

    try:
        settings = SimulationSettings.from_env()
    except SimulationError as e:
        print(f"Invalid environment: {e}", file=sys.stderr)
        return 2

    setup_logging(level=logging.DEBUG if args.verbose else settings.log_level, json_format=settings.log_json)
    return asyncio.run(run(args, settings))


if __name__ == "__main__":
    sys.exit(main())
