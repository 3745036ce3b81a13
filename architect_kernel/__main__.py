"""Headless runner: python -m architect_kernel [--ticks N] [--offline] [--db PATH]"""

import argparse
import asyncio
import logging
from typing import List, Optional

from architect_kernel.logging_config import setup_logging
from architect_kernel.models.simulation import OracleConfig, SimulationConfig
from architect_kernel.oracle.adapter import DecisionOracleAdapter
from architect_kernel.oracle.client import OllamaOracle
from architect_kernel.oracle.rule_based import RuleBasedOracle
from architect_kernel.orchestrator.turn import TurnOrchestrator
from architect_kernel.persistence.store import SESSION_KEY, SessionStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the construction simulation headless.")
    parser.add_argument("--ticks", type=int, default=10, help="Number of ticks to run (0 = until interrupted)")
    parser.add_argument("--offline", action="store_true", help="Use the rule-based oracle instead of Ollama")
    parser.add_argument("--model", help="Ollama model id (defaults to ARCHITECT_MODEL or llama3.1:8b)")
    parser.add_argument("--db", help="SQLite file for session snapshots; resumes an existing session")
    parser.add_argument("--session-key", default=SESSION_KEY, help="Session key inside the snapshot store")
    parser.add_argument("--interval", type=float, help="Seconds between ticks")
    parser.add_argument("--fast", action="store_true", help="Skip the pacing delays inside each tick")
    parser.add_argument("--log-file", help="Also write a DEBUG log to this file")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging on the console")
    return parser


async def run(args: argparse.Namespace) -> int:
    logger = logging.getLogger("architect_kernel.runner")

    config = SimulationConfig.instant() if args.fast else SimulationConfig()
    if args.interval is not None:
        config = config.model_copy(update={"tick_interval_seconds": args.interval})

    if args.offline:
        oracle = RuleBasedOracle()
    else:
        oracle_config = OracleConfig.from_env()
        if args.model:
            oracle_config = oracle_config.model_copy(update={"model": args.model})
        oracle = OllamaOracle(oracle_config)
        if not oracle.check_available():
            logger.warning("Ollama model %s not reachable; ticks will fall back to WAIT", oracle_config.model)

    store = SessionStore(args.db) if args.db else None
    state = store.load(args.session_key) if store else None
    if state is not None:
        logger.info("Resumed session %s (%d objects)", args.session_key, len(state.objects))

    orchestrator = TurnOrchestrator(
        adapter=DecisionOracleAdapter(oracle, config),
        state=state,
        config=config,
        store=store,
        session_key=args.session_key,
    )

    try:
        ticks = await orchestrator.run_autonomous(max_ticks=args.ticks or None)
    finally:
        await orchestrator.close()
        if store is not None:
            store.close()

    summary = orchestrator.status_summary()
    logger.info(
        "Ran %d ticks: %d objects, %d knowledge entries, tier %d",
        ticks,
        summary["object_count"],
        summary["knowledge_count"],
        summary["progression"]["complexity_level"],
    )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO, args.log_file)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        logging.getLogger("architect_kernel.runner").info("Interrupted.")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
