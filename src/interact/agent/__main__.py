"""Command-line entry point: run one turn against a page snapshot file."""

import asyncio
import json
import sys
import argparse
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from .config import AgentConfig
from .errors import InteractError
from .orchestrator import TaskOrchestrator
from .reasoner import Reasoner
from .store import JsonTaskStore
from ..schemas import ClientObservations, TurnRequest


async def main():
    """Main entry point for running a turn."""
    parser = argparse.ArgumentParser(
        description="Run one turn of the browser-automation task state machine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start a task
  python -m interact.agent --goal "Click the Logout button" --url https://app.example.com --page page.html

  # Continue it after the client executed the returned action
  python -m interact.agent --goal "Click the Logout button" --url https://app.example.com/bye \\
      --page after.html --task-id <id> --client-observations '{"did_url_change": true}'
        """
    )

    parser.add_argument("--goal", "-g", required=True, help="Natural-language goal for the task")
    parser.add_argument("--url", "-u", required=True, help="Current page URL")
    parser.add_argument("--page", "-p", required=True, help="Path to the current page snapshot (HTML)")
    parser.add_argument("--task-id", default=None, help="Existing task to continue")
    parser.add_argument("--store", default=None, help="Task store directory (default: INTERACT_STORE_DIR or ./tasks)")
    parser.add_argument(
        "--client-observations",
        default=None,
        help="JSON object with did_network_occur, did_dom_mutate, did_url_change, network_error"
    )
    parser.add_argument("--debug", action="store_true", help="Enable graph execution debugging")
    parser.add_argument(
        "--debug-verbose",
        action="store_true",
        help="Enable verbose graph debugging with state snapshots"
    )

    args = parser.parse_args()

    page_path = Path(args.page)
    if not page_path.exists():
        print(f"Error: page snapshot not found: {args.page}", file=sys.stderr)
        sys.exit(1)

    observations = None
    if args.client_observations:
        try:
            observations = ClientObservations.model_validate_json(args.client_observations)
        except ValueError as e:
            print(f"Error: invalid --client-observations: {e}", file=sys.stderr)
            sys.exit(1)

    if args.debug or args.debug_verbose:
        from .debug import enable_debug
        enable_debug(enabled=True, verbose=args.debug_verbose)
        print("[INFO] Graph debugging enabled", file=sys.stderr)

    overrides = {"store_dir": args.store} if args.store else {}
    config = AgentConfig.from_env(**overrides)

    try:
        orchestrator = TaskOrchestrator(
            reasoner=Reasoner(config),
            store=JsonTaskStore(config.store_dir),
            config=config,
        )
        result = await orchestrator.run_turn(
            TurnRequest(
                goal=args.goal,
                url=args.url,
                page=page_path.read_text(encoding="utf-8"),
                task_id=args.task_id,
                client_observations=observations,
            )
        )
    except KeyboardInterrupt:
        print("\n\nTurn interrupted by user", file=sys.stderr)
        sys.exit(130)
    except (InteractError, ValueError) as e:
        print(f"\nError during turn: {str(e)}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(result.model_dump(mode="json", exclude_none=True), indent=2, default=str))


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
