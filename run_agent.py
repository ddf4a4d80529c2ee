"""Run the Pilot agent on a task and steer it from the terminal"""
import asyncio
import argparse
import logging
from pathlib import Path

from config import load_config
from exceptions import PilotError, SessionUnavailableError
from session_manager import SessionManager
from session_types import AgentIteration, SessionState


logging.basicConfig(
    level=logging.INFO,
    format='[%(levelname)s] %(message)s'
)
logger = logging.getLogger(__name__)


def print_iteration(iteration: AgentIteration) -> None:
    if iteration.thoughts:
        print(f"\n💭 {iteration.thoughts}")
    for command in iteration.commands:
        print(f"   → {command}")


async def prompt_follow_up() -> str:
    answer = await asyncio.to_thread(input, "\nFollow-up instruction (empty to finish): ")
    return answer.strip()


async def run_session(manager: SessionManager, url: str, task: str) -> None:
    """Start one session and follow its events until it is terminated."""
    session_id = manager.create_session(url, task)
    logger.info(f"Session {session_id} started")

    async with manager.subscribe(session_id) as events:
        async for event in events:
            if event.type == "iteration":
                print_iteration(event.data)
            elif event.type == "state":
                state = event.data
                if state == SessionState.COMPLETED:
                    follow_up = await prompt_follow_up()
                    if not follow_up:
                        manager.finish_session(session_id)
                        continue
                    try:
                        manager.send_message(session_id, follow_up)
                    except SessionUnavailableError as e:
                        logger.error(f"Could not continue: {e}")
                        manager.finish_session(session_id)
                elif state == SessionState.ERROR:
                    logger.error("Session failed, closing the browser")
                    manager.finish_session(session_id)
                elif state == SessionState.TERMINATED:
                    break


async def main():
    parser = argparse.ArgumentParser(description="Run the Pilot browser agent")
    parser.add_argument(
        "--url",
        type=str,
        required=True,
        help="Page the browser starts on"
    )
    parser.add_argument(
        "--task",
        type=str,
        required=True,
        help="The task for the agent to perform"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config file (JSON or YAML)"
    )
    parser.add_argument(
        "--model",
        type=str,
        default=None,
        help="Override the computer use model"
    )
    parser.add_argument(
        "--browser-url",
        type=str,
        default=None,
        help="CDP address of a running Chrome instance"
    )
    parser.add_argument(
        "--no-highlight",
        action="store_true",
        help="Do not draw the pointer marker before actions"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        default=None,
        help="Enable debug logging"
    )

    args = parser.parse_args()

    config = load_config(
        args.config,
        cli_overrides={
            "model": args.model,
            "browser_url": args.browser_url,
            "no_highlight": args.no_highlight,
            "verbose": args.verbose,
        },
    )
    if config.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    manager = SessionManager(config=config, logger=logger)
    try:
        await run_session(manager, args.url, args.task)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except PilotError as e:
        logger.error(f"Error: {e}")
    except Exception as e:
        logger.error(f"Error: {e}", exc_info=True)
    finally:
        await manager.shutdown()


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
