"""Main entry point for the Threads auto-reply service."""

import argparse
import asyncio
import json
import logging
import sys

from .bot import AutoReplyBot
from .config import Config, load_config
from .errors import AutoReplyError
from .services.database import init_db_service
from .webhook_server import create_webhook_app


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)


async def create_bot(config: Config, logger: logging.Logger) -> AutoReplyBot:
    logger.info("Initializing database at %s", config.pipeline.database_path)
    db_service = await init_db_service(config.pipeline.database_path)
    return AutoReplyBot.from_database(config, db_service)


async def run_server(args, logger: logging.Logger, config: Config) -> int:
    """Run the webhook server until interrupted."""
    import uvicorn

    bot = await create_bot(config, logger)
    app = create_webhook_app(bot)

    host = args.host or config.server.host
    port = args.port or config.server.port
    logger.info("Starting webhook server on %s:%d...", host, port)

    uvicorn_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info" if args.verbose else "warning",
    )
    server = uvicorn.Server(uvicorn_config)
    await server.serve()
    return 0


async def run_pull(args, logger: logging.Logger, config: Config) -> int:
    """Run one reconciliation pull for an account."""
    bot = await create_bot(config, logger)
    try:
        result = await bot.reconciliation.pull_mentions(args.account_id)
        print(json.dumps(result.as_dict(), indent=2))
        return 0
    finally:
        # Continuations scheduled by the pull finish before exit
        await bot.close()


async def run_retry(args, logger: logging.Logger, config: Config) -> int:
    """Reprocess a failed mention."""
    bot = await create_bot(config, logger)
    try:
        mention = await bot.mention_service.retry_mention(args.account_id, args.mention_id)
        logger.info("Mention %s queued for retry", mention.id)
        return 0
    finally:
        await bot.close()


async def run_resume(args, logger: logging.Logger, config: Config) -> int:
    """Process mentions left pending by an earlier run."""
    bot = await create_bot(config, logger)
    try:
        resumed = await bot.mention_service.resume_pending(args.limit)
        logger.info("Resumed %d mention(s)", resumed)
        return 0
    finally:
        await bot.close()


async def run_init_db(args, logger: logging.Logger, config: Config) -> int:
    db_service = await init_db_service(config.pipeline.database_path)
    await db_service.close()
    logger.info("Database initialized at %s", config.pipeline.database_path)
    return 0


COMMANDS = {
    "serve": run_server,
    "pull": run_pull,
    "retry": run_retry,
    "resume": run_resume,
    "init-db": run_init_db,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="threads-autoreply",
        description="Automatic AI replies to Threads mentions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s serve                        # Run webhook server with config.yaml
  %(prog)s -c prod.yaml serve --port 9000
  %(prog)s pull --account-id ACCOUNT    # Recover mentions missed by webhooks
  %(prog)s retry --account-id ACCOUNT --mention-id MENTION
  %(prog)s init-db                      # Create database tables
        """,
    )
    parser.add_argument(
        "-c",
        "--config",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose/debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the webhook server")
    serve.add_argument("--host", help="Bind address (default: from config)")
    serve.add_argument("--port", type=int, help="Port (default: from config)")

    pull = subparsers.add_parser("pull", help="Run one reconciliation pull")
    pull.add_argument("--account-id", required=True, help="Internal account ID")

    retry = subparsers.add_parser("retry", help="Retry a failed mention")
    retry.add_argument("--account-id", required=True, help="Internal account ID")
    retry.add_argument("--mention-id", required=True, help="Mention ID")

    resume = subparsers.add_parser("resume", help="Process mentions stuck in pending")
    resume.add_argument("--limit", type=int, default=50, help="Maximum mentions to resume")

    subparsers.add_parser("init-db", help="Create database tables")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    try:
        logger.info("Loading configuration from %s", args.config)
        config = load_config(args.config)
        return asyncio.run(COMMANDS[args.command](args, logger, config))
    except FileNotFoundError as e:
        logger.error(str(e))
        return 1
    except AutoReplyError as e:
        logger.error("%s", e)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
