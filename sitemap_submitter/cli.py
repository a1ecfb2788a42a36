"""Command-line interface for the Sitemap Submitter."""

import asyncio
import json
import logging
import logging.config
import os
import sys
from typing import Any, Dict, Optional

import typer
from typing_extensions import Annotated

from sitemap_submitter.config import Config
from sitemap_submitter.monitoring.metrics import PrometheusExporter
from sitemap_submitter.pipeline import PipelineOutcome, SubmissionPipeline
from sitemap_submitter.storage.cache_manager import CacheManager
from sitemap_submitter.submitter.error_handler import ErrorHandler
from sitemap_submitter.submitter.submitter import SearchEngineSubmitter

app = typer.Typer(help="Sitemap Submitter - Submit new sitemap URLs to search engines")

logger = logging.getLogger(__name__)


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Set up logging configuration.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path of a rotating log file
    """
    log_level = log_level.upper()
    handlers: Dict[str, Dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": "standard",
            "stream": "ext://sys.stdout",
        },
    }

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": log_level,
            "formatter": "standard",
            "filename": log_file,
            "maxBytes": 10485760,  # 10 MB
            "backupCount": 5,
            "encoding": "utf8",
        }

    log_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
            },
        },
        "handlers": handlers,
        "loggers": {
            "": {
                "handlers": list(handlers),
                "level": log_level,
                "propagate": True,
            },
            "asyncio": {
                "level": "WARNING",
            },
            "aiohttp": {
                "level": "WARNING",
            },
            "google": {
                "level": "WARNING",
            },
        },
    }

    logging.config.dictConfig(log_config)


def load_config(config_path: str, loglevel: Optional[str], verbose: bool) -> Config:
    """Load configuration and set up logging from it."""
    config = Config.from_files(config_path)
    log_level = "DEBUG" if verbose else (loglevel or config.logging.level)
    setup_logging(log_level, config.logging.log_file)
    return config


async def run_submission(config: Config, test_mode: bool = False) -> PipelineOutcome:
    """
    Run one detection and submission cycle.

    Args:
        config: Application configuration
        test_mode: Skip submission and history recording

    Returns:
        Outcome of the run
    """
    metrics = None
    if config.monitoring.enable_prometheus:
        metrics = PrometheusExporter(textfile_path=config.monitoring.textfile_path)

    pipeline = SubmissionPipeline(config, test_mode=test_mode, metrics=metrics)
    return await pipeline.run()


async def run_connection_check(config: Config) -> Dict[str, Any]:
    """Initialize the configured clients and check each connection."""
    submitter = SearchEngineSubmitter(config, error_handler=ErrorHandler(config.retry))
    try:
        return await submitter.check_connections()
    finally:
        await submitter.close()


@app.command()
def submit(
    config: Annotated[str, typer.Option("--config", "-c", help="Path to configuration file")] = "config.yaml",
    test: Annotated[bool, typer.Option("--test", "-t", help="Detect and normalize only, do not submit")] = False,
    loglevel: Annotated[Optional[str], typer.Option("--loglevel", "-l", help="Logging level")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable verbose output")] = False,
) -> None:
    """
    Detect new sitemap URLs and submit them to Google and Bing.

    Exits with status 1 when configuration or credentials are invalid, the
    sitemap cannot be fetched, or no search engine client can be initialized.
    Search engines rejecting URLs is logged but does not fail the run.
    """
    config_obj = load_config(config, loglevel, verbose)
    logger.info(f"Starting Sitemap Submitter (test={test})")

    try:
        outcome = asyncio.run(run_submission(config_obj, test_mode=test))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(1)
    except Exception as e:
        logger.critical(f"Run failed: {str(e)}", exc_info=True)
        sys.exit(1)

    if outcome.success:
        logger.info(f"Run finished: {outcome.message or 'done'}")
    else:
        logger.error(f"Run finished: {outcome.message}")


@app.command()
def status(
    config: Annotated[str, typer.Option("--config", "-c", help="Path to configuration file")] = "config.yaml",
) -> None:
    """Print cache and submission history statistics as JSON."""
    config_obj = Config.from_files(config)
    stats = CacheManager(config_obj).get_cache_stats()
    if stats is None:
        typer.echo("Failed to read cache statistics", err=True)
        sys.exit(1)
    typer.echo(json.dumps(stats, indent=2))


@app.command()
def check(
    config: Annotated[str, typer.Option("--config", "-c", help="Path to configuration file")] = "config.yaml",
    loglevel: Annotated[Optional[str], typer.Option("--loglevel", "-l", help="Logging level")] = None,
) -> None:
    """Check connectivity and credentials for every configured search engine."""
    config_obj = load_config(config, loglevel, False)

    try:
        result = asyncio.run(run_connection_check(config_obj))
    except Exception as e:
        logger.critical(f"Connection check failed: {str(e)}", exc_info=True)
        sys.exit(1)

    typer.echo(json.dumps(result, indent=2))
    if result["overall"]["connectedEngines"] == 0:
        sys.exit(1)


@app.command("clear-cache")
def clear_cache(
    config: Annotated[str, typer.Option("--config", "-c", help="Path to configuration file")] = "config.yaml",
    expired_hours: Annotated[Optional[float], typer.Option("--expired-hours", "-e", help="Only clear a sitemap cache older than this many hours")] = None,
) -> None:
    """Delete the cached sitemap snapshot so the next run starts fresh."""
    config_obj = Config.from_files(config)
    cache_manager = CacheManager(config_obj)

    if expired_hours is not None:
        removed = cache_manager.cleanup_expired_cache(expired_hours)
        typer.echo("Expired sitemap cache removed" if removed else "Sitemap cache is still fresh")
        return

    try:
        cache_manager.clear_sitemap_cache()
    except OSError as e:
        typer.echo(f"Failed to clear sitemap cache: {e}", err=True)
        sys.exit(1)
    typer.echo("Sitemap cache cleared")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
