# src/ai_review_sync/main.py
import os
import sys
import logging
from urllib.parse import urlparse
from dotenv import load_dotenv # For local development using .env file

from . import __version__
from .exceptions import SyncAbortedError
from .plugin_config import load_plugin_config, PluginConfig
from .reconciler import get_strategy
from .review_cache import JsonFileReviewCache
from .scm_client import GitHubSCMClient
from .sync import AnnotationSync, file_finding_source

# Global logger for the module
logger = logging.getLogger("ai_review_sync") # Use a named logger


def setup_logging(log_level_str: str):
    """Configures basic logging for the plugin."""
    numeric_level = getattr(logging, log_level_str.upper(), None)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
        logger.warning(f"Invalid log level '{log_level_str}'. Defaulting to INFO.")

    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def validate_config(config: PluginConfig) -> bool:
    """Validate that all required configuration is present."""
    required_vars = ["scm_token", "findings_file"]
    missing = [var for var in required_vars if not getattr(config, var, None)]
    if missing:
        logger.error(f"Missing required configuration: {missing}")
        return False

    if not os.path.isfile(config.findings_file):
        logger.error(f"Findings file not found: {config.findings_file}")
        return False

    return True


def parse_repo_link(link: str):
    """Returns (owner, name) from a repository URL, or (None, None)."""
    parsed_url = urlparse(link)
    path_segments = [segment for segment in parsed_url.path.split('/') if segment]
    if path_segments and path_segments[-1].endswith(".git"):
        path_segments[-1] = path_segments[-1][:-4]
    if len(path_segments) < 2:
        return None, None
    return "/".join(path_segments[:-1]), path_segments[-1]


def populate_ci_environment_info(config: PluginConfig):
    """
    Populates the PluginConfig object with information derived from Drone CI
    environment variables. Leaves `is_pr_event` False when this is not a pull
    request build that can be synchronized.
    """
    logger.info("Populating CI environment information into config...")
    config.ci_system = "drone"
    config.ci_event_name = os.getenv("DRONE_BUILD_EVENT")

    pr_number_str = os.getenv("DRONE_PULL_REQUEST")
    if not pr_number_str:
        logger.info("Not a PR event (DRONE_PULL_REQUEST not set). Skipping annotation sync.")
        config.is_pr_event = False
        return
    try:
        config.ci_pr_number = int(pr_number_str)
    except ValueError:
        logger.error(f"Invalid DRONE_PULL_REQUEST value: {pr_number_str}. Not a number.")
        config.is_pr_event = False
        return

    config.ci_head_sha = os.getenv("DRONE_COMMIT_SHA") or os.getenv("DRONE_COMMIT") or os.getenv("DRONE_COMMIT_AFTER")
    if not config.ci_head_sha:
        logger.error("Could not determine head SHA (DRONE_COMMIT_SHA / DRONE_COMMIT / DRONE_COMMIT_AFTER missing).")
        config.is_pr_event = False
        return

    config.ci_repo_link = os.getenv("DRONE_REPO_LINK")
    if config.ci_repo_link:
        config.ci_repo_owner, config.ci_repo_name = parse_repo_link(config.ci_repo_link)
        if config.ci_repo_owner:
            logger.info(f"Parsed Repo: Owner='{config.ci_repo_owner}', Name='{config.ci_repo_name}' from link.")
        else:
            logger.warning(f"Could not parse owner/repo from link: {config.ci_repo_link}")

    if not config.ci_repo_owner or not config.ci_repo_name:
        # Fallback to direct DRONE variables if parsing failed
        config.ci_repo_owner = config.ci_repo_owner or os.getenv("DRONE_REPO_OWNER")
        config.ci_repo_name = config.ci_repo_name or os.getenv("DRONE_REPO_NAME")
        if not (config.ci_repo_owner and config.ci_repo_name):
            logger.error("Could not determine repository owner and name. SCM operations will fail.")
            config.is_pr_event = False
            return

    config.ci_repo_full_name = f"{config.ci_repo_owner}/{config.ci_repo_name}"
    config.is_pr_event = True
    logger.info(f"PR #{config.ci_pr_number} on {config.ci_repo_full_name} at {config.ci_head_sha}")


def run(config: PluginConfig) -> int:
    """Runs one synchronization pass and returns the process exit code."""
    logger.info("Starting AI review annotation sync...")
    logger.info(f"Plugin Version: {__version__}")

    if not validate_config(config):
        logger.error("Configuration validation failed. Exiting.")
        return 1

    populate_ci_environment_info(config)
    if not config.is_pr_event:
        return 0

    scm_client = GitHubSCMClient(config)
    cache = JsonFileReviewCache(config.cache_dir, config.cache_ttl_days)
    already_reconciled = cache.last_reconciled_revision(config.unit_key) == config.ci_head_sha

    sync = AnnotationSync(
        scm_client,
        cache,
        config.unit_key,
        strategy=get_strategy(config.reconcile_strategy),
        max_lines_per_chunk=config.max_lines_per_chunk,
        include_patterns=config.include_patterns,
        exclude_patterns=config.exclude_patterns,
        retry_attempts=config.retry_attempts,
        retry_base_delay=config.retry_base_delay,
        dry_run=config.dry_run,
    )

    try:
        report = sync.run(file_finding_source(config.findings_file), config.ci_head_sha,
                          already_reconciled=already_reconciled)
    except SyncAbortedError as e:
        logger.error(f"Annotation sync aborted: {e}")
        return 1

    for failure in report.failures:
        logger.error(f"  {failure.operation} {failure.target}: {failure.error}")
    logger.info(f"Plugin execution finished. Success: {report.success}")
    return 0 if report.success else 1


def main_cli():
    """
    CLI entry point. Loads .env for local dev.
    """
    # In a real CI environment, variables are injected by the system.
    if os.path.exists(".env"):
        load_dotenv(override=True)

    try:
        config = load_plugin_config()
        setup_logging(config.log_level)
        return run(config)
    except KeyboardInterrupt:
        logger.info("Plugin execution interrupted by user (KeyboardInterrupt).")
        return 130 # Standard exit code for Ctrl+C
    except Exception as e:
        logger.critical(f"Unhandled exception in plugin execution: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main_cli())
