# src/ai_review_sync/plugin_config.py
import os
from dataclasses import dataclass, field
from typing import Optional, List

# Default values for optional parameters
DEFAULT_RECONCILE_STRATEGY = "delete_and_recreate"
DEFAULT_MAX_LINES_PER_CHUNK = 500
DEFAULT_CACHE_DIR = ".ai-review-sync-cache"
DEFAULT_CACHE_TTL_DAYS = 7
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_BASE_DELAY = 1.0
DEFAULT_EXCLUDE_PATTERNS = ""
DEFAULT_LOG_LEVEL = "INFO"

VALID_STRATEGIES = ["delete_and_recreate", "update_in_place"]


def _split_patterns(value: str) -> List[str]:
    return [p.strip() for p in value.split(',') if p.strip()]


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default, cast=int):
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return cast(value)
    except ValueError:
        print(f"WARN: [PluginConfig] {name} must be a number, got '{value}'. Defaulting to {default}.")
        return default


@dataclass
class PluginConfig:
    """
    Holds all configuration for the annotation sync plugin,
    primarily sourced from PLUGIN_ prefixed environment variables.
    """

    # --- SCM Settings ---
    scm_token: Optional[str] = field(
        default_factory=lambda: os.getenv("PLUGIN_SCM_TOKEN")
    ) # Handled as a secret by CI
    scm_api_url: Optional[str] = field(
        default_factory=lambda: os.getenv("PLUGIN_SCM_API_URL")
    ) # For GitHub Enterprise, e.g. https://github.example.com/api/v3

    # --- Reconciliation ---
    reconcile_strategy: str = field(
        default_factory=lambda: os.getenv("PLUGIN_RECONCILE_STRATEGY", DEFAULT_RECONCILE_STRATEGY).strip().lower()
    )
    findings_file: Optional[str] = field(
        default_factory=lambda: os.getenv("PLUGIN_FINDINGS_FILE")
    )
    max_lines_per_chunk: int = field(
        default_factory=lambda: _env_number("PLUGIN_MAX_LINES_PER_CHUNK", DEFAULT_MAX_LINES_PER_CHUNK)
    )
    dry_run: bool = field(
        default_factory=lambda: _env_flag("PLUGIN_DRY_RUN")
    )

    # --- Cache ---
    cache_dir: str = field(
        default_factory=lambda: os.getenv("PLUGIN_CACHE_DIR", DEFAULT_CACHE_DIR)
    )
    cache_ttl_days: int = field(
        default_factory=lambda: _env_number("PLUGIN_CACHE_TTL_DAYS", DEFAULT_CACHE_TTL_DAYS)
    )

    # --- Retry ---
    retry_attempts: int = field(
        default_factory=lambda: _env_number("PLUGIN_RETRY_ATTEMPTS", DEFAULT_RETRY_ATTEMPTS)
    )
    retry_base_delay: float = field(
        default_factory=lambda: _env_number("PLUGIN_RETRY_BASE_DELAY", DEFAULT_RETRY_BASE_DELAY, float)
    )

    # --- Plugin Behavior ---
    include_patterns: List[str] = field(
        default_factory=lambda: _split_patterns(os.getenv("PLUGIN_INCLUDE_PATTERNS", ""))
    )
    exclude_patterns: List[str] = field(
        default_factory=lambda: _split_patterns(os.getenv("PLUGIN_EXCLUDE_PATTERNS", DEFAULT_EXCLUDE_PATTERNS))
    )
    log_level: str = field(
        default_factory=lambda: os.getenv("PLUGIN_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper()
    )

    # --- CI Environment Information (to be populated by main.py from CI system variables) ---
    ci_system: Optional[str] = None
    ci_event_name: Optional[str] = None

    ci_repo_owner: Optional[str] = None
    ci_repo_name: Optional[str] = None
    ci_repo_full_name: Optional[str] = None
    ci_repo_link: Optional[str] = None

    ci_pr_number: Optional[int] = None
    ci_head_sha: Optional[str] = None

    is_pr_event: bool = False

    @property
    def unit_key(self) -> str:
        """Identifies the pull request across runs, e.g. "owner/repo#42"."""
        return f"{self.ci_repo_owner}/{self.ci_repo_name}#{self.ci_pr_number}"

    def __post_init__(self):
        if not self.scm_token:
            print("WARN: [PluginConfig] PLUGIN_SCM_TOKEN is not set.")

        if self.reconcile_strategy not in VALID_STRATEGIES:
            print(f"WARN: [PluginConfig] Invalid PLUGIN_RECONCILE_STRATEGY '{self.reconcile_strategy}'. "
                  f"Defaulting to '{DEFAULT_RECONCILE_STRATEGY}'.")
            self.reconcile_strategy = DEFAULT_RECONCILE_STRATEGY

        if self.max_lines_per_chunk < 1:
            print(f"WARN: [PluginConfig] PLUGIN_MAX_LINES_PER_CHUNK must be positive. "
                  f"Defaulting to {DEFAULT_MAX_LINES_PER_CHUNK}.")
            self.max_lines_per_chunk = DEFAULT_MAX_LINES_PER_CHUNK

        if self.retry_attempts < 1:
            print("WARN: [PluginConfig] PLUGIN_RETRY_ATTEMPTS must be at least 1. Using 1.")
            self.retry_attempts = 1

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level not in valid_log_levels:
            print(f"WARN: [PluginConfig] Invalid PLUGIN_LOG_LEVEL '{self.log_level}'. Defaulting to '{DEFAULT_LOG_LEVEL}'.")
            self.log_level = DEFAULT_LOG_LEVEL


def load_plugin_config() -> PluginConfig:
    """
    Factory function to create and return a PluginConfig instance.
    """
    return PluginConfig()
