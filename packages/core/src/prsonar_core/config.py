import os
from pathlib import Path
from typing import Optional

import yaml

from prsonar_core.errors import ConfigurationError
from prsonar_core.models import Severity
from prsonar_core.report import VerdictPolicy

DEFAULT_CONFIG: dict = {
    "repo": None,  # owner/name
    "branch_name": None,
    "pull_request_id": 0,  # 0 = look pull requests up by branch_name instead
    "build_status_enabled": True,
    "approval_enabled": True,
    "min_severity": "INFO",  # findings below this are ignored entirely
    "approval_blocking_severity": "CRITICAL",  # name = this and above; or an explicit list
    "build_failing_severity": "CRITICAL",
    "server_base_url": None,  # analysis dashboard, e.g. https://sonar.example.com
    "project_key": None,
    "status_context": "prsonar",
    "max_summary_findings": 10,
}


def load_config(config_path: str = ".prsonar.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prsonar.yml in the current directory
      3. CLI argument overrides
    """
    config = dict(DEFAULT_CONFIG)

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            try:
                file_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Could not parse {config_path}: {e}") from e
        if not isinstance(file_config, dict):
            raise ConfigurationError(f"{config_path} must contain a mapping, not {type(file_config).__name__}.")
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    # Resolve credentials from environment variables
    config["github_token"] = os.environ.get("GITHUB_TOKEN")

    return config


def validate_config(config: dict) -> None:
    """Reject a configuration that cannot drive a run.

    Called once up front: nothing is posted to any pull request when this
    raises.
    """
    repo = config.get("repo")
    if not repo or "/" not in str(repo):
        raise ConfigurationError("'repo' must be set in owner/name format.")

    pr_id = config.get("pull_request_id") or 0
    if not isinstance(pr_id, int) or isinstance(pr_id, bool) or pr_id < 0:
        raise ConfigurationError(f"'pull_request_id' must be a non-negative integer, got {pr_id!r}.")
    if pr_id == 0 and not config.get("branch_name"):
        raise ConfigurationError("Either 'pull_request_id' or 'branch_name' must be set.")

    try:
        Severity.parse(config.get("min_severity") or "INFO")
        VerdictPolicy.from_config(config)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e

    max_findings = config.get("max_summary_findings")
    if not isinstance(max_findings, int) or isinstance(max_findings, bool) or max_findings < 1:
        raise ConfigurationError(f"'max_summary_findings' must be a positive integer, got {max_findings!r}.")

    if config.get("build_status_enabled"):
        if not config.get("server_base_url") or not config.get("project_key"):
            raise ConfigurationError(
                "'server_base_url' and 'project_key' are required while build status reporting is enabled."
            )
