import os
from pathlib import Path
from typing import Optional

import yaml

from beetle_core.lifecycle import DEFAULT_COMMAND, DEFAULT_MODEL
from beetle_store.base import DEFAULT_TTL_SECONDS
from beetle_store.models import AnalysisType

DEFAULT_CONFIG: dict = {
    "model": DEFAULT_MODEL,
    "prompt": None,  # None = built-in prompt for the analysis type
    "prompt_file": None,  # path to a file whose contents replace the prompt
    "analysis_command": DEFAULT_COMMAND,
    "severity_threshold": 0,  # 0 = post everything, 1 = medium and up, 2 = critical only
    "comment_delay": 1.0,  # seconds between review comments
    "buffer_ttl": DEFAULT_TTL_SECONDS,
    "max_pr_analyses_per_day": 5,  # 0 disables the daily limit
    "check_run_name": "Beetle",
    "details_url": None,
    "exclude": [],  # fnmatch patterns or directory names to keep out of the analysis
    "review_bot_prs": False,
    "store": "sqlite",  # sqlite | memory
    "store_path": ".beetle.db",
}

DEFAULT_PROMPTS = {
    AnalysisType.FULL_REPO: "Analyze this codebase for security vulnerabilities and code quality",
    AnalysisType.PR: (
        "Analyze this Pull Request for security vulnerabilities, code quality issues, and potential bugs."
    ),
}

_THRESHOLDS = (0, 1, 2)


def load_config(config_path: str = ".beetle.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .beetle.yml in the current directory
      3. CLI argument overrides
    """
    config = {**DEFAULT_CONFIG, "exclude": list(DEFAULT_CONFIG["exclude"])}

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    config = apply_overrides(config, cli_overrides)

    # Resolve credentials from environment variables
    config["github_token"] = os.environ.get("GITHUB_TOKEN")

    return config


def apply_overrides(config: dict, overrides: Optional[dict]) -> dict:
    """Return a copy of ``config`` with every non-None override applied, then validate it.

    Commands call this with their flags once the group has loaded the file.
    """
    merged = dict(config)
    for key, value in (overrides or {}).items():
        if value is not None:
            merged[key] = value

    if merged["severity_threshold"] not in _THRESHOLDS:
        raise ValueError(
            f"severity_threshold must be one of {', '.join(map(str, _THRESHOLDS))}, "
            f"got {merged['severity_threshold']!r}"
        )
    return merged


def load_prompt(config: dict, analysis_type: AnalysisType) -> str:
    """
    Resolve the analysis prompt.

    ``prompt_file`` wins over an inline ``prompt``; with neither set, the
    built-in prompt for ``analysis_type`` is used.
    """
    prompt_file = config.get("prompt_file")
    if prompt_file:
        p = Path(prompt_file)
        if not p.exists():
            raise FileNotFoundError(f"Prompt file not found: {prompt_file}")
        return p.read_text().strip()

    if config.get("prompt"):
        return config["prompt"]

    return DEFAULT_PROMPTS[analysis_type]
