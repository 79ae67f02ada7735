"""
Configuration management and loading.

Loads extraction settings (models, spend ceiling, retry policy, chunking)
from YAML with strict validation.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Tuple, Union

import yaml

from ai_scrape_guard.core.errors import ErrorKind
from ai_scrape_guard.core.pricing import DEFAULT_MODEL_TABLE, ModelSpec
from ai_scrape_guard.core.retry import DEFAULT_RETRY_KINDS, RetryPolicy

ModelEntry = Union[str, ModelSpec]


@dataclass(frozen=True)
class ExtractionConfig:
    """Complete extraction configuration."""
    models: Tuple[ModelEntry, ...] = ("gpt-3.5-turbo", "gpt-4")
    max_cost: float = 1.0
    retry: RetryPolicy = field(default_factory=lambda: RetryPolicy(max_retries=1, wait_seconds=30))
    auto_split_tokens: int = 0
    extra_instructions: Tuple[str, ...] = ()
    model_params: Dict[str, Any] = field(default_factory=lambda: {"temperature": 0})

    def __post_init__(self):
        """Validate configuration values."""
        if not self.models:
            raise ValueError("at least one model is required")
        if self.max_cost < 0:
            raise ValueError("max_cost must be >= 0")
        if self.auto_split_tokens < 0:
            raise ValueError("auto_split_tokens must be >= 0")


_TOP_KEYS = {'models', 'max_cost', 'retry', 'auto_split_tokens', 'extra_instructions', 'model_params'}
_MODEL_KEYS = {'name', 'max_context_tokens', 'prompt_cost_per_1k', 'completion_cost_per_1k'}
_RETRY_KEYS = {'max_retries', 'wait_seconds', 'retry_errors'}


def load_extraction_config(path: str) -> ExtractionConfig:
    """Load and validate extraction configuration from a YAML file.

    Strict validation ensures no silent misconfigurations that could
    lead to unexpected spend.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated ExtractionConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Extraction config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    unknown_keys = set(raw_config.keys()) - _TOP_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    options: Dict[str, Any] = {}

    if 'models' in raw_config:
        models_data = raw_config['models']
        if not isinstance(models_data, list) or not models_data:
            raise ValueError("'models' must be a non-empty list")
        options['models'] = tuple(
            _parse_model(entry, f"models[{index}]") for index, entry in enumerate(models_data)
        )

    if 'max_cost' in raw_config:
        max_cost = raw_config['max_cost']
        if isinstance(max_cost, bool) or not isinstance(max_cost, (int, float)) or max_cost < 0:
            raise ValueError("'max_cost' must be a number >= 0")
        options['max_cost'] = float(max_cost)

    if 'retry' in raw_config:
        options['retry'] = _parse_retry(raw_config['retry'])

    if 'auto_split_tokens' in raw_config:
        split = raw_config['auto_split_tokens']
        if isinstance(split, bool) or not isinstance(split, int) or split < 0:
            raise ValueError("'auto_split_tokens' must be an integer >= 0")
        options['auto_split_tokens'] = split

    if 'extra_instructions' in raw_config:
        instructions = raw_config['extra_instructions'] or []
        if not isinstance(instructions, list) or not all(isinstance(i, str) for i in instructions):
            raise ValueError("'extra_instructions' must be a list of strings")
        options['extra_instructions'] = tuple(instructions)

    if 'model_params' in raw_config:
        params = raw_config['model_params'] or {}
        if not isinstance(params, dict):
            raise ValueError("'model_params' must be a dictionary")
        merged = {"temperature": 0}
        merged.update(params)
        options['model_params'] = merged

    return ExtractionConfig(**options)


def _parse_model(entry: Any, path: str) -> ModelEntry:
    """Parse a model entry: a registered name or a full model spec.

    Raises:
        ValueError: If the entry is invalid or names an unregistered model
    """
    if isinstance(entry, str):
        if entry not in DEFAULT_MODEL_TABLE.specs:
            raise ValueError(f"Unknown model in {path}: {entry} (define its limits and prices)")
        return entry

    if not isinstance(entry, dict):
        raise ValueError(f"{path} must be a model name or a dictionary")

    unknown_keys = set(entry.keys()) - _MODEL_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")
    missing = _MODEL_KEYS - set(entry.keys())
    if missing:
        raise ValueError(f"Missing required keys in {path}: {sorted(missing)}")

    for key in ('max_context_tokens', 'prompt_cost_per_1k', 'completion_cost_per_1k'):
        value = entry[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"'{key}' in {path} must be a number")

    return ModelSpec(
        name=str(entry['name']),
        max_context_tokens=int(entry['max_context_tokens']),
        prompt_cost_per_1k=entry['prompt_cost_per_1k'],
        completion_cost_per_1k=entry['completion_cost_per_1k'],
    )


def _parse_retry(data: Any) -> RetryPolicy:
    """Parse and validate the retry section.

    Raises:
        ValueError: If configuration is invalid
    """
    if not isinstance(data, dict):
        raise ValueError("'retry' must be a dictionary")

    unknown_keys = set(data.keys()) - _RETRY_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown retry keys: {unknown_keys}")

    max_retries = data.get('max_retries', 1)
    if isinstance(max_retries, bool) or not isinstance(max_retries, int) or max_retries < 0:
        raise ValueError("'max_retries' in retry must be an integer >= 0")

    wait_seconds = data.get('wait_seconds', 30)
    if isinstance(wait_seconds, bool) or not isinstance(wait_seconds, (int, float)) or wait_seconds < 0:
        raise ValueError("'wait_seconds' in retry must be a number >= 0")

    if 'retry_errors' in data:
        names = data['retry_errors'] or []
        if not isinstance(names, list):
            raise ValueError("'retry_errors' in retry must be a list")
        kinds = set()
        for name in names:
            try:
                kinds.add(ErrorKind(str(name).lower()))
            except ValueError:
                valid_kinds = [kind.value for kind in ErrorKind]
                raise ValueError(f"'retry_errors' entries must be one of: {valid_kinds}")
    else:
        kinds = set(DEFAULT_RETRY_KINDS)

    return RetryPolicy(
        max_retries=max_retries,
        wait_seconds=float(wait_seconds),
        retry_kinds=frozenset(kinds),
    )
