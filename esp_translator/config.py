"""
Configuration management for the ESP translator.

Settings are grouped per concern (model access, orchestration limits, edit
history) and persisted as one JSON document.
"""

import json
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Literal

DEFAULT_CONFIG_PATH = Path.home() / ".esp-translator" / "config.json"


def _filter_dataclass_fields(data: dict[str, Any], cls: type) -> dict[str, Any]:
    """Filter dict to only include fields that exist in the dataclass."""
    valid_fields = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in valid_fields}


@dataclass
class ModelConfig:
    """Configuration for the tool-calling model endpoint."""

    # None = infer from model_name
    provider: Literal["openai", "anthropic"] | None = None
    model_name: str = "gpt-4o-mini"
    api_key: str | None = None
    base_url: str | None = None

    # Low temperature keeps terminology stable across rounds
    temperature: float = 0.1
    max_tokens: int = 4096

    # Passed to the SDK; its retry policy is the only retry
    timeout_seconds: float = 60.0
    max_retries: int = 3

    def __post_init__(self):
        """Apply environment overrides."""
        if "ESP_TRANSLATOR_MODEL" in os.environ:
            self.model_name = os.environ["ESP_TRANSLATOR_MODEL"]
        if "ESP_TRANSLATOR_TEMPERATURE" in os.environ:
            self.temperature = float(os.environ["ESP_TRANSLATOR_TEMPERATURE"])


@dataclass
class OrchestratorConfig:
    """Limits for one batch run."""

    max_iterations: int = 50

    # Search budget = clamp(ceil(count / items_per_lookup) + ceil(chars / chars_per_lookup))
    min_budget: int = 8
    max_budget: int = 30
    items_per_lookup: int = 4
    chars_per_lookup: int = 600

    reference_limit: int = 5
    max_candidates: int = 3

    target_language: str = "Simplified Chinese"


@dataclass
class HistoryConfig:
    """Configuration for the edit history."""

    max_size: int = 30


@dataclass
class TranslatorConfig:
    """Complete translator configuration."""

    model: ModelConfig = field(default_factory=ModelConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)

    @classmethod
    def load(cls, path: Path | None = None) -> "TranslatorConfig":
        """Load configuration from file."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        if not path.exists():
            return cls()

        with open(path, encoding="utf-8") as f:
            data = json.load(f)

        return cls(
            model=ModelConfig(**_filter_dataclass_fields(data.get("model", {}), ModelConfig)),
            orchestrator=OrchestratorConfig(
                **_filter_dataclass_fields(data.get("orchestrator", {}), OrchestratorConfig)
            ),
            history=HistoryConfig(**_filter_dataclass_fields(data.get("history", {}), HistoryConfig)),
        )

    def save(self, path: Path | None = None) -> None:
        """Save configuration to file. The API key is never written."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        path.parent.mkdir(parents=True, exist_ok=True)

        model = asdict(self.model)
        model.pop("api_key", None)

        with open(path, "w", encoding="utf-8") as f:
            json.dump(
                {
                    "model": model,
                    "orchestrator": asdict(self.orchestrator),
                    "history": asdict(self.history),
                },
                f,
                indent=2,
                ensure_ascii=False,
            )


# Default configuration instance
default_config = TranslatorConfig()
