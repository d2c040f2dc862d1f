# =============================================================================
# Model Catalog — Capabilities, Pricing and Selection Policy
# =============================================================================
#
# Static registry of the models the pipeline can route to, keyed by the
# remote model id (OpenRouter-style "vendor/model").
#
# Costs are stored as USD per MILLION tokens, the unit providers publish:
#   cost = input_tokens * cost_per_million_input / 1e6
#        + output_tokens * cost_per_million_output / 1e6
#
# calculate_cost() returns None for unknown models rather than 0.0.
# Unknown cost != zero cost.
#
# select_model() implements the routing policy:
#   1. candidates = catalog models serving the task type
#   2. drop non-vision models when the request carries images
#   3. drop models whose representative cost exceeds the budget ceiling
#   4. stable sort by priority (cost / speed / quality)
#   5. top pick + up to two alternatives + a human-readable reason
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field

from app.services.errors import ValidationError

# Representative request size used to compare models and apply the
# per-request budget ceiling.
REPRESENTATIVE_INPUT_TOKENS = 1000
REPRESENTATIVE_OUTPUT_TOKENS = 500

TASK_TYPES = ("ocr", "analysis", "generation", "correction", "audio")
PRIORITIES = ("cost", "speed", "quality")


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelConfig:
    """Capabilities and per-million-token pricing for one remote model."""

    model_id: str
    name: str
    supports_vision: bool
    supports_reasoning: bool
    cost_per_million_input: float
    cost_per_million_output: float
    context_window: int
    tasks: tuple[str, ...] = ()
    category: str = "general"

    def representative_cost(self) -> float:
        """Cost of a 1000-in / 500-out request, used for ranking."""
        return (
            REPRESENTATIVE_INPUT_TOKENS * self.cost_per_million_input
            + REPRESENTATIVE_OUTPUT_TOKENS * self.cost_per_million_output
        ) / 1_000_000


@dataclass(frozen=True)
class ModelRequirements:
    priority: str = "quality"
    needs_vision: bool = False


@dataclass(frozen=True)
class ModelBudget:
    max_cost_per_request: float | None = None


@dataclass(frozen=True)
class ModelSelection:
    selected: ModelConfig
    alternatives: list[ModelConfig] = field(default_factory=list)
    reasoning: str = ""


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------
# Order matters: it is the tie-break for the stable sort in select_model().
# ---------------------------------------------------------------------------

MODEL_CATALOG: dict[str, ModelConfig] = {
    "nvidia/nemotron-nano-12b-v2-vl": ModelConfig(
        model_id="nvidia/nemotron-nano-12b-v2-vl",
        name="NVIDIA Nemotron Nano 12B VL",
        supports_vision=True,
        supports_reasoning=False,
        cost_per_million_input=0.0,
        cost_per_million_output=0.0,
        context_window=128_000,
        tasks=("ocr", "analysis", "generation"),
        category="ocr",
    ),
    "google/gemini-2.0-flash-exp": ModelConfig(
        model_id="google/gemini-2.0-flash-exp",
        name="Gemini 2.0 Flash",
        supports_vision=True,
        supports_reasoning=False,
        cost_per_million_input=0.0,
        cost_per_million_output=0.0,
        context_window=1_048_576,
        tasks=("analysis", "generation", "correction"),
        category="fast",
    ),
    "x-ai/grok-4-fast": ModelConfig(
        model_id="x-ai/grok-4-fast",
        name="Grok 4 Fast",
        supports_vision=True,
        supports_reasoning=True,
        cost_per_million_input=0.20,
        cost_per_million_output=0.50,
        context_window=2_000_000,
        tasks=("analysis", "generation", "correction"),
        category="premium",
    ),
    "elevenlabs/eleven-multilingual-v2": ModelConfig(
        model_id="elevenlabs/eleven-multilingual-v2",
        name="ElevenLabs Multilingual v2",
        supports_vision=False,
        supports_reasoning=False,
        cost_per_million_input=0.30,
        cost_per_million_output=0.30,
        context_window=1024,
        tasks=("audio",),
        category="audio",
    ),
    "openai/tts-1": ModelConfig(
        model_id="openai/tts-1",
        name="OpenAI TTS-1",
        supports_vision=False,
        supports_reasoning=False,
        cost_per_million_input=15.0,
        cost_per_million_output=0.0,
        context_window=2048,
        tasks=("audio",),
        category="audio",
    ),
}

_PRIORITY_REASONS = {
    "cost": "lowest estimated cost per request",
    "speed": "largest context window for single-pass processing",
    "quality": "reasoning support and largest context window",
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def get_model(model_id: str) -> ModelConfig | None:
    return MODEL_CATALOG.get(model_id)


def calculate_cost(
    model_id: str,
    input_tokens: int,
    output_tokens: int,
) -> float | None:
    """
    Calculate cost in USD for a completion.

    Returns None if the model is not in the catalog (unknown pricing).
    """
    config = MODEL_CATALOG.get(model_id)
    if config is None:
        return None
    return (
        input_tokens * config.cost_per_million_input
        + output_tokens * config.cost_per_million_output
    ) / 1_000_000


def select_model(
    task_type: str,
    requirements: ModelRequirements | None = None,
    budget: ModelBudget | None = None,
    catalog: dict[str, ModelConfig] | None = None,
) -> ModelSelection:
    """
    Pick the best catalog model for a task under priority and budget.

    Raises:
        ValidationError: Unknown task/priority, or no model qualifies.
    """
    requirements = requirements or ModelRequirements()
    budget = budget or ModelBudget()
    catalog = MODEL_CATALOG if catalog is None else catalog

    if task_type not in TASK_TYPES:
        raise ValidationError(f"Unknown task type '{task_type}'")
    if requirements.priority not in PRIORITIES:
        raise ValidationError(f"Unknown priority '{requirements.priority}'")

    candidates = [m for m in catalog.values() if task_type in m.tasks]
    if requirements.needs_vision:
        candidates = [m for m in candidates if m.supports_vision]
    if budget.max_cost_per_request is not None:
        ceiling = budget.max_cost_per_request
        candidates = [m for m in candidates if m.representative_cost() <= ceiling]

    if not candidates:
        raise ValidationError(
            f"No model available for task '{task_type}' within the given "
            "requirements and budget"
        )

    if requirements.priority == "cost":
        ranked = sorted(candidates, key=lambda m: m.representative_cost())
    elif requirements.priority == "speed":
        ranked = sorted(candidates, key=lambda m: -m.context_window)
    else:
        ranked = sorted(
            candidates,
            key=lambda m: (not m.supports_reasoning, -m.context_window),
        )

    selected = ranked[0]
    reasoning = (
        f"Selected {selected.name} for {task_type}: "
        f"{_PRIORITY_REASONS[requirements.priority]}"
    )
    if requirements.needs_vision:
        reasoning += " (vision required)"
    if budget.max_cost_per_request is not None:
        reasoning += f" within ${budget.max_cost_per_request:.4f} per request"

    return ModelSelection(
        selected=selected,
        alternatives=ranked[1:3],
        reasoning=reasoning,
    )
