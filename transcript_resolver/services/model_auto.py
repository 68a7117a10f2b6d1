"""
Automatic summarization model selection.

Builds the ranked list of model attempts a consumer of resolved transcripts
walks through: candidates come from the first rule matching the content kind,
are filtered by capability and context size, and may be followed by an
OpenRouter fallback when an OpenRouter key is present.
"""
import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

from ..models import AutoModelAttempt

PROVIDERS = ("xai", "openai", "google", "anthropic", "zai")
OPENROUTER_PREFIX = "openrouter/"

_ALIASES = {
    "grok-4-1-fast-non-reasoning": "xai/grok-4-fast-non-reasoning",
    "grok-4.1-fast-non-reasoning": "xai/grok-4-fast-non-reasoning",
    "xai/grok-4-1-fast-non-reasoning": "xai/grok-4-fast-non-reasoning",
    "xai/grok-4.1-fast-non-reasoning": "xai/grok-4-fast-non-reasoning",
}

_PROVIDER_ENV = {
    "xai": "XAI_API_KEY",
    "google": "GEMINI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}
_GEMINI_ENV_ALIASES = ("GEMINI_API_KEY", "GOOGLE_GENERATIVE_AI_API_KEY", "GOOGLE_API_KEY")


@dataclass(frozen=True)
class ParsedModelId:
    provider: str
    model: str
    canonical: str


@dataclass
class AutoRuleCandidate:
    model: str
    openrouter_providers: Optional[list[str]] = None


@dataclass
class AutoRule:
    candidates: list[AutoRuleCandidate]
    kind: Optional[str] = None


def _rule(kind: Optional[str], *models: str) -> AutoRule:
    return AutoRule(kind=kind, candidates=[AutoRuleCandidate(model=m) for m in models])


DEFAULT_RULES: tuple[AutoRule, ...] = (
    _rule("video", "google/gemini-3-flash-preview", "google/gemini-2.5-flash-lite-preview-09-2025"),
    _rule("youtube", "openai/gpt-5-nano", "google/gemini-3-flash-preview", "xai/grok-4-fast-non-reasoning"),
    _rule("website", "openai/gpt-5-nano", "openai/gpt-5.2", "xai/grok-4-fast-non-reasoning"),
    _rule("text", "openai/gpt-5-nano", "openai/gpt-5.2", "xai/grok-4-fast-non-reasoning"),
    _rule(None, "openai/gpt-5-nano", "google/gemini-3-flash-preview", "xai/grok-4-fast-non-reasoning"),
)


def normalize_model_id(raw: str) -> str:
    """
    Canonicalize a model id to ``provider/model``.

    Bare names are mapped by prefix (grok- to xai, gemini- to google,
    claude- to anthropic, anything else to openai).

    Raises:
        ValueError: empty id, unknown provider prefix, or empty model name
    """
    normalized = raw.strip().lower()
    if not normalized:
        raise ValueError("Missing model id")
    if normalized in _ALIASES:
        return _ALIASES[normalized]

    if "/" not in normalized:
        if normalized.startswith("grok-"):
            return f"xai/{normalized}"
        if normalized.startswith("gemini-"):
            return f"google/{normalized}"
        if normalized.startswith("claude-"):
            return f"anthropic/{normalized}"
        return f"openai/{normalized}"

    provider, model = normalized.split("/", 1)
    if provider not in PROVIDERS:
        raise ValueError(
            f'Unsupported model provider "{provider}". '
            "Use xai/..., openai/..., google/..., anthropic/..., or zai/..."
        )
    if not model.strip():
        raise ValueError("Missing model id after provider prefix")
    return f"{provider}/{model}"


def parse_model_id(raw: str) -> ParsedModelId:
    canonical = normalize_model_id(raw)
    provider, model = canonical.split("/", 1)
    return ParsedModelId(provider=provider, model=model, canonical=canonical)


def is_openrouter_model(model_id: str) -> bool:
    return model_id.strip().lower().startswith(OPENROUTER_PREFIX)


def required_env_for(model_id: str) -> str:
    if is_openrouter_model(model_id):
        return "OPENROUTER_API_KEY"
    return _PROVIDER_ENV.get(parse_model_id(model_id).provider, "OPENAI_API_KEY")


def env_has_key(env: Mapping[str, Optional[str]], name: str) -> bool:
    names = _GEMINI_ENV_ALIASES if name == "GEMINI_API_KEY" else (name,)
    return any((env.get(n) or "").strip() for n in names)


def is_video_capable(model_id: str) -> bool:
    try:
        return parse_model_id(model_id).provider == "google"
    except ValueError:
        return False


def _catalog_entry(catalog: Optional[Mapping[str, Any]], model_id: str) -> Optional[Mapping[str, Any]]:
    """Catalog record for ``provider/model``, falling back to the bare model name."""
    if not catalog:
        return None
    keys = [model_id]
    if "/" in model_id:
        keys.append(model_id.split("/", 1)[1])
    for key in keys:
        entry = catalog.get(key)
        if isinstance(entry, Mapping):
            return entry
    return None


def _positive_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if math.isfinite(value) and value > 0 else None


def catalog_max_input_tokens(catalog: Optional[Mapping[str, Any]], model_id: str) -> Optional[int]:
    entry = _catalog_entry(catalog, model_id)
    if entry is None:
        return None
    value = _positive_number(entry.get("max_input_tokens"))
    return int(value) if value is not None else None


def estimate_cost_usd(
    catalog: Optional[Mapping[str, Any]],
    model_id: str,
    prompt_tokens: Optional[int],
    output_tokens: Optional[int],
) -> Optional[float]:
    entry = _catalog_entry(catalog, model_id)
    if entry is None:
        return None
    input_cost = entry.get("input_cost_per_token")
    output_cost = entry.get("output_cost_per_token")
    if not isinstance(input_cost, (int, float)) or not isinstance(output_cost, (int, float)):
        return None
    cost = (_positive_number(prompt_tokens) or 0) * input_cost + (_positive_number(output_tokens) or 0) * output_cost
    return cost if math.isfinite(cost) else None


def resolve_rule_candidates(kind: str, rules: Optional[Sequence[AutoRule]] = None) -> list[AutoRuleCandidate]:
    """Candidates of the first rule whose kind matches (or that has no kind)."""
    active = rules or DEFAULT_RULES
    for rule in active:
        if rule.kind is None or rule.kind == kind:
            return rule.candidates
    return DEFAULT_RULES[-1].candidates


@dataclass
class _AttemptBuilder:
    env: Mapping[str, Optional[str]]
    catalog: Optional[Mapping[str, Any]]
    prompt_tokens: Optional[int]
    desired_output_tokens: Optional[int]
    attempts: list[AutoModelAttempt] = field(default_factory=list)

    def add(self, model_id: str, openrouter: bool, openrouter_providers: Optional[list[str]]) -> None:
        required = required_env_for(model_id)
        has_key = env_has_key(self.env, required)
        bare = model_id[len(OPENROUTER_PREFIX):].strip() if openrouter else model_id
        catalog_id = bare if openrouter else normalize_model_id(model_id)

        max_in = catalog_max_input_tokens(self.catalog, catalog_id)
        if self.prompt_tokens is not None and max_in is not None and self.prompt_tokens > max_in:
            return

        estimated = estimate_cost_usd(self.catalog, catalog_id, self.prompt_tokens, self.desired_output_tokens)
        user_model_id = f"{OPENROUTER_PREFIX}{bare}" if openrouter else normalize_model_id(model_id)
        debug = " ".join([
            f"model={user_model_id}",
            f"order={len(self.attempts) + 1}",
            f"key={'yes' if has_key else 'no'}({required})",
            f"promptTok={self.prompt_tokens if self.prompt_tokens is not None else 'unknown'}",
            f"maxIn={max_in if max_in is not None else 'unknown'}",
            f"estUsd={f'{estimated:.2e}' if estimated is not None else 'unknown'}",
        ])
        self.attempts.append(AutoModelAttempt(
            user_model_id=user_model_id,
            llm_model_id=f"openai/{bare}" if openrouter else user_model_id,
            openrouter_providers=openrouter_providers,
            force_openrouter=openrouter,
            required_env=required,
            debug=debug,
        ))


def build_auto_model_attempts(
    kind: str,
    prompt_tokens: Optional[int] = None,
    desired_output_tokens: Optional[int] = None,
    requires_video_understanding: bool = False,
    env: Optional[Mapping[str, Optional[str]]] = None,
    rules: Optional[Sequence[AutoRule]] = None,
    catalog: Optional[Mapping[str, Any]] = None,
    openrouter_providers_from_env: Optional[list[str]] = None,
) -> list[AutoModelAttempt]:
    """
    Ranked, de-duplicated model attempts for one piece of content.

    Args:
        kind: Content kind (video, youtube, website, text, ...)
        prompt_tokens: Prompt size; candidates whose catalog context is smaller are skipped
        desired_output_tokens: Expected output size, for the cost estimate
        requires_video_understanding: Keep only video-capable native candidates
        env: Environment used to check credential presence
        rules: Selection rules; DEFAULT_RULES when empty
        catalog: LiteLLM-style pricing catalog keyed by model id
        openrouter_providers_from_env: Default OpenRouter provider routing

    Returns:
        Attempts in the order they should be tried
    """
    env = env or {}
    builder = _AttemptBuilder(env, catalog, prompt_tokens, desired_output_tokens)

    for candidate in resolve_rule_candidates(kind, rules):
        model_raw = candidate.model.strip()
        if not model_raw:
            continue
        explicit_openrouter = is_openrouter_model(model_raw)
        if requires_video_understanding and (explicit_openrouter or not is_video_capable(model_raw)):
            continue

        providers = candidate.openrouter_providers or openrouter_providers_from_env
        if explicit_openrouter:
            builder.add(model_raw, openrouter=True, openrouter_providers=providers)
            continue

        builder.add(model_raw, openrouter=False, openrouter_providers=openrouter_providers_from_env)
        if not requires_video_understanding and env_has_key(env, "OPENROUTER_API_KEY"):
            slug = normalize_model_id(model_raw)
            builder.add(f"{OPENROUTER_PREFIX}{slug}", openrouter=True, openrouter_providers=providers)

    seen = set()
    unique = []
    for attempt in builder.attempts:
        key = (
            "or" if attempt.force_openrouter else "native",
            attempt.user_model_id,
            ",".join(attempt.openrouter_providers or []),
        )
        if key in seen:
            continue
        seen.add(key)
        unique.append(attempt)
    return unique
