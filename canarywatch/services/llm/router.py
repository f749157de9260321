from dataclasses import dataclass

from canarywatch.core.config import get_settings

EXTRACTION_STAGE = "extraction"


@dataclass(frozen=True)
class ModelSelection:
    provider: str
    model: str


STUB_MODEL = ModelSelection(provider="stub", model="stub-v1")


def stage_candidates(stage: str) -> list[ModelSelection]:
    """Providers to try in order for a stage. The stub answers when none is configured."""
    settings = get_settings()
    if not settings.llm_enabled or stage != EXTRACTION_STAGE:
        return [STUB_MODEL]

    configured = (
        ("openai", settings.openai_api_key, settings.openai_extraction_model),
        ("anthropic", settings.anthropic_api_key, settings.anthropic_extraction_model),
    )
    candidates = [ModelSelection(provider=provider, model=model) for provider, key, model in configured if key]
    return candidates or [STUB_MODEL]
