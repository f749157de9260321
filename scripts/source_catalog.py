from canarywatch.models.entities import SourceTier, SourceType

# Canonical source catalog.
# onboarding_status:
# - ready: discovered on every drain
# - scaffold: kept inactive until a fetcher exists for its source_type
SOURCE_CATALOG = [
    # Tier-0
    {
        "name": "Stanford HAI",
        "url": "https://hai.stanford.edu/news",
        "tier": SourceTier.TIER_0,
        "trust_weight": 0.95,
        "source_type": SourceType.curated,
        "is_active": True,
        "query_config": {"onboarding_status": "ready", "cadence": "weekly", "domain_type": "research"},
    },
    {
        "name": "METR",
        "url": "https://metr.org/blog",
        "tier": SourceTier.TIER_0,
        "trust_weight": 0.95,
        "source_type": SourceType.rss,
        "is_active": True,
        "query_config": {"onboarding_status": "ready", "cadence": "weekly", "domain_type": "evaluation"},
    },
    {
        "name": "ARC Prize",
        "url": "https://arcprize.org/blog",
        "tier": SourceTier.TIER_0,
        "trust_weight": 0.9,
        "source_type": SourceType.rss,
        "is_active": True,
        "query_config": {"onboarding_status": "ready", "cadence": "monthly", "domain_type": "evaluation"},
    },
    {
        "name": "OECD AI",
        "url": "https://www.oecd.org/digital/artificial-intelligence/",
        "tier": SourceTier.TIER_0,
        "trust_weight": 0.9,
        "source_type": SourceType.curated,
        "is_active": True,
        "query_config": {"onboarding_status": "ready", "cadence": "monthly", "domain_type": "policy"},
    },
    {
        "name": "DeepMind Research",
        "url": "https://www.deepmind.com/blog",
        "tier": SourceTier.TIER_0,
        "trust_weight": 0.95,
        "source_type": SourceType.rss,
        "is_active": True,
        "query_config": {"onboarding_status": "ready", "cadence": "weekly", "domain_type": "research"},
    },
    {
        "name": "OpenAI Research",
        "url": "https://openai.com/research",
        "tier": SourceTier.TIER_0,
        "trust_weight": 0.95,
        "source_type": SourceType.curated,
        "is_active": True,
        "query_config": {"onboarding_status": "ready", "cadence": "weekly", "domain_type": "research"},
    },
    {
        "name": "Anthropic Research",
        "url": "https://www.anthropic.com/research",
        "tier": SourceTier.TIER_0,
        "trust_weight": 0.95,
        "source_type": SourceType.curated,
        "is_active": True,
        "query_config": {"onboarding_status": "ready", "cadence": "weekly", "domain_type": "research"},
    },
    {
        "name": "Epoch AI",
        "url": "https://epochai.org/blog",
        "tier": SourceTier.TIER_0,
        "trust_weight": 0.85,
        "source_type": SourceType.rss,
        "is_active": True,
        "query_config": {"onboarding_status": "ready", "cadence": "weekly", "domain_type": "research"},
    },
    {
        "name": "UK AISI",
        "url": "https://www.aisi.gov.uk/",
        "tier": SourceTier.TIER_0,
        "trust_weight": 0.9,
        "source_type": SourceType.curated,
        "is_active": True,
        "query_config": {"onboarding_status": "ready", "cadence": "monthly", "domain_type": "policy"},
    },
    {
        "name": "arXiv cs.AI",
        "url": "http://arxiv.org/list/cs.AI/recent",
        "tier": SourceTier.TIER_0,
        "trust_weight": 0.8,
        "source_type": SourceType.curated,
        "is_active": True,
        "query_config": {
            "onboarding_status": "ready",
            "cadence": "daily",
            "domain_type": "research",
            "categories": ["cs.AI", "cs.LG"],
            "keywords": ["AGI", "capability", "benchmark"],
        },
    },
    # Tier-1
    {
        "name": "LessWrong",
        "url": "https://www.lesswrong.com/feed",
        "tier": SourceTier.TIER_1,
        "trust_weight": 0.6,
        "source_type": SourceType.rss,
        "is_active": True,
        "query_config": {"onboarding_status": "ready", "cadence": "daily", "domain_type": "commentary"},
    },
    {
        "name": "Alignment Forum",
        "url": "https://www.alignmentforum.org/feed",
        "tier": SourceTier.TIER_1,
        "trust_weight": 0.65,
        "source_type": SourceType.rss,
        "is_active": True,
        "query_config": {"onboarding_status": "ready", "cadence": "daily", "domain_type": "commentary"},
    },
    {
        "name": "Import AI newsletter",
        "url": "https://jack-clark.net/",
        "tier": SourceTier.TIER_1,
        "trust_weight": 0.6,
        "source_type": SourceType.curated,
        "is_active": True,
        "query_config": {"onboarding_status": "ready", "cadence": "weekly", "domain_type": "commentary"},
    },
    {
        "name": "Center for AI Safety",
        "url": "https://www.safe.ai/blog",
        "tier": SourceTier.TIER_1,
        "trust_weight": 0.65,
        "source_type": SourceType.rss,
        "is_active": True,
        "query_config": {"onboarding_status": "ready", "cadence": "weekly", "domain_type": "commentary"},
    },
    # Discovery
    {
        "name": "Perplexity AGI Search",
        "url": "https://openrouter.ai/perplexity/sonar",
        "tier": SourceTier.DISCOVERY,
        "trust_weight": 0.4,
        "source_type": SourceType.search,
        "is_active": False,
        "query_config": {
            "onboarding_status": "scaffold",
            "onboarding_notes": "No search fetcher yet; discovery skips search sources.",
            "cadence": "daily",
            "domain_type": "research",
            "keywords": [
                "AGI evaluation",
                "AI benchmark",
                "ARC-AGI",
                "frontier model",
                "AI capability",
                "METR evaluation",
                "OECD AI",
            ],
        },
    },
]

CANARY_CATALOG = [
    {
        "id": "arc_agi",
        "name": "ARC-AGI",
        "description": "Abstraction and reasoning tasks requiring genuine understanding and generalization.",
        "axes_watched": ["reasoning", "learning_efficiency"],
        "thresholds": {"green": ">50%", "yellow": "10–50%", "red": "<10%"},
        "display_order": 0,
    },
    {
        "id": "long_horizon",
        "name": "Long-horizon planning",
        "description": "Multi-step planning and tool use over extended horizons.",
        "axes_watched": ["planning", "tool_use"],
        "thresholds": {"green": "robust", "yellow": "partial", "red": "minimal"},
        "display_order": 1,
    },
    {
        "id": "safety_canary",
        "name": "Alignment & safety",
        "description": "Indicators of alignment research progress and safety-relevant capabilities.",
        "axes_watched": ["alignment_safety", "robustness"],
        "thresholds": {"green": "improving", "yellow": "stable", "red": "concerning"},
        "display_order": 2,
    },
    {
        "id": "self_improvement",
        "name": "Recursive self-improvement",
        "description": "Signals suggesting improved ability to modify own code or improve capabilities autonomously.",
        "axes_watched": ["learning_efficiency", "tool_use"],
        "thresholds": {"green": "none observed", "yellow": "early signals", "red": "concerning"},
        "display_order": 11,
    },
    {
        "id": "economic_impact",
        "name": "Economic displacement",
        "description": "Indicators of AI capability to displace human labor in knowledge work.",
        "axes_watched": ["reasoning", "tool_use"],
        "thresholds": {"green": "contained", "yellow": "partial", "red": "significant"},
        "display_order": 12,
    },
    {
        "id": "alignment_coverage",
        "name": "Alignment eval coverage",
        "description": "How well current autonomy levels are being evaluated for safety and alignment.",
        "axes_watched": ["alignment_safety"],
        "thresholds": {"green": "well-tested", "yellow": "partial coverage", "red": "gaps"},
        "display_order": 13,
    },
    {
        "id": "deception",
        "name": "Deception detection",
        "description": "Capability to detect deception and manipulation in model outputs.",
        "axes_watched": ["social_cognition", "alignment_safety"],
        "thresholds": {"green": "robust", "yellow": "partial", "red": "weak"},
        "display_order": 14,
    },
    {
        "id": "tool_creation",
        "name": "Tool creation capability",
        "description": "Ability to create new tools, code, and extensions autonomously.",
        "axes_watched": ["tool_use", "reasoning"],
        "thresholds": {"green": "controlled", "yellow": "emerging", "red": "autonomous"},
        "display_order": 15,
    },
]
