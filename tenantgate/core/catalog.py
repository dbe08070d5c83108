"""Static catalogs: tiers, features, seat/project limits, and API key scopes.

Single source of truth consulted by the role & tier resolver and the
credential store. Exposed read-only via the features / scopes endpoints.
"""

from enum import StrEnum


class Tier(StrEnum):
    FREE = "free"
    PRO = "pro"
    AGENCY = "agency"


TIER_RANK: dict[str, int] = {
    Tier.FREE: 0,
    Tier.PRO: 1,
    Tier.AGENCY: 2,
}

# feature -> (display name, minimum tier)
FEATURES: dict[str, tuple[str, Tier]] = {
    "utm":         ("UTM (Builder + Library)", Tier.FREE),
    "links":       ("Links",                   Tier.FREE),
    "contacts":    ("Contacts",                Tier.FREE),
    "webhooks":    ("Webhooks",                Tier.FREE),
    "visitors":    ("Visitors",                Tier.PRO),
    "attribution": ("Attribution",             Tier.PRO),
    "analytics":   ("Analytics",               Tier.PRO),
    "popups":      ("Popups",                  Tier.PRO),
    "monitor":     ("Monitor",                 Tier.AGENCY),
}

# Seats per account; unknown tiers get the free allowance.
TIER_MAX_MEMBERS: dict[str, int] = {
    Tier.FREE: 3,
    Tier.PRO: 10,
    Tier.AGENCY: 50,
}

# Active projects per account; None means unlimited.
TIER_MAX_PROJECTS: dict[str, int | None] = {
    Tier.FREE: 3,
    Tier.PRO: 25,
    Tier.AGENCY: None,
}

# Closed set of API key scopes. Bump the version whenever the set changes.
SCOPE_CATALOG_VERSION = 1
API_SCOPES: tuple[str, ...] = (
    "links:read",
    "links:write",
    "utms:read",
    "utms:write",
    "contacts:read",
    "contacts:write",
    "analytics:read",
)


def tier_rank(tier: str) -> int:
    """Rank of a tier; unrecognized tiers rank as free."""
    return TIER_RANK.get(tier, TIER_RANK[Tier.FREE])


def feature_tier(feature: str) -> Tier | None:
    entry = FEATURES.get(feature)
    return entry[1] if entry else None


def max_members(tier: str) -> int:
    return TIER_MAX_MEMBERS.get(tier, TIER_MAX_MEMBERS[Tier.FREE])


def max_projects(tier: str) -> int | None:
    return TIER_MAX_PROJECTS.get(tier, TIER_MAX_PROJECTS[Tier.FREE])
