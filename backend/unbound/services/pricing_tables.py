"""
Declarative pricing configuration.

WHAT: Fee tables for every service kind
WHY: Pricing rules live apart from the deal state machine and are unit-testable alone
HOW: One entry per service naming a formula and its parameters; the oracle interprets them

Formulas:
    base_plus_percentage  base + amount * pct / 100, looked up by a terms key
    hourly                hours * rate * (1 + markup)
    flat_lookup           fixed price looked up by a terms key
    flat                  fixed price
"""

PRICING_TABLES = {
    "banking": {
        "formula": "base_plus_percentage",
        "key_field": "type",
        "default_key": "ach_transfer",
        "amount_field": "amount",
        "fees": {
            "ach_transfer": {"base": 10, "pct": 1.0},
            "sepa_transfer": {"base": 5, "pct": 1.0},
            "international_wire": {"base": 25, "pct": 1.5},
        },
    },
    "physical": {
        "formula": "hourly",
        "hours_field": "estimated_duration",
        "rate": 50,
        "markup": 0.15,
        "label": "{hours}h x ${rate}/hr + {markup_pct}% platform fee",
    },
    "employment": {
        "formula": "hourly",
        "hours_field": "hours_per_month",
        "rate": 50,
        "markup": 0.15,
        "label": "{hours}h/mo x ${rate}/hr + {markup_pct}% fee",
    },
    "proxy": {
        "formula": "flat_lookup",
        "key_field": "proxy_type",
        "default_price": 500,
        "prices": {
            "datacenter_lease": 500,
            "business_registration": 1000,
            "bank_account": 500,
            "equipment_ownership": 200,
            "real_estate_lease": 750,
        },
        "label": "Setup fee for {key}",
        "missing_key_label": "proxy service",
    },
    "backup": {
        "formula": "flat_lookup",
        "key_field": "plan",
        "default_price": 30,
        "prices": {
            "basic": 10,
            "standard": 30,
            "premium": 100,
            "enterprise": 500,
        },
        "label": "{key} plan monthly",
        "missing_key_label": "standard",
    },
}

CUSTOM_SERVICE_PRICING = {
    "formula": "flat",
    "price": 50,
    "label": "Custom service - base estimate",
}

# Multipliers applied to the observed base price when recommending an opening price
LOW_ACCEPTANCE_THRESHOLD = 0.3
HIGH_ACCEPTANCE_THRESHOLD = 0.7
LOW_ACCEPTANCE_MULTIPLIER = 1.1
HIGH_ACCEPTANCE_MULTIPLIER = 0.95

# Negotiation style thresholds
QUICK_DECIDER_ACCEPTANCE = 0.8
AGGRESSIVE_DISCOUNT_PCT = 15.0
MODERATE_DISCOUNT_PCT = 5.0

# Counter-offer response tuning
DISCOUNT_HOLD_FACTOR = 1.5  # hold firm when asked for more than 1.5x the usual discount
MEET_DISTANCE = 0.75  # otherwise move 75% of the way toward the counter


def pricing_rule(service: str) -> dict:
    """Table entry for a service, falling back to the custom flat price."""
    return PRICING_TABLES.get(service, CUSTOM_SERVICE_PRICING)
