"""
Funnel stages.

Single source of truth for the nine pipeline buckets an account can sit in.
Order here is the board's column order.
"""

BUSINESS_INTEL = "Business Intel"
NEW_LEADS = "New Leads"
QUALIFIED_OPPORTUNITIES = "Qualified Opportunities"
NEEDS_ANALYSIS = "Needs Analysis"
PROPOSAL_SENT = "Proposal Sent"
NEGOTIATION = "Negotiation"
CLOSED_WON = "Closed Won"
CLOSED_LOST = "Closed Lost"
NURTURING = "Nurturing"

FUNNEL_STAGES = [
    (BUSINESS_INTEL, "bg-stone-500"),
    (NEW_LEADS, "bg-indigo-500"),
    (QUALIFIED_OPPORTUNITIES, "bg-blue-500"),
    (NEEDS_ANALYSIS, "bg-purple-500"),
    (PROPOSAL_SENT, "bg-yellow-500"),
    (NEGOTIATION, "bg-orange-500"),
    (CLOSED_WON, "bg-green-500"),
    (CLOSED_LOST, "bg-red-500"),
    (NURTURING, "bg-gray-500"),
]

STAGE_NAMES = [name for name, _ in FUNNEL_STAGES]
STAGE_COLORS = {name: color for name, color in FUNNEL_STAGES}

# Excluded from pipeline value, active deal count and the value chart
INACTIVE_STAGES = frozenset({CLOSED_WON, CLOSED_LOST, BUSINESS_INTEL})

ACTIVE_STAGES = [name for name in STAGE_NAMES if name not in INACTIVE_STAGES]


def is_stage(name):
    return name in STAGE_COLORS


def is_active(name):
    return is_stage(name) and name not in INACTIVE_STAGES
