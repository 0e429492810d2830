"""
Escalating intervention templates: pattern type x resistance level.

Each template is a pair of str.format strings rendered against a facts dict
(see generator.build_facts). Dollar amounts arrive pre-formatted, so a
template writes ${cost} and gets "$8,400".
"""

from __future__ import annotations

from typing import NamedTuple

from celeste.config import MAX_RESISTANCE_LEVEL

LEVEL_NAMES: tuple[str, ...] = (
    "first_contact",
    "gentle_nudge",
    "uncomfortable_truth",
    "brutal_reality",
    "scorched_earth",
    "existential_crisis",
)


class InterventionTemplate(NamedTuple):
    message: str
    directive: str
    severity: str


def clamp_level(level: int | None) -> int:
    """Resistance levels outside 0-5 map to the nearest valid level."""
    if level is None:
        return 0
    return max(0, min(int(level), MAX_RESISTANCE_LEVEL))


def severity_for_level(level: int) -> str:
    level = clamp_level(level)
    if level <= 1:
        return "warning"
    if level <= 3:
        return "critical"
    return "emergency"


def _ladder(*pairs: tuple[str, str]) -> tuple[InterventionTemplate, ...]:
    """One (message, directive) pair per resistance level, 0 through 5."""
    if len(pairs) != MAX_RESISTANCE_LEVEL + 1:
        raise ValueError(f"expected {MAX_RESISTANCE_LEVEL + 1} levels, got {len(pairs)}")
    return tuple(
        InterventionTemplate(message, directive, severity_for_level(level))
        for level, (message, directive) in enumerate(pairs)
    )


TEMPLATES: dict[str, tuple[InterventionTemplate, ...]] = {
    "procrastination": _ladder(
        (
            "You've delayed {oldest_task} for {total_delay_days} days. At ${daily_burn} a day "
            "that's ${cost} in lost revenue.",
            "Ship something today. Anything. Imperfect is fine.",
        ),
        (
            "{total_delay_days} days of planning = ${cost} burned. Meanwhile a competitor in "
            "your market launched and now makes ${top_competitor_revenue}/month.",
            "Ship {oldest_task} in the next 2 hours or delete it from the list.",
        ),
        (
            "You've said \"{repeated_excuse}\" {excuse_count} times. Total cost so far: ${cost}. "
            "Peers who stopped making that excuse now average ${breakthrough_revenue}/month.",
            "No more excuses. Ship today.",
        ),
        (
            "{total_delay_days} days delayed. ${cost} lost. {competitors_ahead} competitors "
            "are ahead of you. You're still at ${current_mrr}/month after "
            "{months_in_business} months. This isn't a scheduling problem, it's avoidance.",
            "Ship within 60 minutes. No middle ground.",
        ),
        (
            "FACT: {total_delay_days} days of waiting. FACT: ${cost} gone. FACT: "
            "\"{repeated_excuse}\" is your most repeated reason ({excuse_count} times). "
            "FACT: the top peer in your market makes ${top_competitor_revenue}/month. "
            "You make ${current_mrr}.",
            "Ship now, or decide honestly whether you want to run this business.",
        ),
        (
            "{months_in_business} months in. {total_delay_days} days delayed. ${cost} lost. "
            "{competitors_ahead} peers now earn more than you. The plan has become the "
            "product, and nobody pays for plans.",
            "Last call: ship or shelve it.",
        ),
    ),
    "pricing_cowardice": _ladder(
        (
            "You charge ${your_price}. Market average: ${market_average}. You're leaving "
            "${monthly_loss} on the table every month.",
            "Raise prices 20% today. See who actually values your work.",
        ),
        (
            "Your ${your_price} vs market ${market_average}. Gap: {gap_percent}%. Monthly "
            "loss: ${monthly_loss}. Annual loss: ${annual_loss}.",
            "New price: ${target_price}. Put it live before midnight.",
        ),
        (
            "Underpricing by {gap_percent}% costs ${monthly_loss} a month. The top peer "
            "earns {revenue_multiple}x your revenue selling the same kind of product. "
            "Customers read a low price as low value.",
            "Double your prices now and let the bargain hunters go.",
        ),
        (
            "MATH: you charge ${your_price}, they charge ${market_average}. That gap is "
            "${annual_loss} a year. At market pricing you'd be near "
            "${market_mrr}/month instead of ${current_mrr}.",
            "Triple your prices or admit you don't believe in your value.",
        ),
        (
            "${monthly_loss} a month, every month, because ${your_price} felt safer than "
            "${market_average}. The top peer makes ${top_competitor_revenue}/month. You are "
            "teaching the market that your work is cheap.",
            "Raise prices 5x today. Anyone who leaves was never profitable.",
        ),
        (
            "Cumulative underpricing: ${annual_loss} a year, roughly {free_sales} sales "
            "given away for free. Your fear of a 'no' is the most expensive line item in "
            "the business.",
            "Reprice everything this week or reconsider the business model.",
        ),
    ),
    "execution_paralysis": _ladder(
        (
            "{planned_but_not_started} projects planned. {projects_shipped} shipped. "
            "Planning-to-execution ratio: {planning_ratio}:1.",
            "Cancel all planning. Ship one thing today.",
        ),
        (
            "You've been 'researching' for {days_blocked} days. {competitor_launches} "
            "competitors have more products live than you. They have customers. You have docs.",
            "Stop planning. Start shipping. 4 hour deadline.",
        ),
        (
            "{planned_but_not_started} plans. {days_blocked} days stuck on "
            "\"{primary_blocker}\". {breakthrough_count} people with the same blocker broke "
            "through and now average ${breakthrough_revenue}/month.",
            "Ship anything in the next hour.",
        ),
        (
            "SCOREBOARD: you shipped {projects_shipped} and planned {planned_but_not_started}. "
            "Blocked by \"{primary_blocker}\" for {days_blocked} days. Cost: ${cost}.",
            "Delete the plans. Ship it raw. Now.",
        ),
        (
            "{planned_but_not_started} polished plans, {projects_shipped} shipped. The top "
            "peer made ${top_competitor_revenue}/month while your roadmap got prettier. "
            "Cost of waiting: ${cost}.",
            "Ship something rough in 30 minutes.",
        ),
        (
            "{months_in_business} months. {planned_but_not_started} plans. "
            "{projects_shipped} shipped. ${cost} in lost revenue. Potential that never "
            "ships is worth exactly $0.",
            "Ship now or accept that the plans are the hobby.",
        ),
    ),
    "competitive_delusion": _ladder(
        (
            "Reality check: you're #{your_rank} of {total_competitors} in your market. "
            "Only {percentile}% of peers are at or below you.",
            "Study #1. Copy what works before you innovate.",
        ),
        (
            "You: ${current_mrr}/month, rank #{your_rank}. Top performers: "
            "${top_performer_revenue}/month. Gap: ${revenue_gap}. Being different isn't "
            "the same as winning.",
            "Map the top 3 competitors' model today.",
        ),
        (
            "Ranked #{your_rank} of {total_competitors}. Gap to the top: ${revenue_gap}. "
            "Competitors using basic strategies make {top_multiple}x more.",
            "Drop the novel approach. Copy the winners' playbook.",
        ),
        (
            "THE LEAGUE TABLE: #{your_rank} of {total_competitors}. You make "
            "${current_mrr}. The top three average ${top_performer_revenue}. That's "
            "{top_multiple}x more with the same market.",
            "Adopt the #1 playbook or rethink the business.",
        ),
        (
            "Rank #{your_rank}/{total_competitors}. Income: ${current_mrr}. Market "
            "average: ${industry_average}. Your 'vision' is currently the reason you trail "
            "the market.",
            "Copy #1's offer exactly within 24 hours.",
        ),
        (
            "{months_in_business} months in business. Still #{your_rank} of "
            "{total_competitors}. ${revenue_gap} a month behind the leaders, every month.",
            "Copy #1 or plan your exit.",
        ),
    ),
    "revenue_stagnation": _ladder(
        (
            "Revenue flat for {months_stagnant} months at ${current_revenue}. In a growing "
            "market, flat is falling behind.",
            "Launch a new offer at 2x price this week.",
        ),
        (
            "{months_stagnant} months at ${current_revenue}. With normal 10% growth you'd "
            "be at ${expected_revenue}. Missing: ${growth_gap} a month.",
            "New product. New price. 48 hours.",
        ),
        (
            "Stuck at ${current_revenue} for {months_stagnant} months. Peak was "
            "${peak_revenue}. {competitors_ahead} competitors passed you while you held steady.",
            "Triple prices or launch a new product in 24 hours.",
        ),
        (
            "{months_stagnant} months flat at ${current_revenue}. Growth would have put you "
            "at ${expected_revenue}. Opportunity cost: ${cost}. Stable is a polite word "
            "for shrinking after inflation.",
            "Launch a premium offer today.",
        ),
        (
            "{months_stagnant} months at ${current_revenue}. Opportunity cost: ${cost}. "
            "You're managing decline, not growth.",
            "Rebuild the offer from scratch or wind it down deliberately.",
        ),
        (
            "Same ${current_revenue}/month for {months_stagnant} months. Total growth: 0%. "
            "Peers who started after you average ${industry_average}/month.",
            "Change everything about the offer, or stop.",
        ),
    ),
}

DEFAULT_TEMPLATE = InterventionTemplate(
    message="Unrecognized pattern ({pattern_type}), but the data is clear: it is costing "
    "you about ${cost}. Stop hiding behind complexity.",
    directive="Fix this today.",
    severity="critical",
)


def get_template(pattern_type: str, level: int) -> tuple[InterventionTemplate, int]:
    """Template for a pattern at a (clamped) level, plus the level used."""
    level = clamp_level(level)
    ladder = TEMPLATES.get(pattern_type)
    if ladder is None:
        return DEFAULT_TEMPLATE, level
    return ladder[level], level
