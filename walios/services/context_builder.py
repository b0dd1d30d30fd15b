"""
Organization context and assistant intent handling.

build_org_context gathers everything the assistant knows about a user's
organization into one JSON-safe dict. classify_assistant_intent routes a chat
message to one of the response builders below, each of which formats a reply
straight from that context.
"""

import hashlib
import json
import re
import time
from datetime import timedelta
from typing import Any, Callable, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from walios.core.config import settings
from walios.models import (
    Application,
    Campaign,
    Opportunity,
    OrgContextCache,
    Project,
    UserProfile,
    utcnow,
)
from walios.services.ai_provider import safe_parse_json
from walios.utils import days_until, parse_datetime, serialize_row, serialize_rows, to_number

logger = structlog.get_logger(__name__)

OPPORTUNITY_LIMIT = 50
AWARDED_STATUSES = ("awarded", "funded", "approved")
PENDING_STATUSES = ("submitted", "pending", "under_review")

DATA_UNAVAILABLE_MESSAGE = (
    "I'm having trouble accessing your data right now. Please try again in a moment."
)


# =============================================================================
# Context building
# =============================================================================


def summarize_funding(
    applications: list[dict[str, Any]],
    campaigns: list[dict[str, Any]],
) -> dict[str, Any]:
    """Roll application and campaign amounts up into headline funding figures."""
    submitted = [a for a in applications if a.get("status") != "draft"]
    awarded = [a for a in submitted if a.get("status") in AWARDED_STATUSES]
    decided = [a for a in submitted if a.get("status") in AWARDED_STATUSES + ("rejected", "declined")]
    submission_dates = [
        parse_datetime(a.get("submitted_at") or a.get("created_at")) for a in submitted
    ]
    submission_dates = [d for d in submission_dates if d is not None]

    return {
        "total_submissions": len(submitted),
        "total_requested": sum(to_number(a.get("amount_requested")) or 0 for a in submitted),
        "total_awarded": sum(to_number(a.get("amount_awarded")) or 0 for a in awarded),
        "total_raised": sum(to_number(c.get("raised_amount")) or 0 for c in campaigns),
        "award_rate": round(len(awarded) / len(decided), 2) if decided else None,
        "pending_count": sum(1 for a in submitted if a.get("status") in PENDING_STATUSES),
        "last_submission_date": max(submission_dates).isoformat() if submission_dates else None,
    }


async def build_org_context(db: AsyncSession, user_id: str) -> dict[str, Any]:
    """
    Gather profile, projects, applications, opportunities and campaigns for a user.

    The queries share the request's session, so they run one after another.
    """
    started = time.perf_counter()

    profile = (
        await db.execute(select(UserProfile).where(UserProfile.user_id == user_id))
    ).scalar_one_or_none()
    projects = (
        await db.execute(
            select(Project).where(Project.user_id == user_id).order_by(Project.created_at.desc())
        )
    ).scalars().all()
    applications = (
        await db.execute(
            select(Application)
            .where(Application.user_id == user_id)
            .order_by(Application.created_at.desc())
        )
    ).scalars().all()
    opportunities = (
        await db.execute(
            select(Opportunity)
            .where(Opportunity.user_id == user_id)
            .order_by(Opportunity.deadline_date.asc())
            .limit(OPPORTUNITY_LIMIT)
        )
    ).scalars().all()
    campaigns = (
        await db.execute(
            select(Campaign).where(Campaign.user_id == user_id).order_by(Campaign.created_at.desc())
        )
    ).scalars().all()

    application_dicts = serialize_rows(applications)
    campaign_dicts = serialize_rows(campaigns)

    context = {
        "user_id": user_id,
        "profile": serialize_row(profile) if profile else None,
        "projects": serialize_rows(projects),
        "applications": application_dicts,
        "opportunities": serialize_rows(opportunities),
        "campaigns": campaign_dicts,
        "funding_summary": summarize_funding(application_dicts, campaign_dicts),
    }
    context["meta"] = {
        "generated_at": utcnow().isoformat(),
        "build_ms": round((time.perf_counter() - started) * 1000, 1),
        "counts": {
            "projects": len(projects),
            "applications": len(applications),
            "opportunities": len(opportunities),
            "campaigns": len(campaigns),
        },
    }
    return context


def context_hash(context: dict[str, Any]) -> str:
    """Stable hash of the context data, ignoring the meta stamp."""
    payload = {k: v for k, v in context.items() if k != "meta"}
    return hashlib.sha256(json.dumps(payload, sort_keys=True, default=str).encode()).hexdigest()


async def get_cached_org_context(
    db: AsyncSession,
    user_id: str,
    force: bool = False,
    ttl_minutes: Optional[int] = None,
) -> tuple[dict[str, Any], bool]:
    """
    Return (context, cached) using the ai_org_context_cache row when it is fresh.

    The snapshot is rebuilt when it is older than the TTL or ``force`` is set.
    """
    ttl = timedelta(minutes=ttl_minutes if ttl_minutes is not None else settings.org_context_ttl_minutes)
    row = (
        await db.execute(select(OrgContextCache).where(OrgContextCache.user_id == user_id))
    ).scalar_one_or_none()

    if row and not force and utcnow() - row.updated_at < ttl:
        return row.context, True

    context = await build_org_context(db, user_id)
    digest = context_hash(context)
    if row is None:
        db.add(OrgContextCache(user_id=user_id, context=context, context_hash=digest))
    else:
        row.context = context
        row.context_hash = digest
        row.updated_at = utcnow()
    await db.flush()
    return context, False


# =============================================================================
# Intent classification
# =============================================================================

_ID_TERMS = r"(ein|tax.?id|employer.?id(entification)?( number)?|federal.?id)"

# Order matters: possessive lookups are checked before definitions, and the
# first matching pattern wins.
INTENT_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("ein_lookup", re.compile(
        rf"\b(my|our)\b.*\b{_ID_TERMS}\b|\b{_ID_TERMS}\b.*\b(my|our|for us)\b|what.*my.*ein",
        re.IGNORECASE,
    )),
    ("definition", re.compile(
        r"\bwhat (does|do)\b.+\b(mean|stand for)\b|\bdefine\b|\bdefinition of\b|\bmeaning of\b"
        r"|\bwhat('s| is| are) (an? |the )?(ein|duns|uei|cage|sam|990|501\(?c\)?\(?3|loi|rfp|nofo|indirect cost|match(ing)? funds?)\b",
        re.IGNORECASE,
    )),
    ("registration_ids", re.compile(
        r"\b(duns|uei|cage( code)?|sam(\.gov)?( registration)?)\b", re.IGNORECASE,
    )),
    ("certifications", re.compile(
        r"certif|minority.?owned|wom[ae]n.?owned|veteran.?owned|\b8\(a\)|hubzone|\bdbe\b", re.IGNORECASE,
    )),
    ("deadlines", re.compile(
        r"deadline|due (date|soon)|when .*\bdue\b|upcoming|closing soon", re.IGNORECASE,
    )),
    ("funding_summary", re.compile(
        r"how much .*(raised|awarded|funding|won)|total funding|award rate|success rate|funding (summary|status|overview)",
        re.IGNORECASE,
    )),
    ("campaigns", re.compile(r"crowdfund|campaign|donation page", re.IGNORECASE)),
    ("application_status", re.compile(
        r"(application|submission)s?\b.*\b(status|progress|pending|track)|status of .*(application|submission)",
        re.IGNORECASE,
    )),
    ("opportunities", re.compile(
        r"opportunit|\bgrants? (for|available|that match)|find .*(grant|funding|funder)|recommend .*(grant|funder)|best match",
        re.IGNORECASE,
    )),
    ("project_help", re.compile(
        r"project.*\b(help|budget|narrative|timeline|plan|improve)\b|\b(budget|narrative|timeline) for\b",
        re.IGNORECASE,
    )),
    ("application_help", re.compile(
        r"\b(write|writing|draft|complete|fill( out)?|prepare)\b.*\b(application|proposal|form)\b|application help",
        re.IGNORECASE,
    )),
    ("funding_relationships", re.compile(
        r"\b(donors?|investors?|funders? relationship|program officer|foundation contact|angel)\b",
        re.IGNORECASE,
    )),
    ("organization_profile", re.compile(
        r"\b(my|our) (organization|org|profile|mission|address|company)\b|who (am i|are we)",
        re.IGNORECASE,
    )),
    ("capabilities", re.compile(
        r"what can you do|capabilit|how (do|can) you help|what do you (do|know)|^help\b", re.IGNORECASE,
    )),
    ("greeting", re.compile(r"^\s*(hi|hello|hey|good (morning|afternoon|evening))\b", re.IGNORECASE)),
]

INTENTS = tuple(name for name, _ in INTENT_PATTERNS) + ("general",)


def classify_assistant_intent(message: Optional[str]) -> str:
    """Return the first intent whose pattern matches the message, else "general"."""
    if not message:
        return "general"
    for intent, pattern in INTENT_PATTERNS:
        if pattern.search(message):
            return intent
    return "general"


async def classify_intent_with_llm(provider, message: str) -> str:
    """
    Ask the model to pick one of the known intents.

    Anything outside the known set, and any provider failure, yields "general".
    """
    system = (
        "Classify the user's message for a grant-seeking assistant. Respond with JSON "
        '{"intent": "<one of: ' + ", ".join(INTENTS) + '>"}.'
    )
    try:
        result = await provider.generate_completion(
            "intent-classification",
            [{"role": "system", "content": system}, {"role": "user", "content": message}],
            max_tokens=50,
            temperature=0,
            response_format="json_object",
        )
        intent = safe_parse_json(result.content).get("intent")
    except Exception as e:
        logger.warning("llm_intent_classification_failed", error=str(e))
        return "general"
    return intent if intent in INTENTS else "general"


# =============================================================================
# Response builders
# =============================================================================


def _money(value: Any) -> str:
    amount = to_number(value)
    return f"${amount:,.0f}" if amount is not None else "n/a"


def _org_name(context: dict[str, Any]) -> str:
    profile = context.get("profile") or {}
    return profile.get("organization_name") or "your organization"


def find_ein(profile: Optional[dict[str, Any]]) -> Optional[str]:
    """EIN lookup order: ein, then tax_id."""
    if not profile:
        return None
    for key in ("ein", "tax_id"):
        if profile.get(key):
            return str(profile[key])
    return None


def build_ein_response(context: dict[str, Any], message: str) -> str:
    profile = context.get("profile")
    ein = find_ein(profile)
    if ein:
        return (
            "📋 **Your Organization's EIN**\n\n"
            f"✅ **EIN:** {ein}\n"
            f"🏢 **Organization:** {_org_name(context)}\n\n"
            "💡 Your EIN goes on federal forms such as the SF-424 and on most foundation applications."
        )
    return (
        "📋 **EIN Lookup**\n\n"
        "❌ I couldn't find an EIN in your organization profile.\n\n"
        "📝 **To add it:** open your profile's organization details and enter the 9-digit EIN "
        "(format XX-XXXXXXX).\n\n"
        "💡 Nonprofits can find their EIN on the IRS determination letter or a past Form 990."
    )


GLOSSARY: list[tuple[re.Pattern, str, str]] = [
    (re.compile(r"\bein\b|employer.?id", re.I), "EIN",
     "The Employer Identification Number is the 9-digit federal tax ID the IRS assigns to an organization."),
    (re.compile(r"\bduns\b", re.I), "DUNS",
     "The DUNS number was a 9-digit Dun & Bradstreet identifier. Federal awards now use the UEI instead."),
    (re.compile(r"\buei\b", re.I), "UEI",
     "The Unique Entity ID is the 12-character identifier issued by SAM.gov for federal awards."),
    (re.compile(r"\bcage\b", re.I), "CAGE code",
     "The Commercial and Government Entity code is a 5-character ID assigned during SAM.gov registration."),
    (re.compile(r"\bsam\b", re.I), "SAM.gov",
     "SAM.gov is the System for Award Management. Active registration is required for federal grants and contracts."),
    (re.compile(r"\b990\b", re.I), "Form 990",
     "Form 990 is the annual information return most tax-exempt organizations file with the IRS."),
    (re.compile(r"501", re.I), "501(c)(3)",
     "A 501(c)(3) is a tax-exempt charitable organization under the U.S. Internal Revenue Code."),
    (re.compile(r"\bloi\b|letter of intent", re.I), "LOI",
     "A Letter of Intent is a short pre-application many funders request before inviting a full proposal."),
    (re.compile(r"\brfp\b|request for proposal", re.I), "RFP",
     "A Request for Proposals is a funder's public call describing what it will fund and how to apply."),
    (re.compile(r"\bnofo\b", re.I), "NOFO",
     "A Notice of Funding Opportunity is the federal announcement describing a grant program and its rules."),
    (re.compile(r"indirect cost", re.I), "Indirect costs",
     "Indirect costs are shared overhead (rent, utilities, administration) not tied to a single project."),
    (re.compile(r"match", re.I), "Matching funds",
     "Matching funds are the share of project cost the applicant must contribute from other sources."),
]


def build_definition_response(context: dict[str, Any], message: str) -> str:
    for pattern, term, definition in GLOSSARY:
        if pattern.search(message):
            return f"📖 **{term}**\n\n{definition}"
    return (
        "📖 I can explain grant terms like EIN, UEI, SAM.gov, CAGE code, Form 990, LOI, RFP, NOFO, "
        "indirect costs and matching funds. Which one would you like to know about?"
    )


def build_registration_response(context: dict[str, Any], message: str) -> str:
    profile = context.get("profile") or {}
    rows = [
        ("DUNS", profile.get("duns_number")),
        ("UEI", profile.get("uei")),
        ("CAGE code", profile.get("cage_code")),
        ("SAM.gov status", profile.get("sam_registration")),
    ]
    lines = [f"{'✅' if value else '❌'} **{label}:** {value or 'not on file'}" for label, value in rows]
    tip = ""
    if profile.get("sam_registration") != "active":
        tip = "\n\n💡 Federal applications require an active SAM.gov registration. Renew it every 12 months."
    return "🏛️ **Federal Registration IDs**\n\n" + "\n".join(lines) + tip


CERTIFICATION_LABELS = {
    "minority_owned": "Minority-owned",
    "woman_owned": "Woman-owned",
    "veteran_owned": "Veteran-owned",
    "sba_8a": "SBA 8(a)",
    "hubzone": "HUBZone",
}


def build_certifications_response(context: dict[str, Any], message: str) -> str:
    certifications = (context.get("profile") or {}).get("certifications") or {}
    held = [label for key, label in CERTIFICATION_LABELS.items() if certifications.get(key)]
    if not held:
        return (
            "🏅 **Certifications**\n\n"
            "❌ No certifications are recorded on your profile.\n\n"
            "💡 Certifications like 8(a) or HUBZone open set-aside opportunities. Add them to your profile if they apply."
        )
    return "🏅 **Certifications**\n\n" + "\n".join(f"✅ {label}" for label in held)


def build_profile_response(context: dict[str, Any], message: str) -> str:
    profile = context.get("profile")
    if not profile:
        return "🏢 Your organization profile is empty. Completing it lets me fill forms and match opportunities for you."
    location = ", ".join(p for p in (profile.get("city"), profile.get("state")) if p)
    lines = [
        f"🏢 **{_org_name(context)}**",
        f"• Type: {profile.get('organization_type') or 'not set'}",
        f"• Location: {location or 'not set'}",
        f"• Annual budget: {_money(profile.get('annual_budget'))}",
    ]
    if profile.get("mission_statement"):
        lines.append(f"\n🎯 **Mission:** {profile['mission_statement']}")
    return "\n".join(lines)


def upcoming_deadlines(context: dict[str, Any], window_days: int = 60) -> list[dict[str, Any]]:
    """Application and opportunity deadlines in the next ``window_days``, soonest first."""
    items = []
    for app in context.get("applications") or []:
        left = days_until(app.get("deadline"))
        if left is not None and 0 <= left <= window_days and app.get("status") not in AWARDED_STATUSES:
            items.append({"title": app.get("title") or "Application", "days_left": left, "kind": "application"})
    for opp in context.get("opportunities") or []:
        left = days_until(opp.get("deadline_date"))
        if left is not None and 0 <= left <= window_days:
            items.append({"title": opp.get("title"), "days_left": left, "kind": "opportunity"})
    return sorted(items, key=lambda item: item["days_left"])


def build_deadlines_response(context: dict[str, Any], message: str) -> str:
    items = upcoming_deadlines(context)
    if not items:
        return "📅 **Upcoming Deadlines**\n\n✅ Nothing is due in the next 60 days."
    lines = []
    for item in items[:5]:
        marker = "🔴" if item["days_left"] <= 7 else "🟡" if item["days_left"] <= 21 else "🟢"
        lines.append(f"{marker} {item['title']} ({item['kind']}): {item['days_left']} days left")
    return "📅 **Upcoming Deadlines**\n\n" + "\n".join(lines)


def build_funding_summary_response(context: dict[str, Any], message: str) -> str:
    summary = context.get("funding_summary") or {}
    rate = summary.get("award_rate")
    return (
        "💰 **Funding Summary**\n\n"
        f"• Submissions: {summary.get('total_submissions', 0)}\n"
        f"• Requested: {_money(summary.get('total_requested'))}\n"
        f"• Awarded: {_money(summary.get('total_awarded'))}\n"
        f"• Raised through campaigns: {_money(summary.get('total_raised'))}\n"
        f"• Award rate: {f'{rate:.0%}' if rate is not None else 'n/a'}\n"
        f"• Pending decisions: {summary.get('pending_count', 0)}"
    )


def build_campaigns_response(context: dict[str, Any], message: str) -> str:
    campaigns = context.get("campaigns") or []
    if not campaigns:
        return "📣 You don't have any crowdfunding campaigns yet. A campaign can cover a project's matching share."
    lines = []
    for campaign in campaigns[:5]:
        goal = to_number(campaign.get("goal_amount")) or 0
        raised = to_number(campaign.get("raised_amount")) or 0
        pct = f" ({raised / goal:.0%})" if goal else ""
        lines.append(f"• {campaign.get('title')} on {campaign.get('platform') or 'n/a'}: {_money(raised)} of {_money(goal)}{pct}")
    return "📣 **Campaigns**\n\n" + "\n".join(lines)


def build_application_status_response(context: dict[str, Any], message: str) -> str:
    applications = context.get("applications") or []
    if not applications:
        return "📝 You haven't started any applications yet. Ask me to find opportunities that fit your projects."
    counts: dict[str, int] = {}
    for app in applications:
        counts[app.get("status") or "draft"] = counts.get(app.get("status") or "draft", 0) + 1
    status_line = ", ".join(f"{status}: {count}" for status, count in sorted(counts.items()))
    recent = "\n".join(f"• {a.get('title') or 'Untitled'} ({a.get('status')})" for a in applications[:5])
    return f"📝 **Application Status**\n\n{status_line}\n\n{recent}"


def build_opportunities_response(context: dict[str, Any], message: str) -> str:
    opportunities = [
        o for o in context.get("opportunities") or []
        if (days_until(o.get("deadline_date")) or 0) >= 0
    ]
    ranked = sorted(opportunities, key=lambda o: o.get("fit_score") or 0, reverse=True)[:5]
    if not ranked:
        return "🔍 I don't see any open opportunities yet. Run a discovery sync or add opportunities to your pipeline."
    lines = []
    for opp in ranked:
        score = opp.get("fit_score")
        score_text = f" (fit {score:.0f})" if score is not None else ""
        lines.append(f"⭐ {opp.get('title')}{score_text}: {opp.get('sponsor') or 'unknown sponsor'}")
    return "🔍 **Top Opportunities**\n\n" + "\n".join(lines)


def _mentioned_project(context: dict[str, Any], message: str) -> Optional[dict[str, Any]]:
    projects = context.get("projects") or []
    lowered = message.lower()
    for project in projects:
        if project.get("name") and project["name"].lower() in lowered:
            return project
    return projects[0] if projects else None


def build_project_help_response(context: dict[str, Any], message: str) -> str:
    project = _mentioned_project(context, message)
    if not project:
        return "🛠️ Create a project first and I can help you shape its budget, narrative and timeline."
    lowered = message.lower()
    tips = []
    if "budget" in lowered:
        tips.append(
            f"💵 **Budget:** total {_money(project.get('total_budget'))}, seeking {_money(project.get('funding_needed'))}. "
            "Break costs into personnel, fringe, equipment, supplies, travel and indirect."
        )
    if "narrative" in lowered:
        tips.append("✍️ **Narrative:** lead with the need, then your approach, outcomes and how you will measure them.")
    if "timeline" in lowered:
        tips.append("🗓️ **Timeline:** list milestones by quarter and tie each to a deliverable funders can verify.")
    if not tips:
        missing = [
            label for key, label in (
                ("statement_of_need", "statement of need"),
                ("expected_outcomes", "expected outcomes"),
                ("evaluation_plan", "evaluation plan"),
                ("total_budget", "budget"),
            ) if not project.get(key)
        ]
        tips.append(
            "📌 Missing pieces: " + ", ".join(missing) if missing else "✅ The core sections of this project are filled in."
        )
    return f"🛠️ **{project.get('name')}**\n\n" + "\n".join(tips)


def build_application_help_response(context: dict[str, Any], message: str) -> str:
    return (
        "📝 **Application Help**\n\n"
        "1️⃣ Upload or paste the application form and I'll map its fields.\n"
        "2️⃣ I auto-fill what I can from your profile and projects.\n"
        "3️⃣ Use field help on narrative questions for examples and pitfalls.\n"
        "4️⃣ Review missing information before you submit."
    )


def build_relationships_response(context: dict[str, Any], message: str) -> str:
    sponsors = sorted({o.get("sponsor") for o in context.get("opportunities") or [] if o.get("sponsor")})
    sponsor_text = ", ".join(sponsors[:5]) if sponsors else "none yet"
    return (
        "🤝 **Funding Relationships**\n\n"
        f"Funders in your pipeline: {sponsor_text}.\n\n"
        "💡 Reach out to program officers before submitting and keep notes on every contact."
    )


def build_capabilities_response(context: dict[str, Any], message: str) -> str:
    return (
        "🤖 **What I Can Help With**\n\n"
        "📋 Look up your EIN, UEI, CAGE code and SAM.gov status\n"
        "📅 Track upcoming deadlines\n"
        "🔍 Surface the best-fit opportunities\n"
        "💰 Summarize funding requested, awarded and raised\n"
        "🛠️ Shape project budgets, narratives and timelines\n"
        "📝 Fill out application forms from your profile\n"
        "📖 Explain grant terminology"
    )


def build_greeting_response(context: dict[str, Any], message: str) -> str:
    return f"👋 Hi! I'm your funding assistant for {_org_name(context)}. Ask me about deadlines, opportunities or your applications."


def build_general_response(context: dict[str, Any], message: str) -> str:
    counts = (context.get("meta") or {}).get("counts") or {}
    return (
        "🤔 I'm not sure I understood that. "
        f"I can see {counts.get('projects', 0)} projects, {counts.get('applications', 0)} applications "
        f"and {counts.get('opportunities', 0)} opportunities for {_org_name(context)}. "
        "Try asking about deadlines, opportunities or your EIN."
    )


RESPONSE_BUILDERS: dict[str, Callable[[dict[str, Any], str], str]] = {
    "ein_lookup": build_ein_response,
    "definition": build_definition_response,
    "registration_ids": build_registration_response,
    "certifications": build_certifications_response,
    "organization_profile": build_profile_response,
    "deadlines": build_deadlines_response,
    "funding_summary": build_funding_summary_response,
    "campaigns": build_campaigns_response,
    "application_status": build_application_status_response,
    "opportunities": build_opportunities_response,
    "project_help": build_project_help_response,
    "application_help": build_application_help_response,
    "funding_relationships": build_relationships_response,
    "capabilities": build_capabilities_response,
    "greeting": build_greeting_response,
    "general": build_general_response,
}


def build_intent_response(intent: str, context: Optional[dict[str, Any]], message: str) -> str:
    """Format the reply for an intent from the organization context."""
    if context is None:
        return DATA_UNAVAILABLE_MESSAGE
    builder = RESPONSE_BUILDERS.get(intent, build_general_response)
    return builder(context, message)


def compact_context(context: dict[str, Any]) -> dict[str, Any]:
    """Trimmed context for embedding in an LLM system prompt."""
    profile = context.get("profile") or {}
    return {
        "organization": {
            key: profile.get(key)
            for key in ("organization_name", "organization_type", "ein", "uei", "sam_registration", "state", "mission_statement")
            if profile.get(key)
        },
        "projects": [
            {"name": p.get("name"), "status": p.get("status"), "funding_needed": p.get("funding_needed")}
            for p in (context.get("projects") or [])[:5]
        ],
        "upcoming_deadlines": upcoming_deadlines(context)[:5],
        "top_opportunities": [
            {"title": o.get("title"), "fit_score": o.get("fit_score"), "deadline": o.get("deadline_date")}
            for o in sorted(context.get("opportunities") or [], key=lambda o: o.get("fit_score") or 0, reverse=True)[:5]
        ],
        "funding_summary": context.get("funding_summary"),
    }
