"""Marketing agent catalog.

Each agent is a prompt builder plus an output contract. Builders receive the
caller payload and, for follow-up stages, the previous stage's raw output.
"""

from __future__ import annotations

import json
import re
from typing import Any

from agent_gateway.domain.exceptions import InvalidPayloadError
from agent_gateway.domain.models import AgentDescriptor, AgentStage, ModelClass, OutputFormat
from agent_gateway.domain.schema import array_of, integer, number, obj, string

_CONTROL_CHARS = re.compile(r"[\u0000-\u0008\u000B-\u001F\u007F-\u009F]")
MAX_INPUT_CHARS = 5000

JSON_ONLY = "Respond with JSON only. Do not wrap it in prose."


def clean_input(value: Any) -> str:
    """Strip control characters and cap length of caller text before it reaches a prompt."""
    if isinstance(value, str):
        text = value
    elif value is None:
        return ""
    else:
        text = json.dumps(value, ensure_ascii=False, default=str)
    return _CONTROL_CHARS.sub("", text)[:MAX_INPUT_CHARS]


def _field(payload: dict[str, Any], key: str) -> str:
    text = clean_input(payload.get(key)).strip()
    if not text:
        msg = f"missing_payload_field:{key}"
        raise InvalidPayloadError(msg)
    return text


def _optional(payload: dict[str, Any], key: str, default: str = "") -> str:
    text = clean_input(payload.get(key)).strip()
    return text or default


def _name_of(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if isinstance(value, dict):
        value = value.get("name") or value.get("jobTitle") or value.get("title")
    return clean_input(value).strip()


# ---------------------------------------------------------------------------
# Output contracts
# ---------------------------------------------------------------------------

NICHE_SCHEMA = array_of(
    obj(
        {
            "name": string(),
            "profitabilityScore": integer("0-100"),
            "reasoning": string(),
            "marketSizeEstimate": string(),
        }
    )
)

PERSONA_SCHEMA = obj(
    {
        "jobTitle": string(),
        "ageRange": string(),
        "psychographics": array_of(string()),
        "painPoints": array_of(string()),
        "goals": array_of(string()),
        "buyingTriggers": array_of(string()),
    }
)

MAGNET_SCHEMA = array_of(
    obj(
        {
            "title": string(),
            "type": string("Ebook, Webinar, Checklist, Consultation, Video_Course or Tool"),
            "hook": string(),
            "description": string(),
        }
    )
)

QUALIFICATION_SCHEMA = array_of(
    obj({"question": string(), "intent": string(), "idealAnswer": string()})
)

STRING_LIST_SCHEMA = array_of(string())

FOLLOW_UP_SCHEMA = array_of(
    obj(
        {
            "subject": string(),
            "previewText": string(),
            "body": string(),
            "sendDelay": string(),
        }
    )
)

SOCIAL_SEARCH_SCHEMA = array_of(
    obj(
        {
            "platform": string(),
            "query": string(),
            "explanation": string(),
            "directUrl": string(),
        }
    )
)

LANDING_PAGE_SCHEMA = obj(
    {
        "headline": string(),
        "subheadline": string(),
        "ctaPrimary": string(),
        "ctaSecondary": string(),
        "benefits": array_of(obj({"title": string(), "description": string()})),
        "heroImagePrompt": string(),
        "socialProof": array_of(obj({"name": string(), "quote": string(), "role": string()})),
    }
)

AD_CREATIVE_SCHEMA = array_of(
    obj(
        {
            "platform": string(),
            "headline": string(),
            "adCopy": string(),
            "hashtags": array_of(string()),
            "visualPrompt": string(),
        }
    )
)

EMAIL_CAMPAIGN_SCHEMA = obj({"subject": string(), "body": string()})

KEYWORD_SCHEMA = array_of(
    obj(
        {
            "keyword": string(),
            "intent": string("Informational, Commercial, Transactional or Navigational"),
            "volume": string("range such as 1k-10k"),
            "difficulty": integer("0-100"),
            "opportunityScore": integer("0-100"),
        }
    )
)

CONTENT_SCORE_SCHEMA = obj(
    {
        "score": integer("0-100"),
        "suggestions": array_of(string()),
        "keywordDensity": number("percentage"),
        "readability": string(),
        "missingKeywords": array_of(string()),
    }
)

SEO_AUDIT_SCHEMA = array_of(
    obj(
        {
            "severity": string("critical, warning, info or passed"),
            "category": string("Technical, On-Page, Speed or Mobile"),
            "issue": string(),
            "recommendation": string(),
        }
    )
)

LOCAL_BUSINESS_SCHEMA = obj(
    {
        "summary": string(),
        "businesses": array_of(
            obj(
                {
                    "name": string(),
                    "address": string(),
                    "website": string(),
                    "rating": string(),
                    "fitReason": string(),
                },
                required=("name", "fitReason"),
            )
        ),
    }
)


# ---------------------------------------------------------------------------
# Prompt builders
# ---------------------------------------------------------------------------


def niche_prompt(payload: dict[str, Any], _: str | None = None) -> str:
    product = _field(payload, "productName")
    description = _optional(payload, "description", "no description provided")
    return (
        f'Analyze the product: "{product}" ({description}).\n'
        "Identify 3 distinct, profitable sub-niches/market segments.\n"
        "Return a JSON array with fields: name, profitabilityScore (0-100), "
        f"reasoning, marketSizeEstimate. {JSON_ONLY}"
    )


def persona_prompt(payload: dict[str, Any], _: str | None = None) -> str:
    product = _field(payload, "productName")
    niche = _name_of(payload, "niche")
    if not niche:
        msg = "missing_payload_field:niche"
        raise InvalidPayloadError(msg)
    refinement = _optional(payload, "refinement", "Standard profile")
    return (
        f'Create an Ideal Customer Persona for "{product}" targeting the "{niche}" niche.\n'
        f"Refinement: {refinement}.\n"
        "Return a JSON object with jobTitle, ageRange, psychographics, painPoints, goals "
        f"and buyingTriggers. {JSON_ONLY}"
    )


def magnets_prompt(payload: dict[str, Any], _: str | None = None) -> str:
    product = _field(payload, "productName")
    niche = _field(payload, "nicheName")
    persona = _name_of(payload, "persona") or "the ideal customer"
    return (
        f'Design 3 lead magnets for "{product}" in the "{niche}" niche, aimed at {persona}.\n'
        "Each magnet needs a title, type (Ebook, Webinar, Checklist, Consultation, "
        f"Video_Course or Tool), a one-line hook and a short description. {JSON_ONLY}"
    )


def magnet_content_prompt(payload: dict[str, Any], _: str | None = None) -> str:
    magnet = payload.get("magnet")
    if not isinstance(magnet, dict) or not magnet.get("title"):
        msg = "missing_payload_field:magnet"
        raise InvalidPayloadError(msg)
    persona = _name_of(payload, "persona") or "the ideal customer"
    niche = _optional(payload, "nicheName", "the target market")
    product = _optional(payload, "productName", "the product")
    return (
        f'Write the full content of the lead magnet "{clean_input(magnet.get("title"))}" '
        f'({clean_input(magnet.get("type", "Ebook"))}) for {persona} in {niche}.\n'
        f"Hook: {clean_input(magnet.get('hook', ''))}\n"
        f"It should naturally lead the reader towards {product}.\n"
        "Use Markdown headings and keep it practical."
    )


def magnet_promo_prompt(payload: dict[str, Any], _: str | None = None) -> str:
    magnet = payload.get("magnet")
    if not isinstance(magnet, dict) or not magnet.get("title"):
        msg = "missing_payload_field:magnet"
        raise InvalidPayloadError(msg)
    platform = _field(payload, "platform")
    link = _optional(payload, "link", "[link]")
    persona = _name_of(payload, "persona") or "the ideal customer"
    return (
        f'Write a {platform} post promoting the free resource "{clean_input(magnet.get("title"))}" '
        f"to {persona}. Include the link {link} and a clear call to action. "
        "Return only the post text."
    )


def qualification_prompt(payload: dict[str, Any], _: str | None = None) -> str:
    product = _field(payload, "productName")
    persona = _name_of(payload, "persona") or "the ideal customer"
    return (
        f'Write 5 sales qualification questions for "{product}" when speaking with {persona}.\n'
        f"For each give the question, its intent and the ideal answer. {JSON_ONLY}"
    )


def objection_prompt(payload: dict[str, Any], _: str | None = None) -> str:
    objection = _field(payload, "objection")
    product = _field(payload, "productName")
    persona = _name_of(payload, "persona") or "the prospect"
    return (
        f'A {persona} raised this objection about "{product}": "{objection}".\n'
        f"Return a JSON array of 3 distinct rebuttal scripts as strings. {JSON_ONLY}"
    )


def cold_dms_prompt(payload: dict[str, Any], _: str | None = None) -> str:
    product = _field(payload, "productName")
    persona = _name_of(payload, "persona") or "the ideal customer"
    return (
        f'Write 3 short cold direct messages selling "{product}" to {persona}. '
        f"Each under 300 characters. Return a JSON array of strings. {JSON_ONLY}"
    )


def follow_up_prompt(payload: dict[str, Any], _: str | None = None) -> str:
    product = _field(payload, "productName")
    persona = _name_of(payload, "persona") or "the ideal customer"
    goal = _optional(payload, "goal", "book a discovery call")
    return (
        f'Write a 3-email follow-up sequence for "{product}" aimed at {persona}. Goal: {goal}.\n'
        f"Each email has subject, previewText, body and sendDelay (e.g. 'Day 2'). {JSON_ONLY}"
    )


def social_search_prompt(payload: dict[str, Any], _: str | None = None) -> str:
    niche = _field(payload, "niche")
    persona = _name_of(payload, "persona") or "the ideal customer"
    return (
        f"Generate 5 social media search queries to find {persona} prospects in the "
        f'"{niche}" niche on LinkedIn, X/Twitter, Facebook Groups and Reddit.\n'
        f"Each item has platform, query, explanation and a directUrl to the search. {JSON_ONLY}"
    )


def landing_page_prompt(payload: dict[str, Any], _: str | None = None) -> str:
    product = _field(payload, "productName")
    niche = _name_of(payload, "niche") or "its market"
    persona = _name_of(payload, "persona") or "the ideal customer"
    return (
        f'Write landing page copy for "{product}" targeting {persona} in {niche}.\n'
        "Include headline, subheadline, ctaPrimary, ctaSecondary, 3 benefits (title, "
        "description), a heroImagePrompt and 2 socialProof testimonials (name, quote, role). "
        f"{JSON_ONLY}"
    )


def ad_creatives_prompt(payload: dict[str, Any], _: str | None = None) -> str:
    product = _field(payload, "productName")
    niche = _name_of(payload, "niche") or "its market"
    persona = _name_of(payload, "persona") or "the ideal customer"
    url = _optional(payload, "url")
    destination = f" driving traffic to {url}" if url else ""
    return (
        f'Create ad creatives for "{product}" aimed at {persona} in {niche}{destination}.\n'
        "One creative each for LinkedIn, Facebook and TikTok with platform, headline, adCopy, "
        f"hashtags and a visualPrompt for an image generator. {JSON_ONLY}"
    )


def email_campaign_prompt(payload: dict[str, Any], _: str | None = None) -> str:
    product = _field(payload, "productName")
    topic = _field(payload, "topic")
    persona = _name_of(payload, "persona") or "subscribers"
    goal = _optional(payload, "goal", "drive clicks")
    return (
        f'Write a marketing email about "{topic}" for {persona}, promoting "{product}". '
        f"Goal: {goal}. Return a JSON object with subject and body (Markdown). {JSON_ONLY}"
    )


def subject_lines_prompt(payload: dict[str, Any], _: str | None = None) -> str:
    topic = _field(payload, "topic")
    persona = _name_of(payload, "persona") or "subscribers"
    return (
        f'Write 5 high open-rate email subject lines about "{topic}" for {persona}. '
        f"Return a JSON array of strings. {JSON_ONLY}"
    )


def seo_keywords_prompt(payload: dict[str, Any], _: str | None = None) -> str:
    seed = _field(payload, "seed")
    niche = _optional(payload, "niche", "general")
    persona = _name_of(payload, "persona") or "searchers"
    return (
        f'Build a keyword strategy from the seed "{seed}" for the {niche} niche, '
        f"as searched by {persona}. Return 10 keywords with keyword, intent, volume, "
        f"difficulty (0-100) and opportunityScore (0-100). {JSON_ONLY}"
    )


def content_score_prompt(payload: dict[str, Any], _: str | None = None) -> str:
    content = _field(payload, "content")
    keyword = _field(payload, "keyword")
    return (
        f'Score this content for SEO against the target keyword "{keyword}".\n'
        "Return score (0-100), suggestions, keywordDensity (percentage), readability and "
        f"missingKeywords. {JSON_ONLY}\n\nContent:\n{content}"
    )


def maps_scout_research_prompt(payload: dict[str, Any], _: str | None = None) -> str:
    niche = _field(payload, "niche")
    location = _field(payload, "location")
    coords = payload.get("coords")
    near = ""
    if isinstance(coords, dict) and "lat" in coords and "lng" in coords:
        lat, lng = clean_input(coords["lat"]), clean_input(coords["lng"])
        near = f" near latitude {lat}, longitude {lng}"
    return (
        f"Find up to 8 real local businesses in {location}{near} that would be good prospects "
        f'for a "{niche}" offer. For each give the name, address, website, rating and why it '
        "is a fit. Use current search results."
    )


def maps_scout_structure_prompt(payload: dict[str, Any], previous_output: str | None) -> str:
    return (
        "Convert the following research notes into a JSON object with a short summary and a "
        "businesses array (name, address, website, rating, fitReason). Use only facts present "
        f"in the notes. {JSON_ONLY}\n\nResearch notes:\n{previous_output or ''}"
    )


def seo_audit_research_prompt(payload: dict[str, Any], _: str | None = None) -> str:
    url = _field(payload, "url")
    product = _optional(payload, "productName", "the product")
    return (
        f"Perform an SEO audit of {url} (the site for {product}). Look at indexed pages, "
        "titles, meta descriptions, page speed signals, mobile friendliness and content "
        "gaps. Report concrete findings."
    )


def seo_audit_structure_prompt(payload: dict[str, Any], previous_output: str | None) -> str:
    return (
        "Convert the following SEO audit findings into a JSON array of issues with severity, "
        "category, issue and recommendation. Include passed checks with severity 'passed'. "
        f"{JSON_ONLY}\n\nFindings:\n{previous_output or ''}"
    )


AGENT_CATALOG: tuple[AgentDescriptor, ...] = (
    AgentDescriptor.single(
        "niche", niche_prompt, NICHE_SCHEMA, description="Profitable sub-niche discovery"
    ),
    AgentDescriptor.single(
        "persona",
        persona_prompt,
        PERSONA_SCHEMA,
        model_class=ModelClass.DEEP,
        description="Ideal customer persona",
    ),
    AgentDescriptor.single(
        "magnets", magnets_prompt, MAGNET_SCHEMA, description="Lead magnet ideas"
    ),
    AgentDescriptor.single(
        "magnet_content",
        magnet_content_prompt,
        output_format=OutputFormat.TEXT,
        model_class=ModelClass.DEEP,
        description="Full lead magnet draft in Markdown",
    ),
    AgentDescriptor.single(
        "magnet_promo",
        magnet_promo_prompt,
        output_format=OutputFormat.TEXT,
        description="Social post promoting a lead magnet",
    ),
    AgentDescriptor.single(
        "qualification",
        qualification_prompt,
        QUALIFICATION_SCHEMA,
        description="Sales qualification framework",
    ),
    AgentDescriptor.single(
        "objection_handler",
        objection_prompt,
        STRING_LIST_SCHEMA,
        description="Objection rebuttal scripts",
    ),
    AgentDescriptor.single(
        "cold_dms", cold_dms_prompt, STRING_LIST_SCHEMA, description="Cold outreach messages"
    ),
    AgentDescriptor.single(
        "follow_up", follow_up_prompt, FOLLOW_UP_SCHEMA, description="Follow-up email sequence"
    ),
    AgentDescriptor.single(
        "social_search",
        social_search_prompt,
        SOCIAL_SEARCH_SCHEMA,
        description="Social prospecting search queries",
    ),
    AgentDescriptor.single(
        "landing_page",
        landing_page_prompt,
        LANDING_PAGE_SCHEMA,
        model_class=ModelClass.DEEP,
        description="Landing page copy",
    ),
    AgentDescriptor.single(
        "ad_creatives", ad_creatives_prompt, AD_CREATIVE_SCHEMA, description="Ad creatives"
    ),
    AgentDescriptor.single(
        "email_campaign",
        email_campaign_prompt,
        EMAIL_CAMPAIGN_SCHEMA,
        description="Single campaign email",
    ),
    AgentDescriptor.single(
        "subject_lines",
        subject_lines_prompt,
        STRING_LIST_SCHEMA,
        description="Email subject line options",
    ),
    AgentDescriptor.single(
        "seo_keywords", seo_keywords_prompt, KEYWORD_SCHEMA, description="Keyword strategy"
    ),
    AgentDescriptor.single(
        "content_score",
        content_score_prompt,
        CONTENT_SCORE_SCHEMA,
        description="On-page content SEO score",
    ),
    AgentDescriptor(
        agent_id="maps_scout",
        description="Grounded local business prospecting",
        stages=(
            AgentStage(
                prompt_builder=maps_scout_research_prompt,
                model_class=ModelClass.GROUNDED,
                output_format=OutputFormat.TEXT,
            ),
            AgentStage(
                prompt_builder=maps_scout_structure_prompt,
                model_class=ModelClass.FAST,
                output_schema=LOCAL_BUSINESS_SCHEMA,
            ),
        ),
    ),
    AgentDescriptor(
        agent_id="seo_audit",
        description="Grounded SEO audit",
        stages=(
            AgentStage(
                prompt_builder=seo_audit_research_prompt,
                model_class=ModelClass.GROUNDED,
                output_format=OutputFormat.TEXT,
            ),
            AgentStage(
                prompt_builder=seo_audit_structure_prompt,
                model_class=ModelClass.FAST,
                output_schema=SEO_AUDIT_SCHEMA,
            ),
        ),
    ),
)
