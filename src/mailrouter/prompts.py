"""Summary: Prompt construction for goal-based email analysis.

Importance: Keeps the analysis contract (five services, output schema) in one place.
Alternatives: Store prompt templates as files and render them with a template engine.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


EMAILS_MARKER = "EMAILS TO ANALYZE:"

SYSTEM_PROMPT = (
    "You are an AI Email Orchestrator that analyzes emails through 5 services and returns "
    "structured, actionable output. Follow the instructions for every service and return "
    "complete JSON with all fields."
)

DEFAULT_GOALS: dict[str, str] = {
    "main_focus": "Business process automation and finding B2B partners",
    "key_goal": "Land 3-5 automation projects this quarter",
    "strategy": "Position as an expert for workflow automation and AI integrations",
    "target_clients": "B2B companies and startups with a $5K+ budget",
    "expertise": "Backend development, AI integrations, workflow automation, email processing",
}

DEFAULT_CATEGORIES: dict[str, dict[str, Any]] = {
    "automation_opportunity": {
        "description": "B2B automation opportunities, consulting requests",
        "subcategories": ["workflow_automation", "ai_ml_project", "digital_transformation"],
        "priority": "high",
    },
    "business_inquiry": {
        "description": "Direct requests, projects, partnerships",
        "subcategories": ["project_proposal", "partnership", "consulting_request"],
        "priority": "high",
    },
    "networking": {
        "description": "Events, community, collaboration",
        "subcategories": ["event", "community", "collaboration"],
        "priority": "medium",
    },
    "financial": {
        "description": "Invoices, payments, billing",
        "subcategories": ["invoice", "payment", "billing"],
        "priority": "medium",
    },
    "marketing": {
        "description": "Newsletters, promotions, bulk email",
        "subcategories": ["newsletter", "promotion", "announcement"],
        "priority": "low",
    },
}

_GOAL_LABELS = (
    ("main_focus", "FOCUS"),
    ("key_goal", "KEY GOAL"),
    ("secondary_project", "SECONDARY PROJECT"),
    ("strategy", "STRATEGY"),
    ("situation", "SITUATION"),
    ("target_clients", "TARGET CLIENTS"),
    ("expertise", "EXPERTISE"),
)

_SERVICES = """\
SERVICE 1: HTML CLEANUP
- Remove CSS, scripts and noise; keep headings, bold text, lists and links
- Detect newsletters (unsubscribe link, bulk headers, many images)
- Flag urgency markers (URGENT, ASAP, DEADLINE)

SERVICE 2: CLASSIFICATION
- Pick primary_category and subcategory from the categories above
- confidence_score is a decimal from 0.0 to 1.0

SERVICE 3: SENTIMENT & URGENCY
- urgency_score 1-10: 9-10 today/ASAP, 7-8 this week, 5-6 this month, 3-4 someday, 1-2 none
- business_potential 1-10: +2 budget, +2 timeline, +2 specific use case, +2 decision maker
- tone: professional | casual | urgent | formal | promotional

SERVICE 4: RECOMMENDATIONS
- priority_level is exactly one of "low", "medium", "high"
- Newsletters and marketing are always "low"
- Tie every recommendation to the user goals

SERVICE 5: ACTIONS
- 1-3 action steps of type RESPOND, SCHEDULE, TODO, POSTPONE, RESEARCH, FOLLOW_UP or ARCHIVE
- timeline is exactly one of "hitno" (today), "ova_nedelja" (this week),
  "ovaj_mesec" (this month), "dugorocno" (long term), "nema_deadline" (informational)"""

_OUTPUT_FORMAT = """\
Return a JSON object {"emails": [...]} with one entry per email:
{
  "id": "message id from input",
  "sender": "sender from input",
  "subject": "subject from input",
  "html_analysis": {"cleaned_text": "...", "is_newsletter": false, "urgency_markers": [], "structure_detected": "professional_email"},
  "classification": {"primary_category": "...", "subcategory": "...", "confidence_score": 0.9, "matched_keywords": []},
  "sentiment": {"urgency_score": 8, "tone": "professional", "business_potential": 9},
  "recommendation": {"priority_level": "high", "text": "...", "roi_estimate": "...", "reasoning": "..."},
  "action_steps": [{"type": "RESPOND", "description": "...", "timeline": "hitno", "deadline": "ISO-8601"}],
  "summary": "...",
  "gmail_link": "https://mail.google.com/mail/u/0/#inbox/<id>"
}"""


@dataclass(frozen=True)
class GoalBasedPromptBuilder:
    """Summary: Builds the user prompt for a chunk of email records.

    Importance: Couples classification with the user's goals so recommendations are specific.
    Alternatives: Use a generic classification prompt without user context.
    """

    goals: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_GOALS))
    categories: dict[str, dict[str, Any]] = field(
        default_factory=lambda: {key: dict(value) for key, value in DEFAULT_CATEGORIES.items()}
    )

    def build(self, records: list[dict[str, Any]], goals: dict[str, str] | None = None) -> str:
        """Summary: Render the analysis prompt with records embedded as JSON.

        Importance: Records follow a fixed marker line so they can be located in the prompt.
        Alternatives: Send records as a separate chat message.
        """

        emails_json = json.dumps(records, indent=2, ensure_ascii=False)
        sections = [
            "AI EMAIL ORCHESTRATOR - 5 SERVICES",
            "USER CONTEXT",
            self.format_goals(goals or self.goals),
            "PRIORITIES: automation_opportunity > business_inquiry > networking > marketing > spam",
            "CATEGORIES",
            self.format_categories(),
            _SERVICES,
            _OUTPUT_FORMAT,
            f"{EMAILS_MARKER}\n{emails_json}",
            "Run every email through the 5 services and return the complete JSON output.",
        ]
        return "\n\n".join(sections)

    def format_goals(self, goals: dict[str, str]) -> str:
        lines = [f"{label}: {goals[key]}" for key, label in _GOAL_LABELS if goals.get(key)]
        return "\n".join(lines)

    def format_categories(self) -> str:
        lines: list[str] = []
        for key, category in self.categories.items():
            lines.append(f"{key.upper()}: {category['description']}")
            lines.append(f"  subcategories: {' | '.join(category['subcategories'])}")
            lines.append(f"  default priority: {category['priority']}")
        return "\n".join(lines)
