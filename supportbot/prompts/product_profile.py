"""
prompts/product_profile.py
--------------------------
Canonical product fact sheet used by the fallback answer generator.

Bump PROFILE_VERSION whenever the facts change; it is logged with every
fallback completion so answers can be traced back to the facts in force.
"""

PROFILE_VERSION = "2024.1"

PRODUCT_PROFILE = {
    "name": "AI Assistant",
    "tagline": "AI-powered customer support assistant",
    "positioning": [
        "Instant responses to customer inquiries",
        "Answer questions 24/7 using your business content",
        "Improve customer satisfaction and reduce response time",
    ],
    "core_features": [
        "Document-based knowledge answers",
        "Instant customer support",
        "Lead capture and engagement",
        "Easy integration and setup",
        "Customizable responses",
    ],
    "pricing_summary": [
        "Flexible pricing options available",
        "Scalable for businesses of all sizes",
    ],
    "benefits": [
        "Reduce customer wait times",
        "Increase customer satisfaction",
        "Capture leads automatically",
        "24/7 availability",
    ],
    "disallowed_claims": [
        "Project management (tasks, sprints, Kanban)",
        "Full CRM pipeline automation",
        "Source code deployment features",
        "Accounting / HR management",
        "Real-time order logistics tracking",
    ],
    "style": {
        "max_words": 130,
        "tone": "Concise, clear, confident, honest",
        "avoid": ["hype", "unverifiable claims", "exaggerations"],
    },
}

# Phrases that signal the model drifted into a product category we do not offer
HALLUCINATION_KEYWORDS = (
    "project management",
    "kanban",
    "sprints",
    "sprint planning",
    "gantt",
    "scrum board",
    "task tracking",
    "issue tracking",
)

HALLUCINATION_CORRECTION = (
    "\n\n(Note: correction. {name} is not a project or task management platform; "
    "it is an AI customer-support chatbot.)"
)

EMPTY_ANSWER = "I'm here to help with {name}. Could you tell me a bit more about what you need?"
