"""
prompts/system_prompts.py
-------------------------
System prompt builders for grounded and fallback completions.
"""

from typing import Mapping

from supportbot.prompts.product_profile import PRODUCT_PROFILE

NO_ANSWER_SENTENCE = "I don't find that in the stored documents."

MODE_NOTES = {
    "demo": (
        "User is interacting with the public demo bot. Never imply access to private "
        "customer documents. If asked about private data, state the demo bot only has "
        "general product knowledge."
    ),
    "fallback": (
        "Subscriber fallback: no matching customer documents. Provide general, truthful "
        "product info grounded ONLY in the PRODUCT_PROFILE."
    ),
}


def _bullets(items) -> str:
    return "\n".join(f"- {item}" for item in items)


def render_product_facts(profile: Mapping = PRODUCT_PROFILE) -> str:
    style = profile["style"]
    return (
        "[PRODUCT_PROFILE]\n"
        f"Name: {profile['name']}\n"
        f"Tagline: {profile['tagline']}\n\n"
        f"Positioning:\n{_bullets(profile['positioning'])}\n\n"
        f"Core Features (authoritative):\n{_bullets(profile['core_features'])}\n\n"
        f"Benefits:\n{_bullets(profile['benefits'])}\n\n"
        f"Pricing Summary (do not invent unlisted tiers):\n{_bullets(profile['pricing_summary'])}\n\n"
        f"Disallowed / Out-of-Scope Claims:\n{_bullets(profile['disallowed_claims'])}\n\n"
        "Tone/Style Constraints:\n"
        f"- Max ~{style['max_words']} words unless deeply clarifying\n"
        f"- Tone: {style['tone']}\n"
        f"- Avoid: {', '.join(style['avoid'])}\n"
        "[END_PRODUCT_PROFILE]"
    )


def build_fallback_system_prompt(mode: str, profile: Mapping = PRODUCT_PROFILE) -> str:
    max_words = profile["style"]["max_words"]
    policy = (
        "RESPONSE POLICY:\n"
        "1. Base every claim strictly on PRODUCT_PROFILE.\n"
        "2. If user asks for an unlisted feature, say it's not currently offered and pivot to real capabilities.\n"
        "3. Do NOT invent roadmap items unless present.\n"
        "4. If user goes off-topic, gently steer back.\n"
        f"5. Never describe {profile['name']} as project/task management.\n"
        f"6. Stay within ~{max_words} words unless multi-part clarification needed.\n"
        "7. Prefer concise paragraphs or bullets."
    )
    return (
        f"You are the canonical product knowledge assistant for {profile['name']}.\n\n"
        f"{MODE_NOTES.get(mode, MODE_NOTES['fallback'])}\n\n"
        "Use the canonical facts below without deviation.\n"
        f"{render_product_facts(profile)}\n\n"
        f"{policy}\n\n"
        "THINKING FORMAT (do not output thinking):\n"
        "1. Classify intent\n"
        "2. Select ONLY relevant facts\n"
        "3. Plan concise structured answer\n"
        "4. Output final answer\n\n"
        "Output only the final user-facing answer."
    )


def build_grounded_system_prompt() -> str:
    return (
        "You answer ONLY using DOCUMENT CONTEXT.\n"
        f'If the answer is not in the context, respond exactly: "{NO_ANSWER_SENTENCE}"\n'
        "No hallucinations. Concise and direct."
    )


def build_grounded_user_prompt(context_blocks: str, question: str) -> str:
    return (
        "DOCUMENT CONTEXT:\n---\n"
        f"{context_blocks}\n---\n"
        f"USER QUESTION:\n{question}\n\n"
        "If answerable from context, answer. Otherwise output the exact fallback sentence."
    )
