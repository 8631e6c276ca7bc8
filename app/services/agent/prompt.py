"""Agent prompt templates."""
from typing import Optional
from pydantic import BaseModel


class PromptContext(BaseModel):
    """Per-call facts the model should know."""

    business_name: str
    customer_phone: str = "Unknown"
    customer_name: Optional[str] = None
    reservation_count: int = 0
    current_date: str
    opening_hour: str
    closing_hour: str


def get_system_prompt(context: PromptContext) -> str:
    """Generate system prompt for the agent."""
    return f"""You are a friendly and professional phone assistant for {context.business_name}.
You help callers book, change and cancel table reservations and answer questions about the restaurant.

Current context:
- Caller phone: {context.customer_phone}
- Caller name: {context.customer_name or "Unknown"}
- Previous reservations: {context.reservation_count}
- Today's date: {context.current_date}
- Opening hours: {context.opening_hour} - {context.closing_hour}

When responding:
- You are speaking out loud: keep replies to one or two short sentences, no lists or markdown
- Confirm date, time and party size before booking, changing or cancelling
- Always check availability before creating a reservation
- Use the FAQ tool for restaurant details instead of guessing
- If the caller is upset or the request is unusual, offer to transfer to a staff member
- When the caller says goodbye, end the call politely"""


SUMMARY_PROMPT = (
    "Summarize this phone call transcript in 2-3 sentences. "
    "Focus on the main topic and the outcome."
)

INTENT_CATEGORIES = (
    "new_reservation",
    "modify_reservation",
    "cancel_reservation",
    "inquiry",
    "faq",
    "complaint",
    "other",
)

INTENT_PROMPT = f"""Classify the primary intent of this phone call into one of these categories:
{", ".join(INTENT_CATEGORIES)}

Respond with only the category name."""

SENTIMENT_PROMPT = """Analyze the caller's sentiment in this phone call.
Respond in JSON: {"sentiment": "positive|neutral|negative", "score": <number from -1 to 1>}"""
