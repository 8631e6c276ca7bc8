"""LLM agent service."""
import json
import logging
import time
from typing import Any, Dict, List, Optional, Tuple
from openai import AsyncOpenAI
from pydantic import BaseModel

from app.core.config import settings
from app.core.errors import UpstreamUnavailableError
from app.core.logging import log_api_timing
from app.services.agent.prompt import (
    INTENT_CATEGORIES,
    INTENT_PROMPT,
    SENTIMENT_PROMPT,
    SUMMARY_PROMPT,
    PromptContext,
    get_system_prompt,
)
from app.services.agent.tools import TOOLS
from app.services.call_session.models import CallSession, MessageRole

logger = logging.getLogger(__name__)

SENTIMENTS = ("positive", "neutral", "negative")


class ActionCall(BaseModel):
    """A tool call requested by the model."""

    call_ref: str
    name: str
    arguments: Dict[str, Any] = {}


class AgentReply(BaseModel):
    """Spoken reply text and, optionally, the action to run first."""

    content: str = ""
    action: Optional[ActionCall] = None


def _tool_call_message(call_ref: str, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "role": "assistant",
        "content": None,
        "tool_calls": [
            {
                "id": call_ref,
                "type": "function",
                "function": {"name": name, "arguments": json.dumps(arguments)},
            }
        ],
    }


def _tool_result_message(call_ref: str, result: Dict[str, Any]) -> Dict[str, Any]:
    return {"role": "tool", "tool_call_id": call_ref, "content": json.dumps(result, default=str)}


class AgentService:
    """Service for LLM-powered conversation and call analysis."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
        analysis_model: Optional[str] = None,
    ):
        self.client = client or AsyncOpenAI(api_key=settings.openai_api_key)
        self.model = model or settings.openai_model
        self.analysis_model = analysis_model or settings.openai_analysis_model

    def build_messages(self, session: CallSession, context: PromptContext) -> List[Dict[str, Any]]:
        """Replay greeting and history as chat messages, including past tool calls."""
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": get_system_prompt(context)},
        ]
        if session.greeting:
            messages.append({"role": "assistant", "content": session.greeting})

        for turn in session.message_history:
            if turn.role == MessageRole.USER:
                messages.append({"role": "user", "content": turn.content})
            elif turn.role == MessageRole.ASSISTANT:
                if turn.action is not None:
                    messages.append(
                        _tool_call_message(turn.action.call_ref, turn.action.name, turn.action.arguments)
                    )
                    messages.append(_tool_result_message(turn.action.call_ref, turn.action.result))
                messages.append({"role": "assistant", "content": turn.content})
            elif turn.role == MessageRole.SYSTEM:
                messages.append({"role": "system", "content": turn.content})
        return messages

    async def chat(self, session: CallSession, context: PromptContext) -> AgentReply:
        """
        Run one reasoning round over the conversation so far.

        Only the first tool call of the response is used. Arguments that are
        not valid JSON are passed on as an empty dict so that validation
        reports the missing fields.

        Raises:
            UpstreamUnavailableError: if the model call fails
        """
        started_at = time.perf_counter()
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=self.build_messages(session, context),
                tools=TOOLS,
                tool_choice="auto",
                temperature=0.7,
                max_tokens=500,
            )
        except Exception as e:
            log_api_timing("OpenAI", "chat", started_at, False)
            raise UpstreamUnavailableError("reasoning", f"{type(e).__name__}: {e}") from e
        log_api_timing("OpenAI", "chat", started_at, True)

        message = response.choices[0].message
        tool_calls = getattr(message, "tool_calls", None) or []
        if not tool_calls:
            return AgentReply(content=message.content or "")

        tool_call = tool_calls[0]
        if len(tool_calls) > 1:
            logger.warning(
                f"[AGENT] Model requested {len(tool_calls)} tool calls, using only "
                f"'{tool_call.function.name}' - CallSid: {session.call_id}"
            )
        try:
            arguments = json.loads(tool_call.function.arguments or "{}")
        except json.JSONDecodeError:
            logger.warning(f"[AGENT] Tool arguments were not valid JSON - CallSid: {session.call_id}")
            arguments = {}
        if not isinstance(arguments, dict):
            arguments = {}

        logger.info(f"[AGENT] Tool call: {tool_call.function.name}({arguments}) - CallSid: {session.call_id}")
        return AgentReply(
            content=message.content or "",
            action=ActionCall(call_ref=tool_call.id, name=tool_call.function.name, arguments=arguments),
        )

    async def continue_after_action(
        self,
        session: CallSession,
        context: PromptContext,
        action: ActionCall,
        result: Dict[str, Any],
    ) -> str:
        """Ask the model for the spoken reply once the action result is known."""
        messages = self.build_messages(session, context)
        messages.append(_tool_call_message(action.call_ref, action.name, action.arguments))
        messages.append(_tool_result_message(action.call_ref, result))

        started_at = time.perf_counter()
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=0.7,
                max_tokens=500,
            )
        except Exception as e:
            log_api_timing("OpenAI", "chat_followup", started_at, False)
            raise UpstreamUnavailableError("reasoning", f"{type(e).__name__}: {e}") from e
        log_api_timing("OpenAI", "chat_followup", started_at, True)
        return response.choices[0].message.content or ""

    async def _analyze(self, operation: str, system_prompt: str, transcript: str, max_tokens: int) -> str:
        started_at = time.perf_counter()
        try:
            response = await self.client.chat.completions.create(
                model=self.analysis_model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": transcript},
                ],
                temperature=0,
                max_tokens=max_tokens,
            )
        except Exception as e:
            log_api_timing("OpenAI", operation, started_at, False)
            raise UpstreamUnavailableError("analysis", f"{type(e).__name__}: {e}") from e
        log_api_timing("OpenAI", operation, started_at, True)
        return (response.choices[0].message.content or "").strip()

    async def generate_call_summary(self, transcript: str) -> str:
        summary = await self._analyze("summary", SUMMARY_PROMPT, transcript, max_tokens=150)
        if not summary:
            raise UpstreamUnavailableError("analysis", "empty summary")
        return summary

    async def detect_intent(self, transcript: str) -> str:
        """Classify the call; anything outside the known categories becomes 'other'."""
        intent = (await self._analyze("intent", INTENT_PROMPT, transcript, max_tokens=20)).lower()
        intent = intent.strip(" .\"'")
        return intent if intent in INTENT_CATEGORIES else "other"

    async def analyze_sentiment(self, transcript: str) -> Tuple[str, float]:
        """
        Returns:
            (sentiment label, score clamped to [-1, 1])
        """
        content = await self._analyze("sentiment", SENTIMENT_PROMPT, transcript, max_tokens=50)
        try:
            parsed = json.loads(content)
            sentiment = str(parsed.get("sentiment", "neutral")).lower()
            score = float(parsed.get("score", 0.0))
        except (json.JSONDecodeError, AttributeError, TypeError, ValueError) as e:
            raise UpstreamUnavailableError("analysis", f"unparseable sentiment: {content!r}") from e
        if sentiment not in SENTIMENTS:
            sentiment = "neutral"
        return sentiment, max(-1.0, min(1.0, score))
