"""LangGraph-based booking assistant for HeyKaelo businesses.

Architecture:
  One LangGraph StateGraph per process with three nodes:

    1. **chatbot**:   Anthropic model with the two booking tools bound
    2. **tools**:     executes *every* tool call of the last model turn,
                       sequentially and in order
    3. **fallback**:  fixed safe reply once ``MAX_TOOL_ROUNDS`` is spent

  Routing:
    chatbot → (tool calls, rounds left?) → tools → chatbot (loop)
            → (tool calls, no rounds left?) → fallback → END
            → (plain text?) → END

  Memory:
    The graph itself is stateless (no checkpointer).  Each phone number's
    chat (business profile + trimmed history) lives in a ``ChatSessionCache``
    and is passed in on every turn, so an evicted or expired chat simply
    starts over.  A failed turn leaves the cached chat untouched.  The
    system prompt carries the current time, so the chatbot node rebuilds it
    on every model call.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Annotated

import anthropic
from langchain_anthropic import ChatAnthropic
from langchain_core.messages import (
    AIMessage,
    AnyMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from sqlalchemy.exc import SQLAlchemyError
from typing_extensions import TypedDict

from heykaelo.config import (
    ANTHROPIC_API_KEY,
    CHAT_HISTORY_LIMIT,
    CHAT_SESSION_MAX_ENTRIES,
    CHAT_SESSION_TTL_SECONDS,
    MAX_TOOL_ROUNDS,
    MODEL_NAME,
    MODEL_TIMEOUT_SECONDS,
)
from heykaelo.flows.session import HISTORY
from heykaelo.prompts import get_system_prompt
from heykaelo.services.cache import ChatSessionCache
from heykaelo.services.metrics import metrics
from heykaelo.services.profiles import BusinessProfile, ProfileRepository
from heykaelo.services.session_store import SessionStore
from heykaelo.tools.booking import BookingToolkit

logger = logging.getLogger(__name__)

APOLOGY_REPLY = "Oops! I had a little technical hiccup. Please try sending that again? Sharp! 🤙"
RATE_LIMIT_REPLY = (
    "Heita! I'm a bit overwhelmed right now. 😅 Give me a minute and try again? Sharp! 🤙"
)
FALLBACK_REPLY = (
    "Eish, I'm going round in circles on that one. 🙈 Could you tell me the day and "
    "time you'd like, and your full name, in one message?"
)
TOOL_LIMIT_RESULT = "Not executed: tool call limit for this message reached."


# ── State schema ─────────────────────────────────────────────────────


class AgentState(TypedDict):
    """The state that flows through the graph for one turn.

    ``tool_rounds`` counts executed tool rounds; ``created_booking_ids``
    collects bookings made during the turn so the caller can start the
    registration flow.
    """

    messages: Annotated[list[AnyMessage], add_messages]
    profile: BusinessProfile | None
    customer_phone: str
    business_id: str | None
    tool_rounds: int
    created_booking_ids: list[int]


@dataclass
class ChatSession:
    """One phone number's long-lived chat with the assistant."""

    profile: BusinessProfile | None
    business_id: str | None
    history: list[AnyMessage] = field(default_factory=list)


@dataclass
class AssistantReply:
    text: str
    booking_ids: list[int] = field(default_factory=list)


def is_rate_limited(exc: BaseException) -> bool:
    if isinstance(exc, anthropic.RateLimitError):
        return True
    message = str(exc).lower()
    return "429" in message or "quota" in message or "rate limit" in message


def trim_history(messages: list[AnyMessage], limit: int = CHAT_HISTORY_LIMIT) -> list[AnyMessage]:
    """Keep the last *limit* messages, starting on a human turn.

    Starting on a human turn keeps tool calls and their results together.
    """
    recent = list(messages[-limit:])
    while recent and not isinstance(recent[0], HumanMessage):
        recent.pop(0)
    return recent


def _text_of(message: AnyMessage) -> str:
    content = message.content
    if isinstance(content, str):
        return content
    # Anthropic content blocks
    return "".join(
        block.get("text", "") if isinstance(block, dict) else str(block)
        for block in content
    ).strip()


# ── LLM builder ─────────────────────────────────────────────────────


def _build_llm(tools: list) -> ChatAnthropic:
    """Build the Anthropic chat model with the booking tools bound."""
    llm = ChatAnthropic(
        model=MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.7,
        max_tokens=1000,
        timeout=MODEL_TIMEOUT_SECONDS,
    )
    return llm.bind_tools(tools)


# ── Nodes ────────────────────────────────────────────────────────────


def _make_chatbot_node(toolkit: BookingToolkit):
    """Create the chatbot node.

    The LLM + tool bindings are captured in the closure so repeated node
    invocations share one client.
    """
    llm_with_tools = _build_llm(toolkit.as_tools())

    def chatbot_node(state: AgentState) -> dict:
        logger.debug("chatbot node invoked, model: %s (round %d)", MODEL_NAME, state["tool_rounds"])
        system = SystemMessage(content=get_system_prompt(state["profile"], state["customer_phone"]))
        t0 = time.perf_counter()
        try:
            response = llm_with_tools.invoke([system] + state["messages"])
        except Exception as exc:
            metrics.record_failure(
                "anthropic", "llm_invoke",
                error_type=type(exc).__name__,
                latency_ms=(time.perf_counter() - t0) * 1000,
            )
            raise
        metrics.record_success(
            "anthropic", "llm_invoke", latency_ms=(time.perf_counter() - t0) * 1000,
        )
        return {"messages": [response]}

    return chatbot_node


def _make_tools_node(toolkit: BookingToolkit):
    """Create the node that runs all tool calls of the last model message in order."""

    def tools_node(state: AgentState) -> dict:
        tools_by_name = {t.name: t for t in toolkit.as_tools(state.get("business_id"))}
        created = list(state.get("created_booking_ids") or [])
        results: list[ToolMessage] = []

        for call in state["messages"][-1].tool_calls:
            selected = tools_by_name.get(call["name"])
            if selected is None:
                output = {"error": f"Unknown tool: {call['name']}"}
            else:
                logger.info("Tool call %s(%s)", call["name"], call["args"])
                output = selected.invoke(call["args"])
            if call["name"] == "create_booking_request" and isinstance(output, dict) and "id" in output:
                created.append(output["id"])
            results.append(ToolMessage(
                content=output if isinstance(output, str) else json.dumps(output, default=str),
                name=call["name"],
                tool_call_id=call["id"],
            ))

        return {
            "messages": results,
            "tool_rounds": state.get("tool_rounds", 0) + 1,
            "created_booking_ids": created,
        }

    return tools_node


def fallback_node(state: AgentState) -> dict:
    """Close the dangling tool calls and reply with a fixed message."""
    last = state["messages"][-1]
    logger.warning("Tool round limit (%d) reached; replying with fallback", MAX_TOOL_ROUNDS)
    skipped = [
        ToolMessage(content=TOOL_LIMIT_RESULT, name=call["name"], tool_call_id=call["id"])
        for call in getattr(last, "tool_calls", None) or []
    ]
    return {"messages": [*skipped, AIMessage(content=FALLBACK_REPLY)]}


# ── Conditional edges ────────────────────────────────────────────────


def should_use_tools(state: AgentState) -> str:
    """Route to tools while rounds remain, to fallback once they are spent."""
    last_message = state["messages"][-1]
    if not getattr(last_message, "tool_calls", None):
        return END
    if state.get("tool_rounds", 0) >= MAX_TOOL_ROUNDS:
        return "fallback"
    return "tools"


# ── Graph assembly ───────────────────────────────────────────────────


def create_booking_graph(toolkit: BookingToolkit):
    """Build and compile the booking graph.

    Invoke with a full ``AgentState``; the graph keeps no memory of its own.
    """
    graph = StateGraph(AgentState)

    graph.add_node("chatbot", _make_chatbot_node(toolkit))
    graph.add_node("tools", _make_tools_node(toolkit))
    graph.add_node("fallback", fallback_node)

    graph.set_entry_point("chatbot")
    graph.add_conditional_edges(
        "chatbot",
        should_use_tools,
        {"tools": "tools", "fallback": "fallback", END: END},
    )
    graph.add_edge("tools", "chatbot")
    graph.add_edge("fallback", END)

    compiled = graph.compile()
    logger.debug("Booking graph compiled, model: %s, max tool rounds: %d", MODEL_NAME, MAX_TOOL_ROUNDS)
    return compiled


# ── Per-phone conversation façade ────────────────────────────────────


class BookingAssistant:
    """Runs one conversation turn for a customer of a business."""

    def __init__(
        self,
        toolkit: BookingToolkit,
        profiles: ProfileRepository,
        session_store: SessionStore | None = None,
        *,
        cache: ChatSessionCache | None = None,
    ) -> None:
        self._graph = create_booking_graph(toolkit)
        self._profiles = profiles
        self._session_store = session_store
        self._sessions = cache or ChatSessionCache(
            max_entries=CHAT_SESSION_MAX_ENTRIES, ttl_seconds=CHAT_SESSION_TTL_SECONDS,
        )

    def _chat_for(self, phone: str, business_id: str | None) -> ChatSession:
        chat = self._sessions.get(phone)
        if chat is None or chat.business_id != business_id:
            chat = ChatSession(
                profile=self._profiles.resolve_business(business_id),
                business_id=business_id,
            )
            self._sessions.put(phone, chat)
            logger.info("Started chat for %s (business=%s)", phone, business_id)
        return chat

    def reply(self, phone: str, text: str, business_id: str | None = None) -> AssistantReply:
        """Send *text* to the model and return its final reply.

        Never raises: failures become the apology or rate-limit reply and
        the phone's chat stays usable.
        """
        try:
            chat = self._chat_for(phone, business_id)
            result = self._graph.invoke({
                "messages": [*chat.history, HumanMessage(content=text)],
                "profile": chat.profile,
                "customer_phone": phone,
                "business_id": business_id,
                "tool_rounds": 0,
                "created_booking_ids": [],
            })
        except Exception as exc:
            if is_rate_limited(exc):
                logger.warning("Model rate-limited for %s: %s", phone, exc)
                return AssistantReply(RATE_LIMIT_REPLY)
            logger.exception("Assistant turn failed for %s", phone)
            return AssistantReply(APOLOGY_REPLY)

        messages = result["messages"]
        chat.history = trim_history(messages)
        reply = _text_of(messages[-1]) or APOLOGY_REPLY
        self._save_display_history(phone, text, reply, business_id)
        return AssistantReply(reply, list(result.get("created_booking_ids") or []))

    def _save_display_history(
        self, phone: str, text: str, reply: str, business_id: str | None,
    ) -> None:
        """Append the exchange to the session's display history."""
        if self._session_store is None:
            return
        session = self._session_store.get(phone)
        history = list((session.metadata if session else {}).get(HISTORY) or [])
        history += [{"role": "user", "text": text}, {"role": "ai", "text": reply}]
        try:
            self._session_store.upsert(
                phone,
                {HISTORY: history[-CHAT_HISTORY_LIMIT:]},
                business_id=business_id,
                last_action="processed_message",
            )
        except SQLAlchemyError:
            logger.exception("Failed to save chat history for %s", phone)

    def reset(self, phone: str) -> bool:
        """Forget the in-memory chat for *phone*."""
        return self._sessions.invalidate(phone)
