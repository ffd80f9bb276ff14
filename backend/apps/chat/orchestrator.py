"""
Chat turn orchestrator with bounded tool calling.

One turn:
1. Save the user's message (best-effort)
2. Call the model with history, system instruction and tools
3. While the model asks for tools (up to max_tool_steps rounds), run them
   and feed the results back
4. Once the budget is spent, call the model without tools so it must answer
5. Save the assistant's text (best-effort)

Text is streamed to the caller as it is generated. Closing the turn's
async generator stops the upstream model stream.
"""
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Union

from .llm_client import BaseLLMGateway, ChatMessage, TextDelta, ToolCall
from .persistence import best_effort
from .tools import Tool, unknown_tool_message

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOOL_STEPS = 3

SYSTEM_PROMPT = """You are a helpful assistant for {assistant_name}.

You have access to a knowledge base containing the user's uploaded documents and saved conversation memories. Use the search_knowledge_base tool to find relevant information when the user asks questions.

Guidelines:
- Always search before answering if the question might relate to uploaded documents or earlier conversations
- Be concise and helpful
- If the search finds nothing relevant, say so and ask the user for the missing details instead of guessing
- Answer only from what you found or what the user told you

The user's name is {user_name}."""


class TurnState(str, Enum):
    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    TOOL_REQUESTED = "tool_requested"
    TOOL_EXECUTING = "tool_executing"
    RESPONDING = "responding"


# =============================================================================
# Round outcomes
# =============================================================================

@dataclass(frozen=True)
class FinalAnswer:
    """The model answered; the turn is over."""
    text: str


@dataclass(frozen=True)
class ToolCalls:
    """The model asked for one or more tool calls before answering."""
    calls: List[ToolCall]
    text: str = ""


RoundOutcome = Union[FinalAnswer, ToolCalls]


def fold_round(text: str, calls: List[ToolCall]) -> RoundOutcome:
    if calls:
        return ToolCalls(calls=list(calls), text=text)
    return FinalAnswer(text=text)


# =============================================================================
# Turn events
# =============================================================================

@dataclass(frozen=True)
class ToolInvocation:
    """A tool ran and its result was handed back to the model."""
    name: str
    arguments: Dict[str, Any]
    result: str

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "arguments": self.arguments}


@dataclass(frozen=True)
class TurnComplete:
    """The turn finished; text is everything the model said."""
    text: str
    tool_steps: int = 0


TurnEvent = Union[TextDelta, ToolInvocation, TurnComplete]


@dataclass
class TurnContext:
    """Bookkeeping for one turn, mostly for logs."""
    owner_id: str
    conversation_id: Optional[str]
    state: TurnState = TurnState.IDLE
    tool_steps: int = 0
    text_parts: List[str] = field(default_factory=list)

    def transition(self, state: TurnState) -> None:
        if state != self.state:
            logger.debug(f"Turn for {self.owner_id}: {self.state.value} -> {state.value}")
            self.state = state

    @property
    def text(self) -> str:
        return "".join(self.text_parts)


def build_system_prompt(assistant_name: str, user_name: Optional[str]) -> str:
    return SYSTEM_PROMPT.format(
        assistant_name=assistant_name,
        user_name=user_name or "unknown",
    )


class ChatOrchestrator:
    """Runs chat turns against an LLM gateway with the knowledge-base tools."""

    def __init__(
        self,
        llm: BaseLLMGateway,
        tools_factory: Callable[[str], List[Tool]],
        message_store,
        max_tool_steps: int = DEFAULT_MAX_TOOL_STEPS,
        assistant_name: str = "Swiss Army Knife AI",
    ):
        self.llm = llm
        self.tools_factory = tools_factory
        self.message_store = message_store
        self.max_tool_steps = max_tool_steps
        self.assistant_name = assistant_name

    async def run_turn(
        self,
        session,
        history: List[ChatMessage],
        conversation_id: Optional[str] = None,
    ) -> AsyncIterator[TurnEvent]:
        """
        Run one chat turn.

        Args:
            session: Authenticated session (user_id scopes every tool call)
            history: Conversation so far, ending with the new user message
            conversation_id: Conversation to persist messages to, if any

        Yields:
            TextDelta as the answer streams, ToolInvocation per tool run,
            then a single TurnComplete

        Raises:
            LLMError: If a model call fails
        """
        ctx = TurnContext(owner_id=session.user_id, conversation_id=conversation_id)

        if conversation_id and history and history[-1].role == "user":
            await best_effort(
                "save user message",
                self.message_store.save_message(conversation_id, "user", history[-1].content),
            )

        tools = self.tools_factory(session.user_id)
        tool_map = {tool.name: tool for tool in tools}
        specs = [tool.spec for tool in tools]

        system = build_system_prompt(self.assistant_name, getattr(session, "user_name", None))
        messages = list(history)

        while True:
            # Out of budget: no tools offered, the model has to answer
            offered = specs if ctx.tool_steps < self.max_tool_steps else None

            ctx.transition(TurnState.AWAITING_MODEL)
            round_text: List[str] = []
            calls: List[ToolCall] = []

            async with aclosing(self.llm.stream_chat(messages, system=system, tools=offered)) as stream:
                async for item in stream:
                    if isinstance(item, TextDelta):
                        ctx.transition(TurnState.RESPONDING)
                        round_text.append(item.text)
                        ctx.text_parts.append(item.text)
                        yield item
                    elif isinstance(item, ToolCall):
                        calls.append(item)

            if offered is None and calls:
                logger.warning(f"Model requested {len(calls)} tool calls with no tools offered, ignoring")
                calls = []

            outcome = fold_round("".join(round_text), calls)

            if isinstance(outcome, FinalAnswer):
                break

            ctx.transition(TurnState.TOOL_REQUESTED)
            ctx.tool_steps += 1
            messages.append(ChatMessage(role="assistant", content=outcome.text, tool_calls=outcome.calls))

            for call in outcome.calls:
                ctx.transition(TurnState.TOOL_EXECUTING)
                result = await self.execute_tool(call, tool_map)
                yield ToolInvocation(name=call.name, arguments=call.arguments, result=result)
                messages.append(ChatMessage(
                    role="tool", content=result, tool_call_id=call.id, name=call.name
                ))

        final_text = ctx.text
        if conversation_id and final_text.strip():
            await best_effort(
                "save assistant message",
                self.message_store.save_message(conversation_id, "assistant", final_text),
            )

        logger.info(
            f"Turn completed for {ctx.owner_id}: {ctx.tool_steps} tool steps, "
            f"{len(final_text)} chars"
        )
        ctx.transition(TurnState.IDLE)
        yield TurnComplete(text=final_text, tool_steps=ctx.tool_steps)

    async def execute_tool(self, call: ToolCall, tool_map: Dict[str, Tool]) -> str:
        """Run one tool call; failures become messages for the model."""
        tool = tool_map.get(call.name)
        if tool is None:
            logger.warning(f"Model called unknown tool: {call.name}")
            return unknown_tool_message(call.name)

        try:
            return await tool(call.arguments)
        except Exception:
            logger.exception(f"Tool {call.name} failed")
            return f"Tool {call.name} failed"
