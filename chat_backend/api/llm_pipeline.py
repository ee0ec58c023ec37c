"""
Turn Streamer: streamed model invocation for one chat turn
==========================================================

Purpose
-------
Drives a LangChain chat model over a merged transcript and turns its output
into a sequence of stream events:
- ``TextDelta``       : a piece of assistant text
- ``ToolInvocation``  : a tool call the model made, with its result
- ``StreamFinish``    : terminal, carries finish reason, usage and the assistant parts
- ``StreamFailure``   : terminal, the invocation failed (partial output included)

Nothing here touches the database; the caller decides what to persist from
the terminal event.

Key Components
--------------
- load_chat_model : Build the ``ChatOpenAI`` client from settings.
- StreamSession   : Accumulator for the in-flight response.
- TurnStreamer    : Runs the model (and tools, bounded by a step count) under a deadline.
- generate_title  : Ask the model for a short conversation title.

Configuration (settings)
------------------------
- settings.API_KEY                  : OpenAI API key.
- settings.OPEN_AI_MODEL            : Chat model name (e.g., "gpt-4o").
- settings.CHAT_MAX_TOOL_STEPS      : Maximum model steps per turn.
- settings.CHAT_MAX_DURATION_SECONDS: Deadline for the whole invocation.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_openai import ChatOpenAI

from chat_backend.api.models import TextPart, ToolPart, TurnRecord, Usage
from chat_backend.api.prompt_utilities import (
    TITLE_SYSTEM_PROMPT,
    build_turn_content,
    remove_punctuation,
    turns_to_messages,
)
from chat_backend.database.config.config import Settings
from chat_backend.orchestrator.errors import StreamError

logger = logging.getLogger(__name__)


def load_chat_model(settings: Settings) -> ChatOpenAI:
    """Chat model client; ``stream_usage`` makes the final chunk carry token usage."""
    return ChatOpenAI(
        model=settings.OPEN_AI_MODEL,
        api_key=settings.API_KEY,
        temperature=0.7,
        stream_usage=True,
    )


# --------------------------------------------------------------------
# Stream events
# --------------------------------------------------------------------

@dataclass
class TextDelta:
    text: str


@dataclass
class ToolInvocation:
    part: ToolPart


@dataclass
class StreamFinish:
    finish_reason: str
    usage: Usage
    parts: list
    model: str | None = None


@dataclass
class StreamFailure:
    error: StreamError
    usage: Usage
    parts: list
    model: str | None = None

    @property
    def has_output(self) -> bool:
        return bool(self.parts)


StreamEvent = TextDelta | ToolInvocation | StreamFinish | StreamFailure


@dataclass
class StreamSession:
    """
    In-flight accumulated response. Text deltas extend the trailing text part;
    a tool invocation closes it so the order of text and tools is preserved.
    """
    parts: list = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    finish_reason: str | None = None

    def append_text(self, text: str) -> None:
        if self.parts and isinstance(self.parts[-1], TextPart):
            self.parts[-1] = TextPart(text=self.parts[-1].text + text)
        else:
            self.parts.append(TextPart(text=text))

    def append_tool(self, part: ToolPart) -> None:
        self.parts.append(part)

    def add_usage(self, usage_metadata: dict | None) -> None:
        if not usage_metadata:
            return
        input_tokens = int(usage_metadata.get("input_tokens") or 0)
        output_tokens = int(usage_metadata.get("output_tokens") or 0)
        total_tokens = int(usage_metadata.get("total_tokens") or input_tokens + output_tokens)
        self.usage = Usage(
            input_tokens=self.usage.input_tokens + input_tokens,
            output_tokens=self.usage.output_tokens + output_tokens,
            total_tokens=self.usage.total_tokens + total_tokens,
        )


def chunk_text(chunk) -> str:
    """Text carried by a message chunk (string content or a list of content blocks)."""
    content = getattr(chunk, "content", chunk)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            block.get("text", "") if isinstance(block, dict) else str(block)
            for block in content
            if isinstance(block, str) or (isinstance(block, dict) and block.get("type") == "text")
        )
    return ""


async def iterate_until(iterator: AsyncIterator, deadline: float) -> AsyncIterator:
    """
    Yield from `iterator` until it ends or the loop clock passes `deadline`.

    Raises ``asyncio.TimeoutError`` at the deadline; the source iterator is closed.
    """
    loop = asyncio.get_running_loop()
    source = iterator.__aiter__()
    try:
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise asyncio.TimeoutError()
            try:
                item = await asyncio.wait_for(source.__anext__(), remaining)
            except StopAsyncIteration:
                return
            yield item
    finally:
        aclose = getattr(source, "aclose", None)
        if aclose is not None:
            await aclose()


class TurnStreamer:
    """
    Streams one assistant turn.

    Args:
        model: LangChain chat model (``ChatOpenAI`` in production).
        model_name (str | None): Recorded on the committed turn.
        tools (list | None): LangChain tools offered to the model.
        max_steps (int): Model invocations allowed when tools are called.
        max_duration (float): Seconds before the answer is cut with ``finish_reason="timeout"``.
    """

    def __init__(self, model, model_name: str | None = None, tools: list | None = None,
                 max_steps: int = 10, max_duration: float = 280.0):
        self.model = model
        self.model_name = model_name
        self.tools = tools or []
        self.max_steps = max_steps
        self.max_duration = max_duration

    @classmethod
    def from_settings(cls, model, settings: Settings, tools: list | None = None) -> "TurnStreamer":
        return cls(
            model,
            model_name=settings.OPEN_AI_MODEL,
            tools=tools,
            max_steps=settings.CHAT_MAX_TOOL_STEPS,
            max_duration=settings.CHAT_MAX_DURATION_SECONDS,
        )

    async def start(self, transcript: list[TurnRecord], system_message: str | None = None,
                    tools: list | None = None) -> AsyncIterator[StreamEvent]:
        """
        Stream the reply to `transcript`.

        Always ends with exactly one ``StreamFinish`` or ``StreamFailure``.
        """
        tools = self.tools if tools is None else tools
        session = StreamSession()
        messages = turns_to_messages(transcript, system_message)
        deadline = asyncio.get_running_loop().time() + self.max_duration

        try:
            async for event in self._run(session, messages, tools, deadline):
                yield event
        except asyncio.TimeoutError:
            logger.warning("Model stream hit the %ss deadline", self.max_duration)
            session.finish_reason = "timeout"
        except Exception as e:
            logger.exception("Model stream failed")
            yield StreamFailure(
                error=StreamError(f"model invocation failed: {e}"),
                usage=session.usage,
                parts=list(session.parts),
                model=self.model_name,
            )
            return

        yield StreamFinish(
            finish_reason=session.finish_reason or "stop",
            usage=session.usage,
            parts=list(session.parts),
            model=self.model_name,
        )

    async def _run(self, session: StreamSession, messages: list[BaseMessage], tools: list, deadline: float):
        by_name = {tool.name: tool for tool in tools}
        model = self.model.bind_tools(tools) if tools else self.model

        for step in range(self.max_steps):
            aggregate = None
            async for chunk in iterate_until(model.astream(messages), deadline):
                aggregate = chunk if aggregate is None else aggregate + chunk
                session.add_usage(getattr(chunk, "usage_metadata", None))
                reason = (getattr(chunk, "response_metadata", None) or {}).get("finish_reason")
                if reason:
                    session.finish_reason = reason
                text = chunk_text(chunk)
                if text:
                    session.append_text(text)
                    yield TextDelta(text)

            tool_calls = getattr(aggregate, "tool_calls", None) or []
            if not tool_calls or not by_name:
                return

            messages.append(aggregate)
            for call in tool_calls:
                tool = by_name.get(call["name"])
                if tool is None:
                    output = f"Unknown tool: {call['name']}"
                else:
                    output = await asyncio.wait_for(
                        tool.ainvoke(call["args"]),
                        max(deadline - asyncio.get_running_loop().time(), 0.001),
                    )
                part = ToolPart(tool_name=call["name"], tool_call_id=call["id"], input=call["args"], output=output)
                session.append_tool(part)
                yield ToolInvocation(part)
                messages.append(ToolMessage(content=str(output), tool_call_id=call["id"]))
            logger.info("Tool step %d finished with %d call(s)", step + 1, len(tool_calls))

        session.finish_reason = "max_steps"


async def generate_title(model, parts: list, max_length: int = 60) -> str | None:
    """
    Ask the model for a 3-5 word title for a conversation starting with `parts`.

    Returns ``None`` when the call fails or yields nothing usable; the caller
    falls back to the heuristic title.
    """
    try:
        response = await model.ainvoke([
            SystemMessage(content=TITLE_SYSTEM_PROMPT),
            HumanMessage(content=build_turn_content(parts)),
        ])
    except Exception:
        logger.warning("Title generation failed; using the message text", exc_info=True)
        return None
    title = remove_punctuation(chunk_text(response)).strip()
    return title[:max_length].strip() or None
