"""
Prompt utilities: system message, transcript conversion and chat titles.

Key functions
-------------
- chat_system_message : Build the system prompt from the user's chat preferences.
- build_turn_content  : Convert one user turn into LangChain content blocks (text + images + file notes).
- turns_to_messages   : Convert a merged transcript into LangChain messages.
- remove_punctuation  : Strip punctuation, keep letters, digits and whitespace.
- create_title_from_turn : Fallback conversation title from the first text part.
"""

import re
from datetime import date

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

from chat_backend.api.models import ChatPreferences, FilePart, Role, TextPart, ToolPart, TurnRecord

AI_PERSONALITIES = {
    "FRIENDLY": "Always maintain a warm, cheerful, and approachable tone. Be positive, supportive, and sprinkle in friendly emojis when helpful.",
    "CYNICAL": "Respond with sarcasm and skepticism. Be witty, slightly negative, but still provide correct and useful information.",
    "ROBOT": "Speak in a precise, efficient manner. Avoid emotions, small talk, or unnecessary details. Prioritize clarity and brevity.",
    "LISTENER": "Actively listen and acknowledge the user's concerns. Provide empathetic, thoughtful responses that show you care.",
    "NERD": "Respond with enthusiasm about technical or niche topics. Be eager to share details and nerdy facts, sometimes going deep into explanations.",
    "YODA": "Speak like Yoda: reversed sentence structures, wise and mystical tone. Keep answers profound and insightful.",
    "PROFESSIONAL": "Maintain a professional, formal tone. Be accurate, respectful, and structured in your answers, as if in a workplace setting.",
    "SILLY": "Use humor, randomness, and playful exaggerations. Don't take yourself too seriously, be goofy, but still provide the right answer.",
}
"""Personality id -> instruction appended to the system prompt."""

AI_CHARACTERISTICS = {
    "GEN_Z": "Speak like a member of Generation Z.",
    "CHATTERBOX": "Be talkative and informal.",
    "STRAIGHT_SHOOTER": "Say things as they are, don't sugarcoat your answers.",
    "QUICK_WIT": "Use quick, witty humor when appropriate.",
    "MOTIVATOR": "Use an encouraging tone.",
    "TRADITIONALIST": "Hold traditional views, value the past and how things were always done.",
    "PROGRESSIVE": "Hold progressive views.",
    "DIRECT": "Get straight to the point.",
    "POETIC": "Use a poetic, lyrical tone.",
    "OPINIONATED": "Always be ready to share strong opinions.",
    "HUMBLE": "Be humble when it's appropriate.",
    "PLAYFUL": "Be playful and mischievous.",
    "PRACTICAL": "Be above all practical.",
    "CORPORATE": "Answer in corporate jargon.",
}

DEFAULT_TITLE = "New Chat"

TITLE_SYSTEM_PROMPT = (
    "You are a helpful assistant that creates short, descriptive chat titles. "
    "Summarize the following conversation in 3-5 words. Use title case. No quotes or punctuation."
)

BASE_SYSTEM_PROMPT = """You are a helpful, knowledgeable assistant.
Answer clearly and accurately. Use Markdown for structure when it helps readability.
If you are unsure about something, say so instead of guessing.
Today's date is {today}."""


def chat_system_message(preferences: ChatPreferences | None, today: date | None = None) -> str:
    """
    Build the system prompt.

    Args:
        preferences (ChatPreferences | None): The user's chat preferences, if any.
        today (date | None): Injected for tests; defaults to the current date.

    Returns:
        str: The system prompt.
    """
    lines = [BASE_SYSTEM_PROMPT.format(today=(today or date.today()).isoformat())]
    if preferences is None:
        return lines[0]

    personality = AI_PERSONALITIES.get((preferences.personality or "").upper())
    if personality:
        lines.append(f"\nPersonality: {personality}")

    traits = [AI_CHARACTERISTICS[c.upper()] for c in preferences.characteristics if c.upper() in AI_CHARACTERISTICS]
    if traits:
        lines.append("Characteristics:\n" + "\n".join(f"- {t}" for t in traits))

    about = []
    if preferences.nickname:
        about.append(f"- Call the user {preferences.nickname}.")
    if preferences.occupation:
        about.append(f"- The user works as: {preferences.occupation}.")
    if preferences.extra_info:
        about.append(f"- More about the user: {preferences.extra_info}")
    if about:
        lines.append("About the user:\n" + "\n".join(about))
    return "\n".join(lines)


def normalize_mime(mt: str) -> str:
    """Lowercase a MIME type and drop parameters (``text/plain; charset=utf-8`` -> ``text/plain``)."""
    return (mt or "").split(";")[0].strip().lower()


def build_turn_content(parts: list) -> list[dict]:
    """
    Build LangChain content blocks for a user turn.

    - Text parts become ``text`` blocks.
    - Image files become ``image_url`` blocks pointing at their public URL.
    - Other files are listed in a trailing note so the model knows they exist.
    """
    blocks = []
    notes = []
    for part in parts:
        if isinstance(part, TextPart):
            blocks.append({"type": "text", "text": part.text})
        elif isinstance(part, FilePart):
            mt = normalize_mime(part.media_type)
            if mt.startswith("image/"):
                blocks.append({"type": "image_url", "image_url": {"url": part.url}})
            else:
                notes.append(f"- {part.name} ({mt}): {part.url}")
    if notes:
        blocks.append({"type": "text", "text": "Attached files:\n" + "\n".join(notes)})
    return blocks


def turns_to_messages(turns: list[TurnRecord], system_message: str | None = None) -> list[BaseMessage]:
    """
    Convert an ordered transcript into LangChain messages.

    Assistant tool parts become ``AIMessage.tool_calls`` followed by one
    ``ToolMessage`` per call, so replayed history keeps the call/result pairing.
    """
    messages: list[BaseMessage] = []
    if system_message:
        messages.append(SystemMessage(content=system_message))

    for turn in turns:
        if turn.role == Role.USER:
            messages.append(HumanMessage(content=build_turn_content(turn.parts)))
            continue

        text = "".join(p.text for p in turn.parts if isinstance(p, TextPart))
        tools = [p for p in turn.parts if isinstance(p, ToolPart)]
        if tools:
            messages.append(AIMessage(
                content=text,
                tool_calls=[{"name": t.tool_name, "args": t.input, "id": t.tool_call_id} for t in tools],
            ))
            for t in tools:
                messages.append(ToolMessage(content=str(t.output), tool_call_id=t.tool_call_id))
        else:
            messages.append(AIMessage(content=text))
    return messages


def remove_punctuation(text: str) -> str:
    """Keep letters (any script), digits and whitespace."""
    return re.sub(r"[^\w\s]|_", "", text or "")


def truncate_title(title: str, max_length: int, ellipsis: str = "...") -> str:
    title = " ".join(title.split())
    if len(title) <= max_length:
        return title
    return title[:max_length].rstrip() + ellipsis


def create_title_from_turn(parts: list, max_length: int = 25, default: str = DEFAULT_TITLE) -> str:
    """
    Title from the first text part with words in it: punctuation removed,
    cut to `max_length` characters plus ``...``.

    Returns `default` when the turn has no usable text.
    """
    for part in parts:
        if isinstance(part, TextPart):
            text = remove_punctuation(part.text).strip()
            if text:
                return truncate_title(text, max_length)
    return default
