import shutil
from datetime import datetime

from common.ids import short_id
from parley.sessions.schema import Message, Role, SessionMeta

ROLE_LABELS = {
    Role.USER: "you:",
    Role.ASSISTANT: "parley:",
    Role.SYSTEM: "system:",
}

UNTITLED = "(untitled)"


def render_markdown_lite(text: str) -> str:
    """Indent fenced code blocks and show their language tag; leave prose as is."""
    out: list[str] = []
    in_code = False
    for line in text.splitlines():
        if line.startswith("```"):
            if in_code:
                in_code = False
                out.append("")
            else:
                in_code = True
                lang = line.strip("`").strip()
                if lang:
                    out.append(f"  [{lang}]")
            continue
        out.append(f"  {line}" if in_code else line)
    return "\n".join(out)


def format_message(message: Message) -> str:
    body = message.content
    if message.role == Role.ASSISTANT:
        body = render_markdown_lite(body)
    return f"{ROLE_LABELS[message.role]}\n{body}"


def format_timestamp(value: str) -> str:
    try:
        return datetime.fromisoformat(value).strftime("%Y-%m-%d %H:%M")
    except ValueError:
        return value[:16]


def _fit(text: str, width: int) -> str:
    if len(text) <= width:
        return text
    return text[: max(width - 3, 0)] + "..."


def format_session_table(sessions: list[SessionMeta]) -> list[str]:
    term_width = shutil.get_terminal_size((80, 24)).columns
    fixed = 10 + 6 + 18 + 20
    longest = max((len(s.title or UNTITLED) for s in sessions), default=5)
    title_width = max(5, min(longest, max(term_width - fixed, 5), 50))

    lines = [
        f"{'ID':<10} {'TITLE':<{title_width + 2}} {'MSGS':<6} {'UPDATED':<18} MODEL",
        "-" * min(term_width, title_width + 2 + fixed),
    ]
    for s in sessions:
        title = _fit(s.title or UNTITLED, title_width)
        lines.append(
            f"{short_id(s.id):<10} {title:<{title_width + 2}} {s.message_count:<6} "
            f"{format_timestamp(s.updated_at):<18} {s.model}"
        )
    return lines
