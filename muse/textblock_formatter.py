"""Сборка промпта из контекста: системный блок и блок пользователя."""
from dataclasses import dataclass
from typing import Dict, List, Optional

from muse.models import ChatSession, ContextBundle, Document, GenerateRequest

DEFAULT_CHARACTER = "the antagonist"
SESSION_TAIL = 5
SPEAKER_LABELS = {"author": "AUTHOR", "character": "YOU"}

VOICE_INSTRUCTION = (
    "Write from YOUR perspective in response to what the author just wrote. "
    "Be DARK, VISCERAL, and UNAPOLOGETICALLY YOURSELF. Show your motivations, "
    "your twisted logic, your desires. Make the reader uncomfortable. "
    "Make them understand you even as they fear you."
)

CLOSING_INSTRUCTION = (
    "Continue the story in first person, as yourself. "
    "Write ONLY the chapter from your POV. No explanations, no meta-commentary. Pure character voice."
)

DIRECTIVE_HEADER = (
    "MANDATORY DIRECTIVE (non-negotiable, follow it exactly; "
    "it takes precedence over your own improvisation):"
)

DIRECTIVE_CLOSING = (
    "Continue the story in first person, as yourself, carrying out every point of the directive above. "
    "Do not skip, soften or reinterpret it. No explanations, no meta-commentary."
)


@dataclass(frozen=True)
class Prompt:
    system: str
    user: str

    def as_messages(self) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": self.system},
            {"role": "user", "content": self.user},
        ]


def build_framing_block(character_name: Optional[str]) -> str:
    name = character_name or DEFAULT_CHARACTER
    return f"You are {name}, a dark and complex character.\n\n{VOICE_INSTRUCTION}"


def build_tags_block(req: GenerateRequest) -> str:
    """Строки с тегами, только для непустых списков."""
    lines = []
    if req.character_tags:
        lines.append(f"Character traits: {', '.join(req.character_tags)}")
    if req.story_tags:
        lines.append(f"Story tags: {', '.join(req.story_tags)}")
    if req.tone_tags:
        lines.append(f"Tone: {', '.join(req.tone_tags)}")
    return "\n".join(lines)


def build_profile_block(profile: Optional[str]) -> str:
    if not profile:
        return ""
    return f"YOUR CORE PERSONALITY:\n{profile}"


def build_documents_block(documents: List[Document]) -> str:
    if not documents:
        return ""
    return "RELATED STORY MATERIAL:\n" + "\n\n".join(
        f"[{doc.title}]\n{doc.content}" for doc in documents
    )


def build_sessions_block(sessions: List[ChatSession]) -> str:
    """Сессии в порядке хранилища, из каждой последние пять сообщений."""
    if not sessions:
        return ""
    blocks = []
    for idx, session in enumerate(sessions, start=1):
        lines = [f"[Session {idx}]"]
        lines.extend(
            f"{SPEAKER_LABELS[msg.speaker]}: {msg.text}"
            for msg in session.messages[-SESSION_TAIL:]
        )
        blocks.append("\n".join(lines))
    return "CONVERSATIONS WITH AUTHOR:\n" + "\n\n".join(blocks)


def build_system_block(req: GenerateRequest, bundle: ContextBundle) -> str:
    parts = [
        build_framing_block(req.character_name),
        build_tags_block(req),
        build_profile_block(bundle.character_profile),
        build_documents_block(bundle.related_documents),
        build_sessions_block(bundle.chat_sessions),
    ]
    return "\n\n".join(part for part in parts if part)


def build_user_block(fragment: str, directive: Optional[str]) -> str:
    """Директива идёт в ход пользователя и заменяет стандартную концовку."""
    head = f"Author wrote:\n\n{fragment}"
    if directive:
        return f"{head}\n\n{DIRECTIVE_HEADER}\n{directive}\n\n{DIRECTIVE_CLOSING}"
    return f"{head}\n\n{CLOSING_INSTRUCTION}"


def assemble_prompt(req: GenerateRequest, bundle: ContextBundle) -> Prompt:
    return Prompt(
        system=build_system_block(req, bundle),
        user=build_user_block(req.fragment or "", bundle.directive),
    )
