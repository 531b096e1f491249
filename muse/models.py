"""Модуль для определения моделей данных, используемых в приложении."""
from typing import Any, Dict, List, Literal, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

DOCUMENT_MAX_CHARS = 1500


class CamelModel(BaseModel):
    """Базовая модель: поля в snake_case, JSON-ключи в camelCase."""
    model_config = ConfigDict(populate_by_name=True)


class Message(BaseModel):
    """Сообщение в диалоге автора с персонажем."""
    speaker: Literal["author", "character"]
    text: str


class ChatSession(BaseModel):
    """Сессия переписки, сообщения в хронологическом порядке."""
    messages: List[Message] = Field(default_factory=list)


class Document(BaseModel):
    """Связанный документ. Содержимое обрезается до первых 1500 символов."""
    title: str = ""
    content: str = ""

    @field_validator("content")
    def truncate_content(cls, content: str) -> str:
        return content[:DOCUMENT_MAX_CHARS]


class ContextBundle(CamelModel):
    """Весь вспомогательный контекст одного запроса. Любое поле может быть пустым."""
    character_profile: Optional[str] = Field(default=None, alias="characterProfile")
    chat_sessions: List[ChatSession] = Field(default_factory=list, alias="chatSessions")
    related_documents: List[Document] = Field(default_factory=list, alias="relatedDocuments")
    directive: Optional[str] = None


class GenerateRequest(CamelModel):
    """Модель входных данных для генерации продолжения."""
    fragment: Optional[str] = None
    character_name: Optional[str] = Field(default=None, alias="characterName")
    character_tags: List[str] = Field(default_factory=list, alias="characterTags")
    story_tags: List[str] = Field(default_factory=list, alias="storyTags")
    tone_tags: List[str] = Field(default_factory=list, alias="toneTags")
    directive_tags: List[str] = Field(default_factory=list, alias="directiveTags")

    @field_validator("character_tags", "story_tags", "tone_tags", "directive_tags", mode="before")
    def none_to_empty(cls, tags: Optional[List[str]]) -> List[str]:
        return tags or []


class LegacyMessage(BaseModel):
    """Сообщение в формате первой версии API: type == "user" означает автора."""
    type: str = "user"
    text: str = ""


class LegacyChat(BaseModel):
    messages: List[LegacyMessage] = Field(default_factory=list)


class PovRequest(CamelModel):
    """Запрос /devil-pov: контекст передаётся клиентом напрямую, без хранилища."""
    previous_chapter: Optional[str] = Field(default=None, alias="previousChapter")
    character_context: Optional[str] = Field(default=None, alias="characterContext")
    chat_history: List[LegacyChat] = Field(default_factory=list, alias="chatHistory")
    character_name: Optional[str] = Field(default=None, alias="characterName")
    tone_tags: List[str] = Field(default_factory=list, alias="toneTags")

    @field_validator("chat_history", "tone_tags", mode="before")
    def none_to_empty(cls, value: Optional[list]) -> list:
        return value or []

    def to_generate_request(self) -> GenerateRequest:
        return GenerateRequest(
            fragment=self.previous_chapter,
            character_name=self.character_name,
            tone_tags=self.tone_tags,
        )

    def to_bundle(self) -> ContextBundle:
        sessions = [
            ChatSession(messages=[
                Message(speaker="author" if msg.type == "user" else "character", text=msg.text)
                for msg in chat.messages
            ])
            for chat in self.chat_history
        ]
        return ContextBundle(character_profile=self.character_context or None, chat_sessions=sessions)


class StoreRecord(BaseModel):
    """Запись хранилища документов: идентификатор и непрозрачный словарь data."""

    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    def stringify_id(cls, value: Any) -> str:
        return str(value)


class ModelAttempt(CamelModel):
    """Одна попытка вызова модели. Живёт только внутри одного вызова GenerationClient."""
    model_id: str = Field(alias="modelId")
    outcome: Literal["success", "failure"]
    text: Optional[str] = None
    reason: Optional[str] = None


class ContextUsed(CamelModel):
    character_profile: bool = Field(alias="characterProfile")
    chat_sessions: int = Field(alias="chatSessions")
    related_documents: int = Field(alias="relatedDocuments")
    directive_enforced: bool = Field(alias="directiveEnforced")

    @classmethod
    def from_bundle(cls, bundle: ContextBundle) -> "ContextUsed":
        return cls(
            character_profile=bool(bundle.character_profile),
            chat_sessions=len(bundle.chat_sessions),
            related_documents=len(bundle.related_documents),
            directive_enforced=bool(bundle.directive),
        )


class GenerateResponse(CamelModel):
    """Ответ сервиса. Времена в миллисекундах."""
    status: Literal["success"] = "success"
    result: str
    chars_generated: int = Field(alias="charsGenerated")
    processing_time: int = Field(alias="processingTime")
    fetch_time: int = Field(alias="fetchTime")
    generation_time: int = Field(alias="generationTime")
    model: str
    context_used: ContextUsed = Field(alias="contextUsed")
