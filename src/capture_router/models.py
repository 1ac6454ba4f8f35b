"""Pydantic models for captures, routing rules, and inbox settings."""

from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

ContentType = Literal["task", "thought", "link", "transcript", "screenshot", "unknown"]
Source = Literal["share", "shortcut", "manual", "uri"]
RouteDestination = Literal["meeting_followup", "daily_thoughts", "daily_end"]
FormatStyle = Literal["task", "thought", "auto"]
ResolvedFormat = Literal["task", "thought"]
EntityType = Literal["person", "org"]


class MeetingRef(BaseModel):
    """A meeting the capture happened during."""

    id: str = Field(default="", description="Calendar event id")
    summary: str = Field(default="", description="Meeting title")
    start: str = Field(default="", description="ISO start time")
    end: str = Field(default="", description="ISO end time")


class CalendarEvent(BaseModel):
    """A calendar event as returned by the calendar lookup."""

    id: str = ""
    summary: str = ""
    start: Optional[str] = Field(default=None, description="ISO start datetime")
    end: Optional[str] = Field(default=None, description="ISO end datetime")

    def to_meeting_ref(self) -> MeetingRef:
        return MeetingRef(
            id=self.id, summary=self.summary, start=self.start or "", end=self.end or ""
        )


class CaptureItem(BaseModel):
    """A single inbound capture."""

    content: str = Field(description="Trimmed capture text")
    content_type: ContentType = "unknown"
    source: Source = "uri"
    timestamp: str = Field(default="", description="Capture time, YYYY-MM-DD HH:mm")
    meeting_context: Optional[MeetingRef] = None
    destination: Optional[RouteDestination] = None

    @field_validator("content")
    @classmethod
    def _content_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("capture content is empty")
        return value


class MatchSpec(BaseModel):
    """Conjunction of optional predicates. No predicates set matches everything."""

    content_types: list[ContentType] = Field(default_factory=list)
    content_starts_with: list[str] = Field(default_factory=list)
    content_includes: list[str] = Field(default_factory=list)
    content_regex: Optional[str] = None
    regex_flags: Optional[str] = None
    is_url: Optional[bool] = None
    has_task_checkbox: Optional[bool] = None
    action_item: Optional[bool] = None
    in_meeting: Optional[bool] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None


class RuleAction(BaseModel):
    destination: RouteDestination
    format: FormatStyle = "auto"
    add_due_date: bool = False
    due_date_offset: Optional[int] = None


class RoutingRule(BaseModel):
    """A user-authored rule. Rules without match or action are skipped."""

    id: str = ""
    name: str = ""
    enabled: bool = True
    match: Optional[MatchSpec] = None
    action: Optional[RuleAction] = None


class RouteDecision(BaseModel):
    """Where a capture goes and how it is formatted."""

    destination: RouteDestination
    format: ResolvedFormat
    add_due_date: bool
    due_date_offset: Optional[int] = None
    rule_id: Optional[str] = None


class Entity(BaseModel):
    """A known person or organization note."""

    type: EntityType
    name: str
    path: str


DEFAULT_ACTION_VERBS = [
    "call",
    "email",
    "send",
    "follow up",
    "followup",
    "follow-up",
    "check",
    "schedule",
    "book",
    "set up",
    "setup",
    "arrange",
    "organize",
    "review",
    "prepare",
    "draft",
    "write",
    "create",
    "update",
    "remind",
    "ask",
    "confirm",
    "reach out",
    "contact",
    "todo",
    "to-do",
    "action",
    "task",
    "need to",
    "remember to",
    "do",
    "make",
    "fix",
    "complete",
    "finish",
    "start",
    "begin",
]


def _rule(rule_id: str, name: str, match: dict, destination: str, fmt: str, due: bool) -> RoutingRule:
    return RoutingRule(
        id=rule_id,
        name=name,
        enabled=True,
        match=MatchSpec(**match),
        action=RuleAction(destination=destination, format=fmt, add_due_date=due),
    )


def default_rules() -> list[RoutingRule]:
    """Built-in rule list. Order is load-bearing: first match wins."""
    return [
        _rule("task-type-meeting", "Task type (in meeting)",
              {"content_types": ["task"], "in_meeting": True}, "meeting_followup", "task", True),
        _rule("task-type", "Task type",
              {"content_types": ["task"]}, "daily_thoughts", "task", True),
        _rule("task-checkbox-meeting", "Task checkbox (in meeting)",
              {"has_task_checkbox": True, "in_meeting": True}, "meeting_followup", "task", True),
        _rule("task-checkbox", "Task checkbox",
              {"has_task_checkbox": True}, "daily_thoughts", "task", True),
        _rule("explicit-transcript", "Explicit transcript/screenshot",
              {"content_types": ["transcript", "screenshot"]}, "daily_thoughts", "thought", False),
        _rule("url-content", "URL content",
              {"is_url": True}, "daily_thoughts", "thought", False),
        _rule("long-content", "Long content",
              {"min_length": 500}, "daily_thoughts", "thought", False),
        _rule("action-item-meeting", "Action item (in meeting)",
              {"action_item": True, "in_meeting": True}, "meeting_followup", "task", True),
        _rule("action-item", "Action item",
              {"action_item": True}, "daily_thoughts", "task", True),
    ]


class ActionDetectionConfig(BaseModel):
    enabled: bool = True
    match_mode: Literal["starts_with", "contains", "both"] = "both"
    verbs: list[str] = Field(default_factory=lambda: list(DEFAULT_ACTION_VERBS))
    include_imperative_pattern: bool = True
    include_short_content: bool = True
    short_content_max_chars: int = 100


class TriggerConfig(BaseModel):
    enabled: bool = True
    followup_phrases: list[str] = Field(
        default_factory=lambda: ["follow up", "follow-up", "followup"]
    )
    research_phrases: list[str] = Field(default_factory=lambda: ["research"])


class FormattingConfig(BaseModel):
    default_due_date_offset: int = 1
    due_date_emoji: str = "📅"
    task_prefix: str = "- [ ]"
    time_format: str = "HH:mm"


class RoutingConfig(BaseModel):
    ai_fallback_enabled: bool = True
    default_destination: RouteDestination = "daily_thoughts"
    default_format: FormatStyle = "auto"
    default_add_due_date: bool = True
    rules: list[RoutingRule] = Field(default_factory=default_rules)


class ContentSummaryConfig(BaseModel):
    enabled: bool = True
    takeaways_count: int = 4
    max_words_per_takeaway: int = 15


class ReferenceConfig(BaseModel):
    enabled: bool = True
    url_triggers: list[str] = Field(default_factory=lambda: ["Ref:", "Reference:", "Save:"])
    references_folder: str = "References"
    daily_note_link: bool = True


class ModelConfig(BaseModel):
    inbox_routing_model: str = "gemini-flash-latest"
    briefing_model: str = "gemini-flash-latest"
    research_model: str = ""
    routing_temperature: float = 0.0
    research_temperature: float = 0.2


DEFAULT_ROUTING_PROMPT = """Classify this inbox capture.

Content: {content}
Length: {length} characters
Captured during a meeting: {inMeeting}
Meeting title: {meetingTitle}

Answer with exactly one word: TASK, MEETING_FOLLOWUP, THOUGHT, or REFERENCE."""

DEFAULT_RESEARCH_PROMPT = """Research the following topic deeply using web search. Provide a comprehensive summary with key facts, insights, and relevant information.

Topic: {query}

Provide a well-structured research summary."""

DEFAULT_LINK_SUMMARY_PROMPT = """Summarize this page as {takeaways} short takeaways of at most {maxWords} words each. If the page names an author, mention them in the first takeaway. Start directly with the summary.

After the summary, on a new last line, output up to two topic tags in the format: TAGS: tag1, tag2
If no topic is clearly central, output: TAGS: uncategorized

URL: {url}

Content:
{content}"""


class PromptConfig(BaseModel):
    inbox_routing: str = DEFAULT_ROUTING_PROMPT
    research: str = DEFAULT_RESEARCH_PROMPT
    link_summary: str = DEFAULT_LINK_SUMMARY_PROMPT


class InboxSettings(BaseModel):
    """All routing configuration. Unknown fields are ignored, missing ones default."""

    enabled: bool = True
    thoughts_section: str = "## Thoughts"
    meeting_window_minutes: int = 15
    exclude_titles: list[str] = Field(default_factory=list)
    people_folder: str = "People"
    organizations_folder: str = "Organizations"
    triggers: TriggerConfig = Field(default_factory=TriggerConfig)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    action_detection: ActionDetectionConfig = Field(default_factory=ActionDetectionConfig)
    formatting: FormattingConfig = Field(default_factory=FormattingConfig)
    reference: ReferenceConfig = Field(default_factory=ReferenceConfig)
    content_summary: ContentSummaryConfig = Field(default_factory=ContentSummaryConfig)
    models: ModelConfig = Field(default_factory=ModelConfig)
    prompts: PromptConfig = Field(default_factory=PromptConfig)
