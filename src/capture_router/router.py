"""Rule-based routing engine for inbox captures.

Rules are evaluated in stored order and the first enabled rule whose match
predicates all hold decides the destination. When no rule matches, callers
fall back to the default decision (fast path) or to the AI classifier
(full path).
"""

import logging
import re

from capture_router.classifier import AICaller, classify_with_ai
from capture_router.models import (
    CaptureItem,
    FormatStyle,
    FormattingConfig,
    InboxSettings,
    ResolvedFormat,
    RouteDecision,
    RoutingRule,
)
from capture_router.triggers import strip_task_prefix

logger = logging.getLogger(__name__)

_URL_RE = re.compile(r"^https?://", re.IGNORECASE)
_WWW_RE = re.compile(r"^www\.", re.IGNORECASE)
_CHECKBOX_RE = re.compile(r"^\s*-\s*\[\s*\]")
_IMPERATIVE_RE = re.compile(r"^[a-z]+\s+(the|a|an|with|to|for)\s+", re.IGNORECASE)
_SENTENCE_RE = re.compile(r"^[A-Z][^.!?]*[.!?]?$")
_LOWER_START_RE = re.compile(r"^[a-z]")

# JS-style flag letters accepted in rule regex_flags
_REGEX_FLAGS = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "x": re.VERBOSE,
    "g": 0,
    "u": 0,
    "y": 0,
}

_DESTINATION_LABELS = {
    "meeting_followup": "meeting follow-ups",
    "daily_end": "daily end",
    "daily_thoughts": "daily thoughts",
}


# --- Content detection helpers ---


def is_url(content: str) -> bool:
    trimmed = content.strip()
    return bool(_URL_RE.match(trimmed) or _WWW_RE.match(trimmed))


def has_task_checkbox(content: str, formatting: FormattingConfig) -> bool:
    task_prefix = formatting.task_prefix.strip()
    if not task_prefix:
        return bool(_CHECKBOX_RE.match(content))
    return content.strip().startswith(task_prefix)


def _compile_flags(flags: str | None) -> int:
    if flags is None:
        return re.IGNORECASE
    compiled = 0
    for letter in flags:
        if letter not in _REGEX_FLAGS:
            raise re.error(f"unknown regex flag {letter!r}")
        compiled |= _REGEX_FLAGS[letter]
    return compiled


def looks_like_action_item(content: str, settings: InboxSettings) -> bool:
    """Heuristic check for task-shaped content.

    Any one of the verb match, the imperative pattern, or the short-content
    check firing is enough. The short-content check accepts nearly any short
    single-line non-URL text; that permissiveness is intentional.
    """
    trimmed = content.strip()
    if not trimmed:
        return False

    detection = settings.action_detection
    if not detection.enabled:
        return False

    lower = trimmed.lower()
    verbs = [verb.strip().lower() for verb in detection.verbs or [] if verb.strip()]
    mode = detection.match_mode

    if mode in ("starts_with", "both"):
        for verb in verbs:
            if lower.startswith(verb):
                logger.debug(f"Action item detected (starts with): {verb!r}")
                return True

    if mode in ("contains", "both"):
        for verb in verbs:
            if " " in verb:
                if verb in lower:
                    logger.debug(f"Action item detected (contains phrase): {verb!r}")
                    return True
                phrase = r"\s+".join(re.escape(word) for word in verb.split())
                if re.search(rf"\b{phrase}\b", lower, re.IGNORECASE):
                    logger.debug(f"Action item detected (contains regex): {verb!r}")
                    return True
            elif re.search(rf"\b{re.escape(verb)}\b", lower, re.IGNORECASE):
                logger.debug(f"Action item detected (contains): {verb!r}")
                return True

    if detection.include_imperative_pattern and _IMPERATIVE_RE.match(trimmed):
        logger.debug("Action item detected (imperative pattern)")
        return True

    if (
        detection.include_short_content
        and len(trimmed) <= detection.short_content_max_chars
        and not is_url(trimmed)
        and "\n" not in trimmed
    ):
        if _SENTENCE_RE.match(trimmed) or _LOWER_START_RE.match(trimmed):
            logger.debug(f"Action item detected (short content): {trimmed[:50]!r}")
            return True

    logger.debug(f"Content does not look like an action item: {trimmed[:50]!r}")
    return False


def should_format_as_task(item: CaptureItem, settings: InboxSettings) -> bool:
    is_explicit_task = item.content_type == "task" or has_task_checkbox(
        item.content, settings.formatting
    )
    return is_explicit_task or looks_like_action_item(item.content, settings)


# --- Rule evaluation ---


def matches_rule(rule: RoutingRule, item: CaptureItem, settings: InboxSettings) -> bool:
    """True when every predicate set on the rule's MatchSpec holds for item.

    Predicates are ANDed; list predicates match if any entry matches. An
    invalid regex makes the rule non-matching instead of raising.
    """
    match = rule.match
    if match is None:
        return False

    trimmed = (item.content or "").strip()
    lower = trimmed.lower()

    if match.in_meeting is not None:
        if match.in_meeting != (item.meeting_context is not None):
            return False

    if match.content_types:
        if item.content_type not in match.content_types:
            return False

    prefixes = [p.strip().lower() for p in match.content_starts_with if p.strip()]
    if prefixes and not any(lower.startswith(prefix) for prefix in prefixes):
        return False

    needles = [n.strip().lower() for n in match.content_includes if n.strip()]
    if needles and not any(needle in lower for needle in needles):
        return False

    if match.content_regex:
        try:
            pattern = re.compile(match.content_regex, _compile_flags(match.regex_flags))
        except re.error as e:
            logger.warning(f"Invalid regex in rule {rule.name!r}: {e}")
            return False
        if not pattern.search(trimmed):
            return False

    if match.is_url is not None and match.is_url != is_url(trimmed):
        return False

    if match.has_task_checkbox is not None:
        if match.has_task_checkbox != has_task_checkbox(trimmed, settings.formatting):
            return False

    if match.action_item is not None:
        if match.action_item != looks_like_action_item(trimmed, settings):
            return False

    if match.min_length is not None and len(trimmed) < match.min_length:
        return False

    if match.max_length is not None and len(trimmed) > match.max_length:
        return False

    return True


def resolve_format(fmt: FormatStyle, item: CaptureItem, settings: InboxSettings) -> ResolvedFormat:
    if fmt != "auto":
        return fmt
    return "task" if should_format_as_task(item, settings) else "thought"


def evaluate_routing_rules(item: CaptureItem, settings: InboxSettings) -> RouteDecision | None:
    """Return the decision of the first enabled matching rule, or None."""
    for rule in settings.routing.rules:
        if rule is None or rule.match is None or rule.action is None:
            continue
        if not rule.enabled:
            continue
        if not matches_rule(rule, item, settings):
            continue

        fmt = resolve_format(rule.action.format, item, settings)
        decision = RouteDecision(
            destination=rule.action.destination,
            format=fmt,
            add_due_date=rule.action.add_due_date if fmt == "task" else False,
            due_date_offset=rule.action.due_date_offset,
            rule_id=rule.id,
        )
        logger.debug(f"Rule {rule.id!r} matched: {decision.destination}/{decision.format}")
        return decision

    return None


def build_default_decision(item: CaptureItem, settings: InboxSettings) -> RouteDecision:
    routing = settings.routing
    fmt = resolve_format(routing.default_format, item, settings)
    return RouteDecision(
        destination=routing.default_destination,
        format=fmt,
        add_due_date=routing.default_add_due_date if fmt == "task" else False,
    )


# --- Entry points ---


def provider_for_model(model: str) -> str:
    """Provider implied by a model id's naming convention."""
    lower = model.lower()
    if lower.startswith("openrouter:") or "/" in lower:
        return "openrouter"
    if lower.startswith("claude-"):
        return "anthropic"
    if lower.startswith(("gpt-", "o1-", "o3-")):
        return "openai"
    return "gemini"


def has_api_key_for_model(model: str, api_keys: dict[str, str]) -> bool:
    if not model:
        return False
    return bool(api_keys.get(provider_for_model(model)))


def route_deterministic(item: CaptureItem, settings: InboxSettings) -> RouteDecision:
    """Rules, then the default decision. Never calls the AI classifier."""
    return evaluate_routing_rules(item, settings) or build_default_decision(item, settings)


def route_full(
    item: CaptureItem,
    settings: InboxSettings,
    ai_caller: AICaller | None,
    api_keys: dict[str, str],
) -> RouteDecision:
    """Rules, then the AI classifier when enabled and credentialed, then the default."""
    decision = evaluate_routing_rules(item, settings)
    if decision:
        return decision

    if ai_caller is not None and settings.routing.ai_fallback_enabled:
        model = settings.models.inbox_routing_model or settings.models.briefing_model
        if model and has_api_key_for_model(model, api_keys):
            decision = classify_with_ai(item, settings, ai_caller)
            if decision:
                return decision
        else:
            logger.debug(f"No credential for routing model {model!r}, skipping AI fallback")

    return build_default_decision(item, settings)


def format_destination_label(destination: str) -> str:
    return _DESTINATION_LABELS.get(destination, "daily thoughts")
