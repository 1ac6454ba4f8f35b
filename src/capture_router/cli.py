import argparse
import asyncio
import logging
import shutil
import subprocess
import sys

from capture_router.classifier import GatewayBackend
from capture_router.config import Config, load_config, load_settings
from capture_router.entities import FolderEntityIndex
from capture_router.models import DEFAULT_ROUTING_PROMPT, CaptureItem, InboxSettings, MeetingRef
from capture_router.notifier import ConsoleNotifier
from capture_router.orchestrator import CaptureOrchestrator, CaptureState, parse_content_type
from capture_router.references import AILinkSummarizer, WebReferenceSaver
from capture_router.router import provider_for_model, route_deterministic, route_full
from capture_router.store import FileDocumentStore

logger = logging.getLogger(__name__)

CLIPBOARD_COMMANDS = [
    ["pbpaste"],
    ["wl-paste", "--no-newline"],
    ["xclip", "-o", "-selection", "clipboard"],
]


def read_clipboard() -> str:
    """Read clipboard text through the first available paste command."""
    for command in CLIPBOARD_COMMANDS:
        if shutil.which(command[0]):
            result = subprocess.run(command, capture_output=True, text=True, check=True, timeout=5)
            return result.stdout
    raise RuntimeError("No clipboard command found (pbpaste, wl-paste, or xclip)")


def _build_settings(config: Config) -> InboxSettings:
    settings = load_settings(config.settings_path)
    if config.routing_prompt != DEFAULT_ROUTING_PROMPT:
        settings.prompts.inbox_routing = config.routing_prompt
    if config.gateway_model:
        settings.models.inbox_routing_model = config.gateway_model
        settings.models.research_model = config.gateway_model
    return settings


def _build_ai_caller(config: Config, settings: InboxSettings):
    model = settings.models.inbox_routing_model or settings.models.briefing_model
    api_key = config.api_keys.get(provider_for_model(model)) if model else ""
    if not api_key:
        return None
    return GatewayBackend(api_key=api_key, base_url=config.gateway_url)


def _build_orchestrator(config: Config) -> CaptureOrchestrator:
    settings = _build_settings(config)
    store = FileDocumentStore(config.vault_dir)
    entity_index = FolderEntityIndex(store, settings)
    ai_caller = _build_ai_caller(config, settings)
    return CaptureOrchestrator(
        store=store,
        settings=settings,
        notifier=ConsoleNotifier(),
        entity_lookup=entity_index,
        ai_caller=ai_caller,
        reference_saver=WebReferenceSaver(store, settings, entity_index),
        summarizer=AILinkSummarizer(ai_caller, settings) if ai_caller else None,
    )


async def _run_capture(orchestrator: CaptureOrchestrator, params: dict) -> None:
    await orchestrator.process_capture(params)
    await orchestrator.drain()


async def _run_clipboard(orchestrator: CaptureOrchestrator) -> None:
    await orchestrator.capture_from_clipboard(read_clipboard)
    await orchestrator.drain()


def _exit_code(orchestrator: CaptureOrchestrator) -> int:
    trace = orchestrator.traces[-1] if orchestrator.traces else None
    if trace is None or trace.state is None:
        return 1
    return 1 if trace.state == CaptureState.FAILED else 0


def cmd_capture(args, config: Config) -> int:
    orchestrator = _build_orchestrator(config)
    params = {"content": args.text, "type": args.type, "source": args.source}
    if args.meeting:
        params["meeting"] = MeetingRef(id=args.meeting_id or "", summary=args.meeting)
    asyncio.run(_run_capture(orchestrator, params))
    return _exit_code(orchestrator)


def cmd_clipboard(args, config: Config) -> int:
    orchestrator = _build_orchestrator(config)
    asyncio.run(_run_clipboard(orchestrator))
    return _exit_code(orchestrator)


def cmd_route(args, config: Config) -> int:
    settings = _build_settings(config)
    item = CaptureItem(
        content=args.text,
        content_type=parse_content_type(args.type),
        meeting_context=MeetingRef(summary=args.meeting) if args.meeting else None,
    )
    if args.full:
        decision = route_full(item, settings, _build_ai_caller(config, settings), config.api_keys)
    else:
        decision = route_deterministic(item, settings)
    print(decision.model_dump_json(indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Capture classification and routing")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    capture_cmd = sub.add_parser("capture", help="Capture text into today's daily note")
    capture_cmd.add_argument("text", help="Capture text (URL-encoded text is decoded)")
    capture_cmd.add_argument("--type", help="task, thought, link, transcript, or screenshot")
    capture_cmd.add_argument("--source", default="manual", help="share, shortcut, or manual")
    capture_cmd.add_argument("--meeting", help="Title of the meeting in progress")
    capture_cmd.add_argument("--meeting-id", help="Calendar event id of the meeting")
    capture_cmd.set_defaults(func=cmd_capture)

    route_cmd = sub.add_parser("route", help="Print the routing decision for text")
    route_cmd.add_argument("text", help="Capture text")
    route_cmd.add_argument("--type", help="Content type hint")
    route_cmd.add_argument("--meeting", help="Route as if captured during this meeting")
    route_cmd.add_argument("--full", action="store_true", help="Allow the AI fallback classifier")
    route_cmd.set_defaults(func=cmd_route)

    clipboard_cmd = sub.add_parser("clipboard", help="Capture the clipboard contents")
    clipboard_cmd.set_defaults(func=cmd_clipboard)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = load_config()

    verbose = args.verbose or config.verbose
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.debug(f"Vault: {config.vault_dir}, settings: {config.settings_path}")

    sys.exit(args.func(args, config))


if __name__ == "__main__":
    main()
