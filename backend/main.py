import argparse
import asyncio
import logging
import sys

from cmdguard.controller import MediationController
from cmdguard.risk_classifier import RiskClassifier
from cmdguard.sanitizer import Sanitizer
from cmdguard.stores import InMemoryFavoriteStore, InMemoryHistoryStore, RecordingTransport
from cmdguard.suggestion_ranker import SuggestionRanker
from config import Settings, get_settings
from llm.client import get_reasoning_backend
from llm.providers import ReasoningBackend
from schemas.api import InterpretResponse
from schemas.entities import CommandContext, DeviceInfo

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_controller(
    settings: Settings,
    backend: ReasoningBackend | None = None,
    history_store: InMemoryHistoryStore | None = None,
    favorite_store: InMemoryFavoriteStore | None = None,
    transport: RecordingTransport | None = None,
) -> MediationController:
    """Composition root: wire one controller and its collaborators from settings."""
    history_store = history_store if history_store is not None else InMemoryHistoryStore()
    favorite_store = favorite_store if favorite_store is not None else InMemoryFavoriteStore()

    ranker = SuggestionRanker(
        history_store=history_store,
        favorite_store=favorite_store,
        limit=settings.suggestion_limit,
        cache_ttl_seconds=settings.suggestion_cache_ttl_seconds,
        budget_ms=settings.suggestion_budget_ms,
    )
    return MediationController(
        classifier=RiskClassifier(),
        sanitizer=Sanitizer(),
        ranker=ranker,
        backend=backend,
        history_store=history_store,
        transport=transport if transport is not None else RecordingTransport(),
        timeout_seconds=settings.backend_timeout_seconds,
        conversation_turns=settings.conversation_turns,
        max_tokens=settings.backend_max_tokens,
        temperature=settings.backend_temperature,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="cmdguard",
        description="Turn a natural-language request into a risk-classified shell command.",
    )
    parser.add_argument("text", help="what you want to do, in plain words")
    parser.add_argument("--cwd", default="~", help="working directory on the target machine")
    parser.add_argument("--os", dest="os_name", default="linux", choices=["linux", "macos", "windows"])
    parser.add_argument("--shell", default="bash")
    parser.add_argument("--provider", default=None, help="override the configured provider")
    parser.add_argument("--model", default=None, help="override the provider's model")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace, controller: MediationController) -> InterpretResponse:
    context = CommandContext(
        current_directory=args.cwd,
        device=DeviceInfo(os=args.os_name, shell=args.shell),
    )
    result = await controller.interpret(args.text, context)
    return InterpretResponse.model_validate(result)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        backend = get_reasoning_backend(provider=args.provider, model=args.model, settings=settings)
    except ValueError as exc:
        logger.error("Cannot configure reasoning backend: %s", exc)
        return 2

    controller = build_controller(settings, backend=backend)
    response = asyncio.run(run(args, controller))
    print(response.model_dump_json(indent=2))
    return 0 if response.success else 1


if __name__ == "__main__":
    sys.exit(main())
