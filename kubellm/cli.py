"""
KubeLLM command-line interface.

Thin front end over the same dispatch core as the REST API:

  kubellm create -r anthropic -p "Hello"          Dispatch a prompt and store it
  kubellm list --limit 5                          Show stored exchanges
  kubellm providers                               Show configured providers
  kubellm models -r openai --live                 Ask a vendor for its models
  kubellm init-db                                 Create the database schema
  kubellm status                                  Check the database connection
  kubellm shell                                   Run commands interactively
  kubellm serve                                   Run the REST API with uvicorn

Exit codes: 0 success, 1 configuration or unexpected error, 2 invalid
request, 3 provider authentication failure, 4 provider failure or
timeout, 5 storage failure.
"""

import argparse
import asyncio
import importlib.util
import json
import shlex
import sys
import textwrap
from pathlib import Path

from pydantic import ValidationError

from kubellm import __version__
from kubellm.config import configure_logging, get_settings
from kubellm.dispatcher import DispatchRequest
from kubellm.errors import (
    AuthError,
    ConfigurationError,
    DispatchError,
    DispatchErrorKind,
    ProviderError,
    StorageError,
    UnknownProviderError,
)
from kubellm.providers import GenerationParams
from kubellm.services import Services, build_services

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_INVALID = 2
EXIT_AUTH = 3
EXIT_PROVIDER = 4
EXIT_STORAGE = 5

_KIND_EXIT = {
    DispatchErrorKind.INVALID_REQUEST: EXIT_INVALID,
    DispatchErrorKind.UNKNOWN_PROVIDER: EXIT_INVALID,
    DispatchErrorKind.UNKNOWN_MODEL: EXIT_INVALID,
    DispatchErrorKind.AUTH: EXIT_AUTH,
    DispatchErrorKind.EXHAUSTED_RETRIES: EXIT_PROVIDER,
    DispatchErrorKind.TIMEOUT: EXIT_PROVIDER,
    DispatchErrorKind.PERSISTENCE: EXIT_STORAGE,
}


def exit_code_for(error: DispatchError) -> int:
    """Map a DispatchError kind to the process exit code."""
    return _KIND_EXIT[error.kind]


def _truncate(text: str, width: int = 60) -> str:
    text = " ".join(text.split())
    return text if len(text) <= width else text[: width - 3] + "..."


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kubellm",
        description="Send prompts to AI providers and keep the responses",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  kubellm create -r anthropic -p "Hello"            Use the provider default model
  kubellm create -r openai -m gpt-4o -p "Hi"        Pick a model
  kubellm list --limit 10 --json                    Newest 10 records as JSON
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    create = subparsers.add_parser("create", help="Dispatch a prompt and store the exchange")
    create.add_argument("-r", "--provider", required=True, help="Provider identifier")
    create.add_argument("-p", "--prompt", required=True, help="Prompt text")
    create.add_argument("-m", "--model", help="Model identifier (default: provider default)")
    create.add_argument("--temperature", type=float, help="Sampling temperature (0-2)")
    create.add_argument("--max-tokens", type=int, help="Maximum tokens to generate")
    create.add_argument(
        "--timeout", type=float, help="Overall deadline in seconds, retries included"
    )

    list_cmd = subparsers.add_parser("list", help="List stored prompts, oldest first")
    list_cmd.add_argument("--limit", type=int, help="Show only the newest N records")
    list_cmd.add_argument("--json", action="store_true", help="Print records as JSON")
    list_cmd.add_argument(
        "--compact", action="store_true", help="One shortened line per prompt and response"
    )

    subparsers.add_parser("providers", help="Show configured providers")

    models = subparsers.add_parser("models", help="Show models for a provider")
    models.add_argument("-r", "--provider", required=True, help="Provider identifier")
    models.add_argument(
        "--live", action="store_true", help="Query the vendor API instead of configuration"
    )

    subparsers.add_parser("init-db", help="Create the database schema")
    subparsers.add_parser("status", help="Check the database connection")
    subparsers.add_parser("shell", help="Run commands interactively")

    serve = subparsers.add_parser("serve", help="Run the REST API")
    serve.add_argument("--host", help="Bind host (default: HOST setting)")
    serve.add_argument("--port", type=int, help="Bind port (default: PORT setting)")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes")

    return parser


async def cmd_create(services: Services, args: argparse.Namespace) -> int:
    await services.store.initialize()
    request = DispatchRequest(
        provider=args.provider,
        prompt=args.prompt,
        model=args.model,
        params=GenerationParams(temperature=args.temperature, max_tokens=args.max_tokens),
    )
    try:
        result = await services.orchestrator.dispatch(request, timeout=args.timeout)
    except DispatchError as e:
        print(f"ERROR ({e.kind.value}): {e}", file=sys.stderr)
        if e.kind is DispatchErrorKind.PERSISTENCE and e.result is not None:
            print("The provider responded but the exchange was not saved:", file=sys.stderr)
            print(e.result.response)
        return exit_code_for(e)

    print(result.response)
    print(
        f"\nSaved prompt #{result.record_id} ({result.provider}/{result.model}, "
        f"{result.attempts} attempt{'s' if result.attempts != 1 else ''}, "
        f"{result.latency_ms:.0f}ms)",
        file=sys.stderr,
    )
    return EXIT_OK


async def cmd_list(services: Services, args: argparse.Namespace) -> int:
    if args.limit is not None and args.limit < 1:
        print("ERROR: --limit must be at least 1", file=sys.stderr)
        return EXIT_INVALID
    await services.store.initialize()
    records = await services.store.list_prompts(args.limit)

    if args.json:
        print(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
        return EXIT_OK

    if not records:
        print("No prompts found")
        return EXIT_OK

    print(f"Found {len(records)} prompts:")
    for record in records:
        header = (
            f"  [{record.id}] {record.created_at:%Y-%m-%d %H:%M:%S} "
            f"{record.provider}/{record.model}"
        )
        if args.compact:
            print(f"{header}: {_truncate(record.prompt)}")
            print(f"      -> {_truncate(record.response)}")
            continue
        print(header)
        print("    Prompt:")
        print(textwrap.indent(record.prompt, "        ", lambda line: True))
        print("    Response:")
        print(textwrap.indent(record.response, "        ", lambda line: True))
        print()
    return EXIT_OK


async def cmd_providers(services: Services, args: argparse.Namespace) -> int:
    print(f"  {'Provider':<12} {'Default model':<28} Models")
    print(f"  {'-' * 12} {'-' * 28} {'-' * 30}")
    for entry in services.registry.describe():
        print(
            f"  {entry['provider']:<12} {entry['default_model']:<28} "
            f"{', '.join(entry['models'])}"
        )
    return EXIT_OK


async def cmd_models(services: Services, args: argparse.Namespace) -> int:
    try:
        config = services.registry.config(args.provider)
        adapter = services.registry.resolve(args.provider)
    except UnknownProviderError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_INVALID

    if not args.live:
        models = list(config.models)
    else:
        try:
            models = await adapter.list_models()
        except AuthError as e:
            print(f"ERROR: authentication rejected by {config.provider_id}: {e}", file=sys.stderr)
            return EXIT_AUTH
        except ProviderError as e:
            print(f"ERROR: could not list models: {e}", file=sys.stderr)
            return EXIT_PROVIDER

    for model in models:
        marker = " (default)" if model == config.default_model else ""
        print(f"{model}{marker}")
    return EXIT_OK


async def cmd_init_db(services: Services, args: argparse.Namespace) -> int:
    print("Initializing database...")
    await services.store.initialize()
    print("Database initialized successfully")
    return EXIT_OK


async def cmd_status(services: Services, args: argparse.Namespace) -> int:
    print("Checking database connection...")
    if not await services.store.ping():
        print(f"ERROR: database unreachable: {services.settings.database_url}", file=sys.stderr)
        return EXIT_STORAGE
    print("Database connection successful")
    print(f"Database URL: {services.settings.database_url}")
    print(f"Providers: {', '.join(sorted(services.registry.list()))}")
    return EXIT_OK


# =============================================================================
# INTERACTIVE SHELL
# =============================================================================

SHELL_PROMPT = "kubellm> "

# Names the interactive shell has always accepted
SHELL_ALIASES = {
    "prompt": "create",
    "get-providers": "providers",
    "get-models": "models",
}

SHELL_EXCLUDED = frozenset({"shell", "serve"})

SHELL_HELP = """\
  init-db                                         Initialize the database
  list [--limit N] [--compact]                    List stored prompts
  get-providers                                   Show configured providers
  get-models -r <provider> [--live]               Show models for a provider
  prompt -p <prompt> -r <provider> [-m <model>]   Dispatch a prompt and store it
  status                                          Check the database connection
  help                                            Show this help message
  exit                                            Leave the shell

Examples:
  prompt -p "What is 2 + 2?" -r anthropic
  prompt -p "What is 2 + 2?" -r openai -m gpt-4o
  get-models -r groq --live"""


def _load_history(path: Path):
    """Enable line editing and load saved history; None where readline is unavailable."""
    if importlib.util.find_spec("readline") is None:
        return None
    import readline

    if path.exists():
        try:
            readline.read_history_file(path)
        except OSError as e:
            print(f"WARNING: could not load history from {path}: {e}", file=sys.stderr)
    return readline


def _save_history(readline, path: Path) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        readline.write_history_file(path)
    except OSError as e:
        print(f"WARNING: could not save history to {path}: {e}", file=sys.stderr)


async def _run_shell_line(
    services: Services, parser: argparse.ArgumentParser, words: list[str]
) -> None:
    name = SHELL_ALIASES.get(words[0], words[0])
    if name not in COMMANDS or name in SHELL_EXCLUDED:
        print(
            f"ERROR: unknown command '{words[0]}'. Type 'help' for available commands.",
            file=sys.stderr,
        )
        return
    try:
        args = parser.parse_args([name, *words[1:]])
    except SystemExit:
        # argparse has already printed usage or --help output
        return
    try:
        await COMMANDS[name](services, args)
    except StorageError as e:
        print(f"ERROR: storage failure: {e}", file=sys.stderr)


async def cmd_shell(services: Services, args: argparse.Namespace) -> int:
    """
    Read commands line by line until `exit`, `quit` or end of input.

    Every line runs against the same services, so the shell keeps one
    registry, one store and one connection pool for its whole session.
    A failing command prints its error and the session carries on.
    Ctrl-C at the prompt discards the current line.
    """
    parser = build_parser()
    history_path = services.settings.history_file_path
    readline = _load_history(history_path)
    print("KubeLLM interactive shell. Type 'help' for commands, 'exit' to leave.")

    try:
        while True:
            try:
                line = input(SHELL_PROMPT)
            except KeyboardInterrupt:
                print()
                continue
            except EOFError:
                print()
                break

            try:
                words = shlex.split(line)
            except ValueError as e:
                print(f"ERROR: {e}", file=sys.stderr)
                continue
            if not words:
                continue
            if words[0] in ("exit", "quit"):
                break
            if words[0] == "help":
                print(SHELL_HELP)
                continue
            await _run_shell_line(services, parser, words)
    finally:
        if readline is not None:
            _save_history(readline, history_path)

    print("Goodbye!")
    return EXIT_OK


COMMANDS = {
    "create": cmd_create,
    "list": cmd_list,
    "providers": cmd_providers,
    "models": cmd_models,
    "init-db": cmd_init_db,
    "status": cmd_status,
    "shell": cmd_shell,
}


async def _run(args: argparse.Namespace, services: Services, owned: bool) -> int:
    try:
        return await COMMANDS[args.command](services, args)
    except StorageError as e:
        print(f"ERROR: storage failure: {e}", file=sys.stderr)
        return EXIT_STORAGE
    finally:
        if owned:
            await services.aclose()


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "kubellm.main:app",
        host=args.host or settings.host,
        port=args.port or settings.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )
    return EXIT_OK


def main(argv: list[str] | None = None, services: Services | None = None) -> int:
    """
    CLI entry point.

    Args:
        argv: Arguments without the program name (default: sys.argv[1:])
        services: Pre-built services; tests inject stubs

    Returns:
        Process exit code
    """
    args = build_parser().parse_args(argv)

    try:
        if args.command == "serve":
            return _serve(args)
        owned = services is None
        if owned:
            settings = get_settings()
            configure_logging(settings, stream=sys.stderr)
            services = build_services(settings)
    except (ValidationError, ConfigurationError) as e:
        print(f"ERROR: invalid configuration: {e}", file=sys.stderr)
        return EXIT_CONFIG

    return asyncio.run(_run(args, services, owned))


if __name__ == "__main__":
    sys.exit(main())
