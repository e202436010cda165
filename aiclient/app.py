# aiclient/app.py
from __future__ import annotations
import argparse, logging, platform, sys
from pathlib import Path

from .constants import APP_NAME, __version__
from .core.client import AiClient
from .core.code_actions import ACTIONS, get_action, run_code_action
from .core.settings import FileSettingsProvider, Provider
from .infra.llm.factory import TRANSPORTS
from .logging_config import init_logging, mask_secret
from .paths import default_data_dir, log_paths, settings_path
from .settings import load_settings

log = logging.getLogger("boot")

HELP_TEXT = "Commands: /clear (new conversation), /history, /quit"


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog=APP_NAME, description="Chat with an OpenAI-compatible model")
    p.add_argument("--data-dir", type=str, default=None, help="Override data directory")
    p.add_argument("--log-level", type=str, default=None, help="DEBUG, INFO, WARNING, ERROR")
    p.add_argument("--no-console-log", action="store_true", help="Disable console logging")
    p.add_argument("--no-stream", action="store_true", help="Wait for whole replies instead of streaming")
    p.add_argument("--transport", choices=TRANSPORTS, default=None, help="HTTP backend to use")
    p.add_argument("--provider", choices=[pr.value for pr in Provider], default=None,
                   help="Switch provider (resets endpoint and model) and save it")
    p.add_argument("--set-api-key", metavar="KEY", default=None, help="Store the API key in the keyring and exit")
    p.add_argument("--ask", metavar="FILE", default=None, help="One-off question about a code file")
    p.add_argument("--instruction", type=str, default="Explain this code.", help="Question for --ask")
    p.add_argument("--action", choices=sorted(ACTIONS), default=None, help="Preset instruction for --ask")
    p.add_argument("--version", action="version", version=f"{APP_NAME} {__version__}")
    return p.parse_args(argv)


def _print_stream(events) -> bool:
    ok = True
    for ev in events:
        if ev.type == "delta":
            sys.stdout.write(ev.text)
            sys.stdout.flush()
        elif ev.type == "end":
            sys.stdout.write("\n")
        elif ev.type == "error":
            ok = False
            sys.stdout.write(f"\n[Error: {ev.error.message}]\n")
    sys.stdout.flush()
    return ok


def run_one_off(client: AiClient, path: Path, instruction: str, action: str | None, stream: bool) -> int:
    try:
        code = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        log.error("Cannot read %s: %s", path, exc)
        print(f"[Error: Cannot read {path}: {exc}]")
        return 1
    if not code.strip():
        print(f"[Error: {path} contains no code]")
        return 1
    if action:
        result = run_code_action(client, get_action(action), code)
        print(result.display_text())
        return 0 if result.ok else 1
    if stream:
        return 0 if _print_stream(client.stream_about_code(code, instruction)) else 1
    result = client.ask_about_code(code, instruction)
    print(result.display_text())
    return 0 if result.ok else 1


def run_chat(client: AiClient, stream: bool) -> int:
    print(f"{APP_NAME} {__version__}. {HELP_TEXT}")
    while True:
        try:
            text = input("\nYou: ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            return 0
        if not text:
            continue
        if text in ("/quit", "/exit"):
            return 0
        if text == "/clear":
            client.clear_history()
            print("Started a new conversation.")
            continue
        if text == "/history":
            for msg in client.history.snapshot():
                print(f"{msg.role.value:>9}: {msg.content}")
            continue
        sys.stdout.write("AI: ")
        if stream:
            try:
                _print_stream(client.stream_message(text))
            except KeyboardInterrupt:
                print("\n[interrupted]")
        else:
            print(client.send_message(text).display_text())


def main(argv=None) -> int:
    args = parse_args(argv)

    data_dir = Path(args.data_dir).expanduser().resolve() if args.data_dir else default_data_dir()
    logs_dir, log_path = log_paths(data_dir)
    cfg_path = settings_path(data_dir)
    cfg = load_settings(cfg_path)

    level = (args.log_level or cfg["logging"]["level"]).upper()
    init_logging(
        logs_dir,
        level=level,
        max_bytes=int(cfg["logging"]["max_bytes"]),
        backup_count=int(cfg["logging"]["backup_count"]),
        also_console=(not args.no_console_log),
    )
    log.info("=== %s %s starting ===", APP_NAME, __version__)
    log.info("Platform: %s | Python: %s", platform.platform(), platform.python_version())
    log.info("Data dir: %s | Log file: %s", data_dir, log_path)

    provider = FileSettingsProvider(cfg_path)
    if args.set_api_key is not None:
        provider.store_api_key(args.set_api_key.strip())
        print("API key saved.")
        return 0
    if args.provider:
        provider.update(provider=args.provider)
    if args.transport:
        provider.update(transport=args.transport)

    settings = provider.get()
    log.info("Provider: %s | Endpoint: %s | Model: %s | Transport: %s | API key: %s",
             settings.provider.display_name, settings.api_endpoint, settings.model, settings.transport,
             mask_secret(settings.api_key))
    stream = settings.streaming_enabled and not args.no_stream

    client = AiClient(provider)
    try:
        if args.ask:
            return run_one_off(client, Path(args.ask), args.instruction, args.action, stream)
        return run_chat(client, stream)
    finally:
        client.close()


if __name__ == "__main__":
    raise SystemExit(main())
