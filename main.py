#!/usr/bin/env python3
"""
Main entry point for the Task Extractor
"""
import asyncio
import json
import re
import signal
import sys
import logging
from collections import deque
from logging.handlers import RotatingFileHandler
from pathlib import Path

from config import config
from task_extractor.orchestrator import ExtractorOrchestrator
from task_extractor.core import RecordingNotifier

# Configure logging with rotation for file handler
logs_dir = Path(config.system.logs_dir)
logs_dir.mkdir(parents=True, exist_ok=True)
file_handler = RotatingFileHandler(
    logs_dir / "extractor.log",
    maxBytes=1_000_000,  # ~1MB
    backupCount=3,
    encoding="utf-8"
)
stream_handler = logging.StreamHandler()
logging.basicConfig(
    level=getattr(logging, config.system.log_level),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[stream_handler, file_handler]
)

# Reduce noise from third-party HTTP and filesystem logs
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("watchdog").setLevel(logging.WARNING)


class _RedactFilter(logging.Filter):
    """Mask provider API keys before records reach any handler"""

    def __init__(self) -> None:
        super().__init__(name="redact")
        self._patterns = [
            # Authorization headers
            (re.compile(r"(Authorization:\s*Bearer\s+)[^\s]+", flags=re.IGNORECASE), r"\1<REDACTED>"),
            (re.compile(r"(Bearer\s+)sk-[^\s\"']+"), r"\1<REDACTED>"),
            # Anthropic header
            (re.compile(r"(x-api-key['\"]?\s*[:=]\s*['\"]?)[^\s'\",}]+", flags=re.IGNORECASE), r"\1<REDACTED>"),
            # Bare OpenAI / Anthropic style keys
            (re.compile(r"\bsk-[A-Za-z0-9_-]{8,}"), "sk-<REDACTED>"),
            (re.compile(r"(TASK_EXTRACTOR_API_KEY=)[^\s]+", flags=re.IGNORECASE), r"\1<REDACTED>"),
        ]

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
        except (TypeError, ValueError):
            return True
        redacted = msg
        for pat, repl in self._patterns:
            redacted = pat.sub(repl, redacted)
        if redacted != msg:
            record.msg = redacted
            record.args = ()
        return True


# Attach redaction filter to both handlers
_rf = _RedactFilter()
file_handler.addFilter(_rf)
stream_handler.addFilter(_rf)

logger = logging.getLogger(__name__)


class ExtractorCLI:
    """Command-line interface for the extractor daemon"""

    def __init__(self):
        self.orchestrator = ExtractorOrchestrator()
        self.shutdown_event = asyncio.Event()

    async def start(self):
        """Start watching the vault until a shutdown signal arrives"""

        loop = asyncio.get_running_loop()
        for sig in [signal.SIGINT, signal.SIGTERM]:
            try:
                loop.add_signal_handler(sig, self._signal_handler, sig)
            except NotImplementedError:
                # Windows event loops have no add_signal_handler
                signal.signal(sig, lambda signum, frame: self._signal_handler(signum))

        try:
            print("Task Extractor")
            print("==============")
            print()

            errors = config.validate()
            for err in errors:
                print(f"  [!!] {err}")
            if errors:
                print()

            await self.orchestrator.start()

            _print_status(self.orchestrator.get_status())

            print()
            print("Task Extractor is running. Press Ctrl+C to stop.")
            print(f"Watching notes in: {self.orchestrator.vault.root}")
            print()

            await self.shutdown_event.wait()

        except KeyboardInterrupt:
            pass
        finally:
            print("\nShutting down...")
            await self.orchestrator.stop()
            print("Shutdown complete.")

    def _signal_handler(self, signum):
        """Handle shutdown signals"""
        logger.info(f"Received signal {signum}, initiating shutdown")
        self.shutdown_event.set()


def _print_status(status):
    """Print formatted status"""
    print("Component Status:")
    print(f"  Provider: {status['provider']} ({status['model']})")
    print(f"  File Watcher: {'[OK] Running' if status['watcher_running'] else '[--] Stopped'}")
    services = status["services"]
    if not services:
        print("  Local services: not probed yet")
    for name, service in services.items():
        if service["available"]:
            print(f"  {name}: [OK] Available at {service['url']} ({len(service['models'])} models)")
        else:
            print(f"  {name}: [--] Not available at {service['url'] or '<unset>'}")
    print()
    print("Processing:")
    print(f"  Pending changes: {status['pending_changes']}")
    print(f"  In flight: {', '.join(status['in_flight']) or '-'}")
    stats = status["stats"]
    print(f"  Processed: {stats['processed']}  Skipped: {stats['skipped']}  Failed: {stats['failed']}")
    print(f"  Task notes created: {stats['notes_created']}")


async def show_status():
    """Probe local services and show current status"""

    orchestrator = ExtractorOrchestrator()
    await orchestrator._check_services()
    status = orchestrator.get_status()

    print("Task Extractor Status")
    print("=====================")
    print()
    _print_status(status)
    await orchestrator.llm.cleanup()


async def run_scan():
    """Process every unprocessed matching note once and exit"""

    orchestrator = ExtractorOrchestrator(notifier=RecordingNotifier())
    await orchestrator._check_services()
    report = await orchestrator.scan_existing_files()
    await orchestrator.llm.cleanup()

    print(f"Scanned {report.total} notes in {len(report.group_sizes)} groups")
    print(f"  Succeeded: {report.succeeded}")
    print(f"  Failed: {len(report.failed)}")
    for path, error in report.failed.items():
        print(f"    {path}: {error}")
    print(f"  Task notes created: {orchestrator.stats['notes_created']}")
    return 1 if report.failed else 0


async def extract_note(path):
    """Run the manual extraction command for one note"""

    orchestrator = ExtractorOrchestrator()
    file_id = orchestrator.resolve_file_id(path)
    outcome = await orchestrator.extract_manually(file_id)
    await orchestrator.llm.cleanup()
    for created in outcome.notes_created:
        print(f"  {created}")
    return 0 if outcome.processed else 1


async def list_models(provider):
    """List models for a provider"""

    orchestrator = ExtractorOrchestrator()
    try:
        models = await orchestrator.llm.list_models(provider)
    except ValueError as e:
        print(str(e))
        return 1
    finally:
        await orchestrator.llm.cleanup()
    if not models:
        print(f"No models found for {provider}")
        return 1
    for model in models:
        print(model)
    return 0


def main():
    """Main entry point"""

    if len(sys.argv) > 1:
        command = sys.argv[1]
        if command == "run":
            cli = ExtractorCLI()
            asyncio.run(cli.start())
            return
        if command == "scan":
            sys.exit(asyncio.run(run_scan()))
        if command == "extract":
            sys.exit(asyncio.run(extract_note(sys.argv[2] if len(sys.argv) > 2 else "")))
        if command == "status":
            asyncio.run(show_status())
            return
        if command == "models":
            if len(sys.argv) < 3:
                print("Usage: python main.py models [openai|anthropic|ollama|lmstudio]")
                sys.exit(1)
            sys.exit(asyncio.run(list_models(sys.argv[2])))
        if command == "doctor":
            _doctor()
            return
        if command == "tail-events":
            _tail_events(sys.argv[2:])
            return
        if command == "help":
            print_help()
            return
        print(f"Unknown command: {command}")
        print_help()
        sys.exit(1)
    else:
        # Default: start watching
        cli = ExtractorCLI()
        asyncio.run(cli.start())


def print_help():
    """Print help information"""
    print("""Task Extractor

Usage:
    python main.py                  Watch the vault and scan existing notes
    python main.py run              Same as above
    python main.py scan             Scan existing notes once and exit
    python main.py extract NOTE     Extract tasks from one note (manual command)
    python main.py status           Probe local LLM services and show status
    python main.py models PROVIDER  List models for openai|anthropic|ollama|lmstudio
    python main.py doctor           Print effective configuration and problems
    python main.py tail-events [--id CORRELATION_ID] [--lines N]   Show recent debug events
    python main.py help             Show this help

Environment Setup:
    Copy .env.example to .env (or write settings.yaml) and configure:
    - TASK_EXTRACTOR_VAULT_DIR  path to the Obsidian vault
    - TASK_EXTRACTOR_OWNER      whose tasks to extract
    - TASK_EXTRACTOR_PROVIDER   openai | anthropic | ollama | lmstudio
    - TASK_EXTRACTOR_API_KEY    required for openai / anthropic
    - TASK_EXTRACTOR_DEBUG=true to write logs/events.ndjson
""")


def _doctor():
    """Print effective configuration and validation problems."""
    config.reload_from_env()

    llm = config.llm
    proc = config.processing
    print("Effective configuration:")
    print(f"  Log level        : {config.system.log_level}")
    print(f"  Provider / model : {llm.provider} / {llm.model}")
    print(f"  API key          : {'...' + llm.api_key[-4:] if llm.api_key else '<unset>'}")
    print(f"  Ollama URL       : {llm.ollama_url}")
    print(f"  LM Studio URL    : {llm.lmstudio_url}")
    print(f"  Timeout / retries: {llm.timeout}s / {llm.retries}")
    print(f"  Vault            : {Path(proc.vault_dir).resolve()}")
    print(f"  Tasks folder     : {proc.tasks_folder}")
    print(f"  Owner            : {proc.owner_name or '<unset>'}")
    print(f"  Trigger          : {proc.trigger_frontmatter_field} in {proc.trigger_types}")
    print(f"  Processed marker : {proc.processed_frontmatter_key}")
    print(f"  Process on update: {proc.process_on_update}")
    print(f"  Debug events     : {config.system.debug_mode}")

    errors = config.validate()
    print()
    if errors:
        print("Problems:")
        for err in errors:
            print(f"  - {err}")
    else:
        print("No configuration problems found.")


def _tail_events(args=None):
    """Print recent debug events from logs/events.ndjson.

    Usage:
      python main.py tail-events [--id CORRELATION_ID] [--lines N]
    """
    args = args or []
    id_filter = None
    max_lines = 50
    it = iter(args)
    for a in it:
        if a == "--id":
            id_filter = next(it, None)
        elif a == "--lines":
            try:
                max_lines = max(1, int(next(it, "50")))
            except ValueError:
                pass
    events_path = Path(config.system.logs_dir) / "events.ndjson"
    if not events_path.exists():
        print("No events file found. Set TASK_EXTRACTOR_DEBUG=true to record events.")
        return
    buf = deque(maxlen=max_lines)
    with events_path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                ev = json.loads(line)
            except json.JSONDecodeError:
                continue
            if id_filter and ev.get("correlation_id") != id_filter:
                continue
            buf.append(ev)
    for ev in buf:
        ts = ev.get("timestamp", "")
        category = ev.get("category", "")
        cid = ev.get("correlation_id", "-")
        print(f"{ts}  {ev.get('level', ''):5s}  {category:18s}  id={cid}  {ev.get('message', '')}  {ev.get('data', '')}")


if __name__ == "__main__":
    main()
