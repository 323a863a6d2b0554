"""
Command-Line Interface for tts-hub.

Operational helpers around the resilience layer: validate a settings file,
probe every configured provider through the full tracked-execution path,
or serve the diagnostics API.

Usage Examples:
    # Validate settings and show the resolved pools/caches/limits
    tts-hub check-config --config config/settings.yaml

    # GET each provider's base_url through execute_tracked, print the report
    tts-hub probe --config config/settings.yaml --json

    # Same, saving the performance report
    tts-hub probe --out reports/probe.json

    # Diagnostics API
    tts-hub serve --host 127.0.0.1 --port 8000

Environment Variables:
    TTS_HUB_SETTINGS: Default settings file
    TTS_HUB_MAX_CONCURRENT: Global concurrency override
    TTS_HUB_LOG_LEVEL: Log level (1-4)
"""

from __future__ import annotations

import argparse
import json
import os
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from tts_hub.core.config import ConfigValidationError, HubConfig, load_settings
from tts_hub.core.logging import configure_logging, get_logger, info, warn
from tts_hub.resilience.facade import ClientFactory, ResilienceFacade
from tts_hub.resilience.metrics import OperationContext
from tts_hub.resilience.pool import Connection

_LOG = get_logger("tts-hub.cli")


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    # --config is accepted after every subcommand
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        default=os.getenv("TTS_HUB_SETTINGS", "config/settings.yaml"),
        help="Settings file (YAML)",
    )

    parser = argparse.ArgumentParser(prog="tts-hub", description="tts-hub CLI (resilience layer tools)")
    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check-config", parents=[common], help="Validate the settings file")
    check.add_argument("--json", action="store_true", help="Print the resolved config as JSON")

    probe = sub.add_parser("probe", parents=[common], help="GET each provider's base_url through the facade")
    probe.add_argument("--path", default="/", help="Request path appended to base_url")
    probe.add_argument("--retries", type=int, default=None, help="Retry budget per provider")
    probe.add_argument("--timeout", type=float, default=None, help="Seconds to wait for a slot/connection")
    probe.add_argument("--out", help="Save the performance report as JSON")
    probe.add_argument("--json", action="store_true", help="Print the full JSON payload")

    serve = sub.add_parser("serve", parents=[common], help="Run the diagnostics API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    return parser.parse_args(argv)


def _load_config(path: str) -> HubConfig:
    return load_settings(path).get_hub_config()


def _check_config(args: argparse.Namespace) -> int:
    try:
        config = _load_config(args.config)
    except (FileNotFoundError, ConfigValidationError) as exc:
        print(f"[FAILED] {exc}")
        return 1

    if args.json:
        print(json.dumps(asdict(config), indent=2, ensure_ascii=False))
    else:
        for name, provider in config.providers.items():
            print(f"provider {name}: pool {provider.min_pool_size}..{provider.max_pool_size} base_url={provider.base_url or '-'}")
        print(f"max_concurrent: {config.concurrency.max_concurrent}")
        print(f"retry: {config.retry.max_retries} x {config.retry.base_delay_ms} ms")
    print("CONFIG_OK")
    return 0


def _probe_call(path: str):
    def call(conn: Connection) -> int:
        response = conn.client.get(path)
        response.raise_for_status()
        return response.status_code
    return call


def _probe(args: argparse.Namespace, client_factory: Optional[ClientFactory] = None) -> int:
    try:
        config = _load_config(args.config)
    except (FileNotFoundError, ConfigValidationError) as exc:
        print(f"[FAILED] {exc}")
        return 1

    probes: Dict[str, Any] = {}
    with ResilienceFacade(config, client_factory=client_factory) as facade:
        for name, provider in config.providers.items():
            if not provider.base_url:
                warn(_LOG, "probe_skipped", provider=name, reason="no base_url")
                continue
            ctx = OperationContext(
                provider=name,
                operation="probe",
                max_retries=args.retries,
                timeout=args.timeout,
            )
            result = facade.execute_tracked(_probe_call(args.path), ctx)
            probes[name] = result.to_dict()
            if result.success:
                probes[name]["status_code"] = result.result

        report = facade.report().to_dict()
        if args.out:
            facade.save_report(args.out)

    payload = {"probes": probes, "report": report}
    if args.json:
        print(json.dumps(payload, indent=2, ensure_ascii=False))
    else:
        for name, outcome in probes.items():
            state = "ok" if outcome["success"] else outcome["error"]["error"]
            print(f"{name}: {state} ({outcome['execution_time_ms']:.0f} ms)")
        for line in report["recommendations"]:
            print(f"- {line}")

    ok = all(outcome["success"] for outcome in probes.values())
    info(_LOG, "probe_done", providers=len(probes), ok=ok)
    print("PROBE_OK" if ok else "PROBE_FAILED")
    return 0 if ok else 1


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    from tts_hub.main import create_app

    try:
        facade = ResilienceFacade.from_settings(load_settings(args.config))
    except (FileNotFoundError, ConfigValidationError) as exc:
        print(f"[FAILED] {exc}")
        return 1

    uvicorn.run(create_app(facade), host=args.host, port=args.port, log_config=None)
    return 0


def main(argv: Optional[List[str]] = None, client_factory: Optional[ClientFactory] = None) -> int:
    """
    CLI entry point.

    Args:
        argv: Arguments (defaults to sys.argv).
        client_factory: httpx client builder for probe (tests inject a
            MockTransport-backed client).

    Returns:
        Process exit code.
    """
    args = _parse_args(argv)
    configure_logging()

    if args.command == "check-config":
        return _check_config(args)
    if args.command == "probe":
        return _probe(args, client_factory=client_factory)
    if args.command == "serve":
        return _serve(args)
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
