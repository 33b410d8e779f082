import argparse
import json
import logging
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Dict, Optional
from urllib.parse import urlparse

from movestop.binance_client import BinanceClient
from movestop.config import AppConfig, ExchangeConfig, load_app_config
from movestop.errors import ConfigError, ExchangeError
from movestop.exchange import ExchangeClient
from movestop.huobi_client import HuobiClient
from movestop.report import save_ledger
from movestop.tracker import PositionTracker

CLIENTS = {
    "binance": BinanceClient,
    "huobi": HuobiClient,
}


def build_client(cfg: ExchangeConfig) -> ExchangeClient:
    try:
        client_cls = CLIENTS[cfg.name]
    except KeyError:
        raise ConfigError(f"unsupported exchange {cfg.name!r}") from None
    if not cfg.api_key or not cfg.secret_key:
        raise ConfigError("Live trading requires MOVESTOP_API_KEY and MOVESTOP_SECRET_KEY (or exchange.api_key/secret_key)")
    return client_cls(cfg.api_key, cfg.secret_key, cfg.host, timeout=cfg.request_timeout)


def health_payload(tracker: PositionTracker) -> Dict[str, object]:
    snapshot = tracker.snapshot()
    return {
        "status": "ok",
        "exchange": snapshot["exchange"],
        "dry_run": snapshot["dry_run"],
        "last_tick": snapshot["last_tick"],
        "positions": snapshot["positions"],
        "ledger": snapshot["ledger"],
    }


def create_http_handler(tracker: PositionTracker):
    class Handler(BaseHTTPRequestHandler):
        def _json(self, code: int, payload: Dict[str, object]) -> None:
            body = json.dumps(payload, ensure_ascii=False).encode()
            self.send_response(code)
            self.send_header("Access-Control-Allow-Origin", "*")
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format: str, *args) -> None:  # noqa: A003
            return

        def do_GET(self) -> None:  # noqa: N802
            parsed = urlparse(self.path)
            if parsed.path == "/health":
                self._json(200, health_payload(tracker))
                return
            self._json(404, {"error": "not found"})

    return Handler


def start_http_server(tracker: PositionTracker, port: int) -> Optional[ThreadingHTTPServer]:
    if port <= 0:
        return None
    handler = create_http_handler(tracker)
    httpd = ThreadingHTTPServer(("", port), handler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    logging.info("Status server listening on http://0.0.0.0:%s", port)
    return httpd


def init_with_retry(tracker: PositionTracker, retry_seconds: float,
                    stop_event: Optional[threading.Event] = None) -> None:
    while True:
        try:
            tracker.init()
            return
        except ExchangeError as exc:
            logging.error("Unable to load symbols, retrying in %.0fs: %s", retry_seconds, exc)
        if stop_event is not None and stop_event.wait(retry_seconds):
            return
        if stop_event is None:
            time.sleep(retry_seconds)


def run_loop(tracker: PositionTracker, poll_seconds: float, max_ticks: Optional[int] = None,
             stop_event: Optional[threading.Event] = None) -> int:
    ticks = 0
    while max_ticks is None or ticks < max_ticks:
        if stop_event is not None and stop_event.is_set():
            break
        try:
            report = tracker.on_tick()
            logging.info("Tick %d: %s", ticks + 1, report.summary())
        except Exception as exc:  # pylint: disable=broad-except
            logging.exception("Unexpected error: %s", exc)
        ticks += 1
        if max_ticks is not None and ticks >= max_ticks:
            break
        if stop_event is not None:
            if stop_event.wait(poll_seconds):
                break
        else:
            time.sleep(poll_seconds)
    return ticks


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Run the trailing stop-loss tracker against a spot exchange")
    parser.add_argument("--config", default="config.yaml")
    parser.add_argument("--dry-run", action="store_true", help="Log liquidations without sending orders")
    parser.add_argument("--poll-seconds", type=float, default=None,
                        help="Seconds between ticks (defaults to interval_seconds from the config)")
    parser.add_argument(
        "--http-port",
        type=int,
        default=8080,
        help="Port for the /health status server (set 0 to disable)",
    )
    parser.add_argument("--out-dir", default="", help="Write trades.csv/summary.json here on shutdown")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.INFO),
                        format="%(asctime)s [%(levelname)s] %(message)s")

    try:
        cfg: AppConfig = load_app_config(args.config)
        client = build_client(cfg.exchange)
    except ConfigError as exc:
        raise SystemExit(f"Config error: {exc}")

    poll_seconds = args.poll_seconds if args.poll_seconds is not None else cfg.tracker.interval_seconds
    tracker = PositionTracker(client, cfg.tracker, dry_run=args.dry_run)
    logging.info("Starting %s tracker (dry_run=%s, quote=%s, stop=%s)", client.name, args.dry_run,
                 cfg.tracker.quote, cfg.stoploss)

    httpd = None
    try:
        init_with_retry(tracker, poll_seconds)
        httpd = start_http_server(tracker, args.http_port)
        run_loop(tracker, poll_seconds)
    except KeyboardInterrupt:
        logging.info("Interrupted, total_profit: %.2f over %d records", tracker.ledger.total_profit,
                     len(tracker.ledger))
    finally:
        if httpd is not None:
            httpd.shutdown()
        if args.out_dir:
            summary = save_ledger(args.out_dir, tracker.ledger)
            logging.info("Ledger written to %s: %s", args.out_dir, summary)


if __name__ == "__main__":
    main()
