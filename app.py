from __future__ import annotations

import argparse
import os
import sys

import uvicorn

from gdpr.core.admin import GdprAdmin
from gdpr.core.config.manager import ConfigManager
from gdpr.core.config.paths import ConfigFsPaths
from gdpr.core.errors import ConfigError
from gdpr.core.events import AuditLogger, EventBus
from gdpr.core.logger import setup_logging
from gdpr.core.scheduler import ThreadScheduler
from gdpr.web.api import create_app


def main() -> int:
    ap = argparse.ArgumentParser(description="GDPR admin workflows (consent, requests, breach notification)")
    ap.add_argument("--root", default=".", help="Directory holding config/, logs/ and runtime/.")
    ap.add_argument("--host", default=None, help="Bind host (overrides config web.bind_host).")
    ap.add_argument("--port", type=int, default=None, help="Bind port (overrides config web.port).")
    args = ap.parse_args()

    fs = ConfigFsPaths(os.path.abspath(args.root))
    logger = setup_logging(fs.logs_dir)

    config = ConfigManager(fs=fs, logger=logger)
    try:
        cfg = config.load()
    except ConfigError as e:
        logger.error(f"Startup aborted: {e.user_message}")
        return 2

    event_bus = EventBus(logger=logger)
    events_log = AuditLogger(path=os.path.join(fs.logs_dir, "events.jsonl"))
    event_bus.subscribe("*", lambda ev: events_log.log(str(ev.trace_id or ""), ev.event_type, ev.payload), priority=100)

    scheduler = ThreadScheduler(logger=logger, event_bus=event_bus)
    admin = GdprAdmin.from_config(config, scheduler=scheduler, event_bus=event_bus, logger=logger)
    admin.start()

    if admin.settings.privacy_policy_page_missing():
        logger.warning("You must select a Privacy Policy Page (setting privacy_policy_page).")

    if not cfg.web.enabled:
        logger.info("Web surface disabled in config; nothing to serve.")
        admin.stop()
        return 0

    host = args.host or cfg.web.bind_host
    port = int(args.port or cfg.web.port)
    logger.info(f"Serving GDPR admin API on {host}:{port}")
    try:
        uvicorn.run(create_app(admin, logger=logger), host=host, port=port, log_level="info")
    finally:
        admin.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
