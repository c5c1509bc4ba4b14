"""
app.py - Kiosk Command Line Interface
Builds the kiosk once from configuration and runs one workflow per command.

Usage:
  kiosk status
  kiosk enroll    --name "Alice Smith"
  kiosk reenroll  --name "Alice Smith"
  kiosk verify    --name alice
  kiosk identify
  kiosk list
  kiosk remove    --name "Alice Smith" [--local-only]

Configuration comes from KIOSK_* environment variables (see kiosk/config.py).
Without a reader SDK binding the kiosk runs on the simulated reader; use
--simulate-finger to choose which finger is "on the sensor".
"""

import sys
import argparse
import logging
from dataclasses import dataclass

from kiosk.capture import CaptureOrchestrator
from kiosk.config import KioskConfig
from kiosk.directory_client import DirectoryClient
from kiosk.errors import DeviceNotInitialized
from kiosk.progress import ProgressChannel, Worker, follow
from kiosk.reader import FingerprintReader, SimulatedReader
from kiosk.template_store import TemplateStore
from kiosk.workflow import EnrollmentWorkflow, IdentificationWorkflow

logger = logging.getLogger("kiosk")


@dataclass
class Kiosk:
    config: KioskConfig
    client: DirectoryClient
    store: TemplateStore
    orchestrator: CaptureOrchestrator
    identification: IdentificationWorkflow
    enrollment: EnrollmentWorkflow
    progress: ProgressChannel

    def close(self):
        self.orchestrator.close()
        self.client.close()


def build_kiosk(config: KioskConfig, reader: FingerprintReader) -> Kiosk:
    """Construct every component once and wire them together."""
    progress = ProgressChannel()
    orchestrator = CaptureOrchestrator(reader, config.capture_timeout_ms, progress)
    store = TemplateStore(config.template_dir, hydrate=orchestrator.import_template,
                          passphrase=config.template_passphrase)
    for name, error in store.load():
        logger.warning(f"Template for '{name}' is unavailable: {error}")
    client = DirectoryClient.from_config(config)
    return Kiosk(
        config=config,
        client=client,
        store=store,
        orchestrator=orchestrator,
        identification=IdentificationWorkflow(
            client, store, orchestrator,
            threshold=config.match_threshold,
            strict_disambiguation=config.strict_disambiguation,
            progress=progress,
        ),
        enrollment=EnrollmentWorkflow(
            client, store, orchestrator,
            site_id=config.site_id,
            device_id=config.device_id,
            strict_disambiguation=config.strict_disambiguation,
            progress=progress,
        ),
        progress=progress,
    )


def _show(event):
    prefix = "✘" if event.detail.get("failed") else "·"
    logger.info(f"{prefix} {event.message}")


def _run(kiosk: Kiosk, worker: Worker, fn, *args) -> int:
    result = follow(worker.submit(fn, *args), kiosk.progress, _show)
    logger.info("-" * 55)
    if result.success:
        logger.info(f"🟢 {result.message}")
        return 0
    logger.warning(f"🔴 {result.message}")
    return 1


# ──────────────────────────────────────────────
# COMMANDS
# ──────────────────────────────────────────────
def cmd_status(kiosk: Kiosk, args, worker) -> int:
    device = "Reader: ready" if kiosk.orchestrator.is_initialized else "Reader: offline"
    logger.info(device)
    health = kiosk.client.check_health()
    logger.info(health)
    logger.info(f"Templates cached locally: {len(kiosk.store)}")
    return 0 if kiosk.orchestrator.is_initialized and health == "API: OK" else 1


def cmd_list(kiosk: Kiosk, args, worker) -> int:
    names = kiosk.store.names()
    if not names:
        print("No users enrolled locally.")
        return 0
    print("Locally enrolled users:")
    for name in names:
        binding = kiosk.store.get_binding(name)
        print(f"  • {name}" + (f"  (enrollment {binding})" if binding is not None else ""))
    return 0


def cmd_enroll(kiosk: Kiosk, args, worker) -> int:
    return _run(kiosk, worker, kiosk.enrollment.enrol, args.name)


def cmd_reenroll(kiosk: Kiosk, args, worker) -> int:
    return _run(kiosk, worker, kiosk.enrollment.reenrol, args.name)


def cmd_verify(kiosk: Kiosk, args, worker) -> int:
    return _run(kiosk, worker, kiosk.identification.verify, args.name)


def cmd_identify(kiosk: Kiosk, args, worker) -> int:
    return _run(kiosk, worker, kiosk.identification.identify_any)


def cmd_remove(kiosk: Kiosk, args, worker) -> int:
    return _run(kiosk, worker, kiosk.enrollment.remove, args.name, not args.local_only)


COMMANDS = {
    "status": cmd_status,
    "list": cmd_list,
    "enroll": cmd_enroll,
    "reenroll": cmd_reenroll,
    "verify": cmd_verify,
    "identify": cmd_identify,
    "remove": cmd_remove,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kiosk", description="Biometric time & attendance kiosk")
    parser.add_argument("--simulate-finger", default="default",
                        help="finger presented to the simulated reader")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="cmd")

    sub.add_parser("status", help="Show reader and API status")
    sub.add_parser("list", help="List locally enrolled users")
    for cmd, text in (("enroll", "Enrol a new user"),
                      ("reenroll", "Replace an existing user's template"),
                      ("verify", "Verify a user by name and clock them in/out")):
        p = sub.add_parser(cmd, help=text)
        p.add_argument("--name", required=True)
    sub.add_parser("identify", help="Identify whoever is at the reader (1:N)")
    p_remove = sub.add_parser("remove", help="Remove a user's enrolment")
    p_remove.add_argument("--name", required=True)
    p_remove.add_argument("--local-only", action="store_true",
                          help="keep the server enrollment, drop only the local template")
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(asctime)s] [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    if args.cmd not in COMMANDS:
        parser.print_help()
        return 2

    try:
        config = KioskConfig.from_env()
    except ValueError as e:
        logger.error(str(e))
        return 2

    kiosk = build_kiosk(config, SimulatedReader(finger=args.simulate_finger))
    try:
        try:
            kiosk.orchestrator.initialize()
        except DeviceNotInitialized as e:
            # Listing and status still work without a reader
            logger.error(str(e))
        with Worker() as worker:
            return COMMANDS[args.cmd](kiosk, args, worker)
    finally:
        kiosk.close()


if __name__ == "__main__":
    sys.exit(main())
