"""Command line interface for enrolling students onto an access-control terminal.

Examples:
    hikenroll --address 192.168.1.64 -u admin connect
    hikenroll users
    hikenroll enroll --roster class-1a.csv
    hikenroll delete 1A2B3C4D 5E6F7A8B
    hikenroll capture --output face.jpg --enroll "Jane Doe"

Credentials fall back to HIKENROLL_DEVICE_ADDRESS / _USERNAME / _PASSWORD.
"""

from __future__ import annotations

import argparse
import getpass
import json
import sys
from pathlib import Path
from typing import Any, List, Optional

from loguru import logger
from pydantic import BaseModel, ValidationError

from . import __version__
from .auth import DeviceCredentials
from .config import get_config_manager, setup_logging
from .core import EnrollmentService, SignalHandler
from .enroll import load_roster
from .errors import AuthenticationError, HikEnrollError

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_USAGE = 2
EXIT_AUTH = 3


def _print_json(data: Any) -> None:
    if isinstance(data, BaseModel):
        data = data.model_dump(by_alias=True, mode="json")
    print(json.dumps(data, indent=2, ensure_ascii=False))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hikenroll",
        description="Student face enrollment for ISAPI access-control terminals",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--address", help="Device address, e.g. 192.168.1.64 or 10.0.0.5:8080")
    parser.add_argument("-u", "--username", help="Device username")
    parser.add_argument("-p", "--password", help="Device password (prompted when missing)")
    parser.add_argument("--log-level", help="Log level (DEBUG, INFO, WARNING, ...)")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("connect", help="Show device info, user preview and capacity")
    sub.add_parser("users", help="List every user enrolled on the device")

    en = sub.add_parser("enroll", help="Enroll students from a roster file")
    en.add_argument("--roster", required=True, type=Path, help="JSON list or CSV (studentName,className,photoUrl[,studentId])")

    de = sub.add_parser("delete", help="Delete users by employee number")
    de.add_argument("employee_nos", nargs="+", metavar="EMPLOYEE_NO")

    ca = sub.add_parser("capture", help="Capture a face with the device camera")
    ca.add_argument("--output", required=True, type=Path, help="Where to write the JPEG")
    ca.add_argument("--enroll", metavar="NAME", help="Also enroll the captured face under this name")
    ca.add_argument("--class-name", default="", help="Class label used with --enroll")

    return parser


def _credentials(args: argparse.Namespace) -> DeviceCredentials:
    config = get_config_manager().get_config()
    address = args.address or config.device_address
    username = args.username or config.device_username or "admin"
    password = args.password or config.device_password
    if not address:
        raise ValueError("No device address given (--address or HIKENROLL_DEVICE_ADDRESS)")
    if not password:
        password = getpass.getpass(f"Password for {username}@{address}: ")
    return DeviceCredentials(address=address, username=username, password=password)


def _run(args: argparse.Namespace, service: EnrollmentService, credentials: DeviceCredentials) -> int:
    if args.command == "connect":
        _print_json(service.connect(credentials))
        return EXIT_OK

    if args.command == "users":
        users = service.list_users(credentials)
        _print_json([u.model_dump(by_alias=True) for u in users])
        return EXIT_OK

    if args.command == "enroll":
        students = load_roster(args.roster)
        handler = SignalHandler()
        try:
            report = service.batch_enroll(
                credentials,
                students,
                abort=handler.abort_event,
                progress=lambda done, total, r: logger.info(f"[{done}/{total}] {r.student_name}: {'ok' if r.success else r.error}"),
            )
        finally:
            handler.restore()
        _print_json(report)
        logger.info(report.summary.message)
        return EXIT_OK if report.summary.fail_count == 0 and not report.aborted else EXIT_FAILURES

    if args.command == "delete":
        handler = SignalHandler()
        try:
            deletion = service.bulk_delete(credentials, args.employee_nos, abort=handler.abort_event)
        finally:
            handler.restore()
        _print_json(deletion)
        return EXIT_OK if deletion.summary.fail_count == 0 and not deletion.aborted else EXIT_FAILURES

    if args.command == "capture":
        jpeg = service.capture_face(credentials)
        args.output.write_bytes(jpeg)
        logger.info(f"Saved {len(jpeg)} bytes to {args.output}")
        if args.enroll:
            result = service.enroll_image(credentials, args.enroll, jpeg, class_name=args.class_name)
            _print_json(result)
            return EXIT_OK if result.success else EXIT_FAILURES
        return EXIT_OK

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    config = get_config_manager().load_config(args.address, args.username, args.password)
    if args.log_level:
        config.logging.level = args.log_level.upper()
    setup_logging(config)

    is_valid, errors = config.validate()
    if not is_valid:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        return EXIT_USAGE

    try:
        credentials = _credentials(args)
        service = EnrollmentService(config)
        return _run(args, service, credentials)
    except AuthenticationError as e:
        logger.error(f"❌ Invalid credentials for {e.address}")
        return EXIT_AUTH
    except (ValueError, ValidationError, OSError) as e:
        logger.error(f"❌ {e}")
        return EXIT_USAGE
    except HikEnrollError as e:
        logger.error(f"❌ {e}")
        return EXIT_FAILURES


if __name__ == "__main__":
    sys.exit(main())
