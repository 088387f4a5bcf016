#!/usr/bin/env python3
"""Field Capture command line client.

Runs the capture wizard without a UI and gives access to the upload history.

Usage:
    python3 field_wizard.py testers
    python3 field_wizard.py locate [--lat 37.77 --lng -122.41]
    python3 field_wizard.py submit --tester tester.a@example.com \\
        deviceId=D20A03670 deviceType=EVT testCycle="GA 2 - RC1" \\
        environment=urban roadType=freeway --video clip.mp4
    python3 field_wizard.py submit --tester tester.a@example.com ... --later
    python3 field_wizard.py history
    python3 field_wizard.py show test-1700000000000-abc123xyz
    python3 field_wizard.py edit test-1700000000000-abc123xyz firmware=v2
    python3 field_wizard.py delete test-1700000000000-abc123xyz
"""
import argparse
import asyncio
import json
import logging
import sys

import httpx

from api_client import FieldCaptureClient
from client_errors import FieldCaptureError, ValidationError
from client_settings import ClientSettings
from field_types import load_testers, parse_metadata_assignments
from location_resolver import (
    LocationResolver,
    NominatimGeocoder,
    StaticPositionSource,
    UnavailablePositionSource,
    default_ip_locators,
)
from session_store import SessionStore
from video_ingest import VideoIngest
from wizard import Screen, WizardController

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def build_resolver(settings: ClientSettings, api, http: httpx.AsyncClient, args) -> LocationResolver:
    if getattr(args, "lat", None) is not None and getattr(args, "lng", None) is not None:
        source = StaticPositionSource(args.lat, args.lng, accuracy=args.accuracy or 0.0)
    else:
        source = UnavailablePositionSource()
    return LocationResolver(
        source,
        NominatimGeocoder(http, settings.nominatim_url, settings.user_agent),
        default_ip_locators(api, http, timeout=settings.ip_lookup_timeout_seconds),
        gps_timeout=settings.gps_timeout_seconds,
    )


def pick_tester(testers: list, wanted: str):
    for tester in testers:
        if wanted in (tester.email, tester.user_name):
            return tester
    if wanted.isdigit() and 0 < int(wanted) <= len(testers):
        return testers[int(wanted) - 1]
    raise ValidationError(f"Unknown tester: {wanted}")


def print_state_messages(controller: WizardController) -> None:
    state = controller.state
    if state.notice:
        print(state.notice)
    if state.error:
        print(f"ERROR: {state.error}", file=sys.stderr)


def require_screen(controller: WizardController, screen: Screen) -> None:
    if controller.state.screen != screen:
        raise FieldCaptureError(controller.state.error or f"Stopped on {controller.state.screen.value}")


async def cmd_testers(settings, args) -> int:
    for i, tester in enumerate(load_testers(settings.testers_file), start=1):
        print(f"{i:>3}  {tester.user_name:<30} {tester.email}")
    return 0


async def cmd_locate(settings, args) -> int:
    async with FieldCaptureClient.from_settings(settings) as api, httpx.AsyncClient() as http:
        resolver = build_resolver(settings, api, http, args)
        fix = await resolver.acquire()
    print(json.dumps(fix.to_wire(), indent=2))
    if resolver.message:
        print(resolver.message)
    if resolver.remediation:
        print(resolver.remediation, file=sys.stderr)
    return 0


async def cmd_submit(settings, args) -> int:
    testers = load_testers(settings.testers_file)
    updates = parse_metadata_assignments(args.fields)

    async with FieldCaptureClient.from_settings(settings) as api, httpx.AsyncClient() as http:
        controller = WizardController(
            api,
            build_resolver(settings, api, http, args),
            VideoIngest(),
            SessionStore(settings.session_file),
            testers=testers,
        )
        await controller.boot()
        if controller.state.screen == Screen.USER_INFO:
            await controller.select_user(pick_tester(testers, args.tester))
        require_screen(controller, Screen.DASHBOARD)

        test_id = controller.start_new_test()
        await controller.capture_location()
        if args.city or args.state:
            controller.set_manual_location(city=args.city, state=args.state)
        print_state_messages(controller)
        controller.confirm_location()
        require_screen(controller, Screen.METADATA_FORM)

        controller.edit_metadata(**updates)
        await controller.submit_metadata()
        require_screen(controller, Screen.VIDEO_UPLOAD)

        if args.later:
            controller.skip_videos()
        else:
            controller.choose_videos(args.video)
            print_state_messages(controller)
            controller.continue_to_review()
        require_screen(controller, Screen.REVIEW_SUBMIT)

        if not await controller.submit():
            print_state_messages(controller)
            return 1
        print_state_messages(controller)
    print(test_id)
    return 0


async def cmd_history(settings, args) -> int:
    async with FieldCaptureClient.from_settings(settings) as api:
        tests = await api.list_tests()
    for test in tests:
        meta = test.metadata
        print(
            f"{test.test_id:<32} {test.status:<10} {meta.date:<11} {meta.device_id:<10} "
            f"{test.geo_location.city}, {test.geo_location.state}  videos={len(test.all_videos)}"
        )
    return 0


async def cmd_show(settings, args) -> int:
    async with FieldCaptureClient.from_settings(settings) as api:
        test = await api.get_test(args.test_id)
    print(json.dumps(test.to_wire(), indent=2))
    return 0


async def cmd_edit(settings, args) -> int:
    updates = parse_metadata_assignments(args.fields)
    async with FieldCaptureClient.from_settings(settings) as api, httpx.AsyncClient() as http:
        controller = WizardController(
            api,
            build_resolver(settings, api, http, args),
            VideoIngest(),
            SessionStore(settings.session_file),
        )
        await controller.boot()
        if controller.state.screen != Screen.DASHBOARD:
            raise FieldCaptureError("No tester session on this device; run submit first")
        await controller.open_history()
        if not controller.edit_from_history(args.test_id):
            print_state_messages(controller)
            return 1
        controller.edit_metadata(**updates)
        ok = await controller.submit_metadata()
        print_state_messages(controller)
    return 0 if ok else 1


async def cmd_delete(settings, args) -> int:
    async with FieldCaptureClient.from_settings(settings) as api:
        await api.delete_test(args.test_id)
    print(f"Deleted {args.test_id}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Field Capture client")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("testers", help="List the testers allowed to submit")

    def add_location_args(p):
        p.add_argument("--lat", type=float, help="Latitude from an external GPS")
        p.add_argument("--lng", type=float, help="Longitude from an external GPS")
        p.add_argument("--accuracy", type=float, help="GPS accuracy in meters")

    locate = sub.add_parser("locate", help="Resolve the current location")
    add_location_args(locate)

    submit = sub.add_parser("submit", help="Capture and submit a new test")
    submit.add_argument("--tester", required=True, help="Tester email, name or list position")
    add_location_args(submit)
    submit.add_argument("--city", help="Override the resolved city")
    submit.add_argument("--state", help="Override the resolved state")
    submit.add_argument("--video", action="append", default=[], help="Video file (repeatable)")
    submit.add_argument("--later", action="store_true", help="Submit without video; upload later")
    submit.add_argument("fields", nargs="*", help="Metadata as key=value")

    sub.add_parser("history", help="List submitted tests, newest first")

    show = sub.add_parser("show", help="Print one test as JSON")
    show.add_argument("test_id")

    edit = sub.add_parser("edit", help="Change metadata of a submitted test")
    edit.add_argument("test_id")
    edit.add_argument("fields", nargs="+", help="Metadata as key=value")

    delete = sub.add_parser("delete", help="Delete a test and its videos")
    delete.add_argument("test_id")

    return parser


COMMANDS = {
    "testers": cmd_testers,
    "locate": cmd_locate,
    "submit": cmd_submit,
    "history": cmd_history,
    "show": cmd_show,
    "edit": cmd_edit,
    "delete": cmd_delete,
}


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "submit" and not args.later and not args.video:
        print("ERROR: give at least one --video or use --later", file=sys.stderr)
        return 2

    settings = ClientSettings()
    if args.command != "testers":
        settings.warn_if_incomplete()

    try:
        return asyncio.run(COMMANDS[args.command](settings, args))
    except FieldCaptureError as e:
        logger.debug(f"{args.command} failed", exc_info=True)
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
