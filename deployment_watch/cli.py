import argparse
import asyncio
import os
import re
import sys
import time

from .cancellation import CancellableWait
from .consumer import BuildEventConsumer, trim_text
from .errors import (
    BuildFailed, ConvergenceTimeout, DeploymentNotFound, ScaleRejected, SourceUnavailable, WaitCancelled
)
from .logger import get_logger, setup_logging
from .models import BuildSignal, ClientConfig, DeploymentState, MatchPolicy, VerifyConfig
from .poller import ConvergencePoller
from .scaling import build_constraints, parse_scale_args
from .source import HttpStatusSource

TICK = "✔"
TYPE_STATIC = "STATIC"
TYPE_BINARY = "BINARY"
DEFAULT_VERIFY_TIMEOUT_S = 120.0
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value):
    """ "500" (milliseconds), "500ms", "30s", "2m" or "1h" -> seconds"""
    match = re.fullmatch(r"\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*", value)
    if not match:
        raise ValueError(f"Invalid time string \"{value}\"")
    number, unit = match.groups()
    return float(number) * DURATION_UNITS[unit or "ms"]


def format_elapsed(seconds):
    if seconds < 1:
        return f"[{int(seconds * 1000)}ms]"
    if seconds < 60:
        return f"[{seconds:.0f}s]"
    return f"[{seconds / 60:.0f}m]"


def verify_deadline(args):
    return DEFAULT_VERIFY_TIMEOUT_S if args.verify_timeout is None else args.verify_timeout


def print_error(message):
    print(f"Error! {message}", file=sys.stderr)


def print_build_update(update):
    if update.signal == BuildSignal.BUILD_START:
        print("Building…")
    elif update.signal == BuildSignal.COMMAND:
        print(f"▲ {update.text}")
    elif update.signal in (BuildSignal.STDOUT, BuildSignal.STDERR):
        for line in update.text.split("\n"):
            print(re.sub(r"^> ", "", line))
    elif update.signal == BuildSignal.COMPLETED:
        print("Build completed")


async def verify_scale(source, deployment_id, constraints, config, abort_message):
    """Run the convergence poller with progress output. Returns False if aborted."""
    start = time.monotonic()
    print(f"Waiting for instances in {', '.join(constraints)} to match constraints")

    def on_converged(region_id, count, elapsed):
        print(f"{TICK} Verified {region_id} ({count}) {format_elapsed(elapsed)}")

    try:
        async with CancellableWait() as wait:
            await ConvergencePoller(source).wait_for_convergence(
                deployment_id, constraints, config, on_region_converged=on_converged, cancel=wait
            )
    except WaitCancelled:
        print(abort_message)
        return False

    print(f"Scale state verified {format_elapsed(time.monotonic() - start)}")
    return True


async def cmd_scale(args, source):
    try:
        dc_ids, minimum, maximum = parse_scale_args(args.scale_args)
    except ValueError as e:
        print_error(str(e))
        return 1

    deployment = await source.get_deployment(args.deployment)
    if deployment.type == TYPE_STATIC:
        print_error("Scale rules cannot be set on static deployments")
        return 1
    if deployment.state == DeploymentState.ERROR.value:
        print_error("Cannot scale a deployment in the ERROR state")
        return 1

    constraints = build_constraints(dc_ids, minimum, maximum)
    start = time.monotonic()
    await source.set_scale(deployment.uid, constraints)
    print(f"> Scale rules for {', '.join(dc_ids)} (min: {minimum}, max: {maximum}) "
          f"saved {format_elapsed(time.monotonic() - start)}")

    if deployment.type == TYPE_BINARY or args.no_verify:
        return 0

    config = VerifyConfig(deadline_s=verify_deadline(args),
                          poll_interval_s=args.interval)
    await verify_scale(source, deployment.uid, constraints, config,
                       "Verification aborted. Scale settings were saved")
    return 0


async def cmd_verify(args, source):
    deployment = await source.get_deployment(args.deployment)
    if not deployment.scale:
        print("No scale settings to verify")
        return 0
    config = VerifyConfig(deadline_s=verify_deadline(args),
                          poll_interval_s=args.interval)
    await verify_scale(source, deployment.uid, deployment.scale, config,
                       "Verification aborted. Scale settings are unchanged")
    return 0


async def cmd_watch(args, source):
    deployment = await source.get_deployment(args.deployment)
    if deployment.state == DeploymentState.READY.value:
        print("Deployment ready")
        return 0

    try:
        async with CancellableWait() as wait:
            await BuildEventConsumer().consume(
                source.stream_events(deployment.uid, follow=True),
                on_event=print_build_update, cancel=wait, deployment_id=deployment.uid,
            )
    except WaitCancelled:
        print("Stopped watching. The deployment keeps building remotely")
        return 0

    if not args.no_verify and deployment.scale:
        config = VerifyConfig(deadline_s=verify_deadline(args),
                              poll_interval_s=args.interval, policy=MatchPolicy.AT_LEAST_MIN)
        verified = await verify_scale(source, deployment.uid, deployment.scale, config,
                                      "Verification aborted. The deployment was built and its scale settings were saved")
        if not verified:
            return 0

    print("Deployment ready")
    return 0


def _event_metadata(event):
    if event.state:
        return event.state
    if event.payload.get("dc"):
        return f"({event.payload['dc']})"
    return trim_text(event.text).split("\n")[0]


async def cmd_inspect(args, source):
    deployment = await source.get_deployment(args.deployment)
    print()
    print("  Meta")
    print(f"    uid\t\t{deployment.uid}")
    print(f"    state\t{deployment.state}")
    print(f"    type\t{deployment.type}")
    print(f"    url\t\t{deployment.url}")
    print()
    if deployment.type == TYPE_STATIC:
        return 0

    exit_code = 0
    print("  Scale")
    try:
        snapshot = await source.get_snapshot(deployment.uid)
    except SourceUnavailable as e:
        print_error(f"Scale information unavailable: {e}")
        exit_code = 1
    else:
        print(f"    {'dc':<8}{'min':>8}{'max':>8}{'current':>10}")
        for region_id, observation in snapshot.items():
            constraint = deployment.scale.get(region_id)
            minimum = constraint.min if constraint else 0
            maximum = (constraint.max if constraint.max is not None else "auto") if constraint else 0
            print(f"    {region_id:<8}{minimum:>8}{maximum!s:>8}{observation.running_instance_count:>10}")
        print()

    print("  Events")
    try:
        async for event in source.stream_events(deployment.uid, follow=False):
            when = event.timestamp.isoformat() if event.timestamp else "-"
            print(f"    {when} {event.kind} {_event_metadata(event)}")
    except SourceUnavailable as e:
        print_error(f"Events unavailable: {e}")
        exit_code = 1
    print()
    return exit_code


COMMANDS = {
    "scale": cmd_scale,
    "verify": cmd_verify,
    "watch": cmd_watch,
    "inspect": cmd_inspect,
}


async def run_command(args, source):
    """Run one sub-command and map its outcome to an exit code"""
    logger = get_logger("cli")
    try:
        return await COMMANDS[args.cmd](args, source)
    except DeploymentNotFound as e:
        print_error(str(e))
    except ScaleRejected as e:
        print_error(str(e))
    except ConvergenceTimeout as e:
        print_error(f"Instance verification timed out {format_elapsed(e.elapsed_s)}")
        print(f"Unverified: {', '.join(sorted(e.unconverged))}")
    except BuildFailed as e:
        print_error("Build failed")
        print(f"Inspect the build logs with: deployment-watch inspect {e.deployment_id or args.deployment}")
    except SourceUnavailable as e:
        logger.debug("Source failure", exc_info=True)
        print_error(f"Could not reach the platform, try again: {e}")
    return 1


def _add_verify_options(parser, interval_default):
    parser.add_argument("--verify-timeout", type=parse_duration,
                        help="How long to wait for verification to complete [2m]")
    parser.add_argument("--interval", type=parse_duration, default=interval_default,
                        help="Time between instance checks")


def build_parser():
    parser = argparse.ArgumentParser(prog="deployment-watch",
                                     description="Watch deployment builds and verify instance scaling")
    parser.add_argument("--log-level", default="WARNING", type=str.upper, choices=LOG_LEVELS)
    parser.add_argument("-d", "--debug", action="store_true", help="Debug mode")
    parser.add_argument("--api-url", default=os.environ.get("DEPLOY_API_URL", ClientConfig.api_url))
    parser.add_argument("--token", default=os.environ.get("DEPLOY_TOKEN"))
    parser.add_argument("-T", "--team", default=os.environ.get("DEPLOY_TEAM"))
    sub = parser.add_subparsers(dest="cmd", required=True)

    scale = sub.add_parser("scale", help="Set scale rules and verify the instance count")
    scale.add_argument("deployment")
    scale.add_argument("scale_args", nargs="+", metavar="<dc> [min] [max]")
    scale.add_argument("-n", "--no-verify", action="store_true",
                       help="Skip waiting until the instance count meets the constraints")
    _add_verify_options(scale, 0.5)

    verify = sub.add_parser("verify", help="Verify the current scale rules of a deployment")
    verify.add_argument("deployment")
    _add_verify_options(verify, 0.5)

    watch = sub.add_parser("watch", help="Follow a deployment build until it is ready")
    watch.add_argument("deployment")
    watch.add_argument("-n", "--no-verify", action="store_true")
    _add_verify_options(watch, 1.0)

    inspect = sub.add_parser("inspect", help="Show deployment scale and events")
    inspect.add_argument("deployment")
    return parser


async def _run(args, config):
    async with HttpStatusSource(config) as source:
        return await run_command(args, source)


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if getattr(args, "no_verify", False) and getattr(args, "verify_timeout", None) is not None:
        parser.error("The options --verify-timeout and --no-verify cannot be used at once")

    setup_logging("DEBUG" if args.debug else args.log_level)
    config = ClientConfig(api_url=args.api_url, token=args.token, team_id=args.team)
    return asyncio.run(_run(args, config))


if __name__ == "__main__":
    sys.exit(main())
