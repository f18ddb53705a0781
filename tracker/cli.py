import argparse
import asyncio
import logging
import sys

from common.log import configure_logging
from common.prompt_modifiers import parse, serialize
from tracker.models import Job, JobKind, JobStatus
from tracker.tracker import POLL_TIMEOUT, JobTracker

logger = logging.getLogger(__name__)

# a poll sent just before the tracker's own limit may still be in flight
WAIT_TIMEOUT = POLL_TIMEOUT + 10


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m tracker.cli",
        description="Generate an image through the proxy and follow it to completion.",
    )
    parser.add_argument("prompt", help="prompt text, may already contain --ar/--s/--sref")
    parser.add_argument("--base-url", default="http://localhost:8000/api", help="proxy API root")
    parser.add_argument("--ar", dest="aspect_ratio", default="", help="aspect ratio, e.g. 16:9")
    parser.add_argument("--s", dest="stylization", type=int, default=0, help="stylization 0-1000")
    parser.add_argument("--sref", dest="style_reference", default="", help="style reference id")
    parser.add_argument(
        "--upscale", type=int, action="append", default=[], metavar="N",
        help="upscale image N (1-4) once generated; repeatable",
    )
    parser.add_argument(
        "--variation", type=int, action="append", default=[], metavar="N",
        help="create a variation of image N (1-4) once generated; repeatable",
    )
    return parser


def build_prompt(args: argparse.Namespace) -> str:
    """Merges modifiers given as options over the ones inline in the prompt."""
    parsed = parse(args.prompt)
    modifiers = parsed.modifiers
    return serialize(
        parsed.base_prompt,
        aspect_ratio=args.aspect_ratio or modifiers.aspect_ratio,
        stylization=args.stylization or modifiers.stylization,
        style_reference=args.style_reference or modifiers.style_reference,
    )


def describe(job: Job) -> str:
    if job.status == JobStatus.COMPLETED:
        return f"[{job.kind.value}] completed: {job.image_url}"
    if job.status == JobStatus.FAILED:
        return f"[{job.kind.value}] failed at {job.progress}%: {job.error}"
    return f"[{job.kind.value}] pending ({job.progress}%)"


async def wait_for_job(tracker: JobTracker, job_id: str) -> Job:
    """Waits for a terminal state; gives up after WAIT_TIMEOUT and returns the job as it stands."""
    try:
        return await tracker.wait(job_id, timeout=WAIT_TIMEOUT)
    except asyncio.TimeoutError:
        logger.error("Gave up waiting for job %s after %ss", job_id, WAIT_TIMEOUT)
        return tracker.get(job_id)


async def run(args: argparse.Namespace) -> int:
    prompt = build_prompt(args)
    async with JobTracker(base_url=args.base_url) as tracker:
        job = await tracker.submit(prompt)
        job = await wait_for_job(tracker, job.id)
        print(describe(job))
        if job.status != JobStatus.COMPLETED:
            return 1

        requests = [(JobKind.UPSCALE, c) for c in args.upscale]
        requests += [(JobKind.VARIATION, c) for c in args.variation]
        children = await asyncio.gather(
            *(tracker.request_derivative(job.id, kind, choice) for kind, choice in requests)
        )
        if job.action_error:
            print(f"follow-up request failed: {job.action_error}")

        failed = False
        for child in children:
            if child is None:
                failed = True
                continue
            child = await wait_for_job(tracker, child.id)
            print(f"  {child.prompt}: {describe(child)}")
            failed = failed or child.status != JobStatus.COMPLETED
        return 1 if failed else 0


def main(argv=None) -> int:
    configure_logging()
    args = build_parser().parse_args(argv)
    for choice in args.upscale + args.variation:
        if choice not in range(1, 5):
            print(f"invalid choice {choice}: must be 1-4", file=sys.stderr)
            return 2
    logger.info("Tracker started...")
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
