import asyncio

import httpx
import pytest

from tracker import cli
from tracker.cli import build_parser, build_prompt, describe, main
from tracker.models import Completed, Failed, Job, JobKind
from tracker.tracker import JobTracker


def prompt_for(*argv):
    return build_prompt(build_parser().parse_args(list(argv)))


def test_options_are_appended_in_order():
    assert prompt_for("a cat", "--sref", "moody", "--ar", "2:3", "--s", "100") == (
        "a cat --ar 2:3 --s 100 --sref moody"
    )


def test_options_override_inline_modifiers():
    assert prompt_for("a cat --ar 1:1 --s 20", "--ar", "16:9") == "a cat --ar 16:9 --s 20"


def test_plain_prompt_is_unchanged():
    assert prompt_for("a cat") == "a cat"


def test_describe():
    done = Job(id="1", prompt="p", state=Completed(url="https://x/y.png"))
    failed = Job(id="2", prompt="p", kind=JobKind.UPSCALE, state=Failed(reason="boom", progress=30))
    assert describe(done) == "[original] completed: https://x/y.png"
    assert describe(failed) == "[upscale] failed at 30%: boom"
    assert describe(Job(id="3", prompt="p")) == "[original] pending (0%)"


@pytest.mark.parametrize("flag", ["--upscale", "--variation"])
def test_rejects_bad_choice_before_any_request(flag, capsys):
    assert main(["a cat", flag, "7"]) == 2
    assert "invalid choice 7" in capsys.readouterr().err


@pytest.mark.anyio
async def test_slow_poll_past_wait_limit_is_reported_not_raised(monkeypatch, capsys):
    async def slow_proxy(request):
        if request.url.path == "/api/generate":
            return httpx.Response(200, json={"taskId": "h1", "hash": "h1"})
        await asyncio.sleep(5)
        return httpx.Response(200, json={"status": "waiting"})

    def tracker_with_slow_proxy(base_url):
        client = httpx.AsyncClient(transport=httpx.MockTransport(slow_proxy))
        return JobTracker(base_url=base_url, client=client)

    monkeypatch.setattr(cli, "WAIT_TIMEOUT", 0.05)
    monkeypatch.setattr(cli, "JobTracker", tracker_with_slow_proxy)

    args = build_parser().parse_args(["a cat", "--upscale", "1"])
    assert await cli.run(args) == 1
    assert "[original] pending (0%)" in capsys.readouterr().out
