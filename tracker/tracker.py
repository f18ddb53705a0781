import asyncio
import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Set

import httpx

from common.job_schema import NextAction
from tracker.models import ActionKey, Completed, Failed, Job, JobKind, JobStatus, Pending

logger = logging.getLogger(__name__)

POLL_INTERVAL = 1  # seconds
POLL_TIMEOUT = 60  # seconds, measured from the first poll of a job
CHOICES = range(1, 5)

NON_TERMINAL_STATUSES = {"sent", "waiting", "progress", "queued"}


class ProxyError(Exception):
    """The proxy endpoint answered with an error or an unusable body."""


class JobTracker:
    """
    Submits prompts through the proxy API and polls each job to completion.

    Jobs are kept in display order: new generations go to the head of the
    list and upscales/variations sit right after the job they came from.
    Every pending job has at most one scheduled poll; the next poll is only
    scheduled once the previous one has been handled.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000/api",
        client: Optional[httpx.AsyncClient] = None,
        poll_interval: float = POLL_INTERVAL,
        poll_timeout: float = POLL_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout
        self._clock = clock
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=30)

        self._jobs: List[Job] = []
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._poll_started: Dict[str, float] = {}
        self._finished: Dict[str, asyncio.Event] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._loading: Dict[ActionKey, bool] = {}
        self._closed = False

    async def __aenter__(self) -> "JobTracker":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ---------- lookups ----------

    @property
    def jobs(self) -> List[Job]:
        return list(self._jobs)

    def get(self, job_id: str) -> Optional[Job]:
        return next((j for j in self._jobs if j.id == job_id), None)

    def children(self, parent_id: str) -> List[Job]:
        return [j for j in self._jobs if j.parent_id == parent_id]

    def is_loading(self, job_id: str, kind: JobKind, choice: int) -> bool:
        return self._loading.get(ActionKey(job_id, JobKind(kind), choice), False)

    def has_pending_poll(self, job_id: str) -> bool:
        return job_id in self._timers

    async def wait(self, job_id: str, timeout: Optional[float] = None) -> Job:
        """Blocks until the job is completed or failed."""
        finished = self._finished.get(job_id)
        if finished is None:
            raise ValueError(f"Unknown job: {job_id}")
        await asyncio.wait_for(finished.wait(), timeout)
        return self.get(job_id)

    # ---------- operations ----------

    async def submit(self, prompt: str) -> Job:
        job = self._add(Job(id=self._new_id(), prompt=prompt), index=0)
        logger.info("Submitting job %s: %s", job.id, prompt)
        try:
            data = await self._request("POST", "/generate", json={"prompt": prompt})
        except (ProxyError, httpx.HTTPError) as e:
            self._fail(job.id, str(e) or "Failed to generate image")
            return job

        hash = data.get("hash")
        if not hash:
            self._fail(job.id, data.get("error") or "No hash received from API")
            return job

        job.hash = hash
        self._schedule_poll(hash, job.id, delay=0)
        return job

    async def poll(self, hash: str, job_id: str) -> None:
        """Runs one status check for the job and decides what happens next."""
        job = self.get(job_id)
        if job is None or job.is_terminal or self._closed:
            return

        started = self._poll_started.setdefault(job_id, self._clock())
        if self._clock() - started > self.poll_timeout:
            self._fail(job_id, "Generation timeout")
            return

        try:
            data = await self._request("GET", "/status", params={"hash": hash})
        except (ProxyError, httpx.HTTPError) as e:
            if self._accepts_updates(job_id):
                self._fail(job_id, str(e) or "Network error")
            return

        if not self._accepts_updates(job_id):
            logger.debug("Discarding late status for %s", job_id)
            return

        status = data.get("status")
        logger.debug("Status update for %s: %s %s", job_id, status, data.get("progress"))
        result = data.get("result")
        result_url = result.get("url") if isinstance(result, dict) else None

        if status == "done" and result_url:
            self._complete(job_id, result_url, data.get("next_actions") or [], data.get("hash"))
        elif status == "error":
            self._fail(job_id, data.get("status_reason") or "Unknown error")
        elif status in NON_TERMINAL_STATUSES or status == "done":
            # "done" without a url yet is treated as still running
            self._update_progress(job_id, data.get("progress"))
            self._schedule_poll(hash, job_id)
        else:
            self._fail(job_id, f"Unexpected status: {status}")

    async def request_derivative(self, parent_id: str, kind: JobKind, choice: int) -> Optional[Job]:
        """
        Asks for an upscale or variation of one image of a completed job.

        Returns the new child job, or None when the parent cannot be used or
        the request failed. Failures are recorded on the parent's
        `action_error` and never change the parent's state.
        """
        kind = JobKind(kind)
        if kind == JobKind.ORIGINAL:
            raise ValueError("kind must be upscale or variation")
        if choice not in CHOICES:
            raise ValueError(f"choice must be between 1 and 4, got {choice}")

        parent = self.get(parent_id)
        if parent is None or not parent.hash:
            return None
        if parent.kind != JobKind.ORIGINAL or parent.status != JobStatus.COMPLETED:
            logger.warning("Job %s cannot be used for a %s", parent_id, kind.value)
            return None

        key = ActionKey(parent_id, kind, choice)
        self._loading[key] = True
        try:
            logger.info("Sending %s request for %s choice %d", kind.value, parent.hash, choice)
            data = await self._request(
                "POST", f"/{kind.value}", json={"hash": parent.hash, "choice": choice}
            )
            hash = data.get("hash")
            if not hash:
                raise ProxyError(data.get("error") or f"No hash received for {kind.value}")
        except (ProxyError, httpx.HTTPError) as e:
            logger.error("%s error for %s: %s", kind.value.capitalize(), parent_id, e)
            parent.action_error = str(e) or f"Failed to request {kind.value}"
            return None
        finally:
            self._loading[key] = False

        parent_index = self._index(parent_id)
        if parent_index is None or self._closed:
            return None
        if kind == JobKind.UPSCALE:
            prompt = f'Upscaled version {choice} of "{parent.prompt}"'
        else:
            prompt = f'Variation {choice} of "{parent.prompt}"'
        child = Job(
            id=self._new_id(),
            prompt=prompt,
            hash=hash,
            kind=kind,
            parent_id=parent_id,
            choice=choice,
        )
        self._add(child, index=parent_index + 1)
        self._schedule_poll(hash, child.id, delay=0)
        return child

    async def close(self) -> None:
        """Cancels every scheduled and running poll; later responses are ignored."""
        self._closed = True
        for job_id in list(self._timers):
            self._clear_timer(job_id)
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._owns_client:
            await self._client.aclose()

    # ---------- internals ----------

    @staticmethod
    def _new_id() -> str:
        return uuid.uuid4().hex

    def _index(self, job_id: str) -> Optional[int]:
        return next((i for i, j in enumerate(self._jobs) if j.id == job_id), None)

    def _add(self, job: Job, index: int) -> Job:
        self._jobs.insert(index, job)
        self._finished[job.id] = asyncio.Event()
        return job

    def _accepts_updates(self, job_id: str) -> bool:
        job = self.get(job_id)
        return not self._closed and job is not None and not job.is_terminal

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        response = await self._client.request(method, f"{self.base_url}{path}", **kwargs)
        try:
            data = response.json()
        except ValueError as e:
            raise ProxyError(f"Invalid response from {path} (HTTP {response.status_code})") from e
        if not isinstance(data, dict):
            raise ProxyError(f"Invalid response from {path} (HTTP {response.status_code})")
        if response.is_error:
            raise ProxyError(data.get("error") or f"HTTP error! status: {response.status_code}")
        return data

    def _schedule_poll(self, hash: str, job_id: str, delay: Optional[float] = None) -> None:
        self._clear_timer(job_id)
        loop = asyncio.get_running_loop()
        self._timers[job_id] = loop.call_later(
            self.poll_interval if delay is None else delay,
            self._start_poll,
            hash,
            job_id,
        )

    def _start_poll(self, hash: str, job_id: str) -> None:
        self._timers.pop(job_id, None)
        task = asyncio.ensure_future(self.poll(hash, job_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _clear_timer(self, job_id: str) -> None:
        timer = self._timers.pop(job_id, None)
        if timer is not None:
            timer.cancel()

    def _update_progress(self, job_id: str, progress: Any) -> None:
        if not isinstance(progress, (int, float)) or isinstance(progress, bool):
            return
        job = self.get(job_id)
        value = min(max(round(progress), 0), 100)
        # progress never moves backwards while a job is pending
        if value > job.progress:
            job.state = Pending(progress=value)

    def _complete(self, job_id: str, url: str, actions: list, hash: Optional[str]) -> None:
        job = self.get(job_id)
        job.state = Completed(
            url=url, actions=[NextAction(**a) for a in actions if isinstance(a, dict) and "type" in a]
        )
        if hash:
            job.hash = hash
        self._finish(job_id)
        logger.info("Job %s completed: %s", job_id, url)

    def _fail(self, job_id: str, reason: str) -> None:
        job = self.get(job_id)
        if job is None or job.is_terminal:
            return
        job.state = Failed(reason=reason, progress=job.progress)
        self._finish(job_id)
        logger.error("Job %s failed: %s", job_id, reason)

    def _finish(self, job_id: str) -> None:
        self._clear_timer(job_id)
        self._poll_started.pop(job_id, None)
        self._finished[job_id].set()
