import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from .errors import GenerationCancelled, GenerationFailure
from .models import TABLET_INDEX_OFFSET, DeviceFamily, GenerationKey, ImagePrompt


logger = logging.getLogger(__name__)

# How often the collector wakes up to notice a cancellation.
_POLL_INTERVAL = 0.05


class GenerationClient(Protocol):
    def generate(
        self,
        prompt: ImagePrompt,
        reference: Optional[bytes] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> bytes:
        ...


@dataclass(frozen=True)
class ProgressEvent:
    key: GenerationKey
    data: bytes
    completed: int
    total: int

    @property
    def fraction(self) -> float:
        return self.completed / self.total if self.total else 1.0

    @property
    def message(self) -> str:
        return f"Generated {self.completed}/{self.total} screenshots"


ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class GenerationResult:
    phone: Dict[int, bytes] = field(default_factory=dict)
    tablet: Dict[int, bytes] = field(default_factory=dict)
    requested: int = 0
    attempts: int = 0
    error: Optional[GenerationFailure] = None

    @property
    def succeeded(self) -> int:
        return len(self.phone) + len(self.tablet)

    @property
    def is_empty(self) -> bool:
        return self.succeeded == 0

    def for_family(self, family: DeviceFamily) -> Dict[int, bytes]:
        return self.tablet if family is DeviceFamily.TABLET else self.phone

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


class _ResultAggregator:
    """
    Single writer for the result maps of one batch.

    Every delivery, and the progress callback it triggers, runs under one lock.
    Deliveries arriving after cancellation are dropped.
    """

    def __init__(
        self,
        total: int,
        on_progress: Optional[ProgressCallback],
        cancel_event: threading.Event,
    ) -> None:
        self._total = total
        self._on_progress = on_progress
        self._cancel_event = cancel_event
        self._lock = threading.Lock()
        self._maps: Dict[DeviceFamily, Dict[int, bytes]] = {
            DeviceFamily.PHONE: {},
            DeviceFamily.TABLET: {},
        }

    def deliver(self, key: GenerationKey, data: bytes) -> bool:
        with self._lock:
            if self._cancel_event.is_set():
                return False
            self._maps[key.family][key.index] = data
            completed = self._count()
            if self._on_progress is not None:
                self._on_progress(ProgressEvent(key, data, completed, self._total))
            return True

    @property
    def count(self) -> int:
        with self._lock:
            return self._count()

    def snapshot(self) -> Tuple[Dict[int, bytes], Dict[int, bytes]]:
        with self._lock:
            return dict(self._maps[DeviceFamily.PHONE]), dict(self._maps[DeviceFamily.TABLET])

    def _count(self) -> int:
        return len(self._maps[DeviceFamily.PHONE]) + len(self._maps[DeviceFamily.TABLET])


class GenerationOrchestrator:
    """
    Fans a prompt set out to the generation client and collects the results.

    - at most `max_concurrency` calls run at once
    - results are recorded as each call completes, so a failing sibling never
      loses images that were already delivered
    - a batch that delivers nothing is retried once after `retry_delay`
    - `cancel()` stops queued work, interrupts the retry delay and makes the
      run raise `GenerationCancelled`; it stays in effect until `reset()`
    """

    def __init__(
        self,
        client: GenerationClient,
        max_concurrency: int = 4,
        retry_delay: float = 2.0,
        max_batch_retries: int = 1,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.client = client
        self.max_concurrency = max_concurrency
        self.retry_delay = retry_delay
        self.max_batch_retries = max_batch_retries
        self._cancel_event = threading.Event()

    def cancel(self) -> None:
        self._cancel_event.set()

    def reset(self) -> None:
        """Clear a previous cancellation before starting a new run."""
        self._cancel_event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def generate_all(
        self,
        phone_prompts: Sequence[ImagePrompt],
        tablet_prompts: Sequence[ImagePrompt] = (),
        screenshots: Optional[Mapping[GenerationKey, bytes]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> GenerationResult:
        """
        Generate a background for every prompt.

        Phone prompts are requested first, then tablet prompts. Returns the
        collected maps; `result.error` is set when images are missing after the
        retry policy has run. Raises `GenerationCancelled` if cancelled, including
        a `cancel()` issued before the call; `reset()` clears it.
        """
        cancel_event = self._cancel_event
        if cancel_event.is_set():
            raise GenerationCancelled()

        requests = [_as_family(p, DeviceFamily.PHONE) for p in phone_prompts]
        requests += [_as_family(p, DeviceFamily.TABLET) for p in tablet_prompts]
        total = len(requests)
        screenshots = screenshots or {}

        if total == 0:
            return GenerationResult()

        attempt = 0
        while True:
            aggregator = _ResultAggregator(total, on_progress, cancel_event)
            logger.info(
                "Generating %d backgrounds (%d phone, %d tablet), attempt %d",
                total, len(phone_prompts), len(tablet_prompts), attempt + 1,
            )
            error = self._run_batch(requests, screenshots, aggregator, cancel_event)

            if cancel_event.is_set():
                raise GenerationCancelled()

            phone, tablet = aggregator.snapshot()
            result = GenerationResult(phone=phone, tablet=tablet, requested=total, attempts=attempt + 1)

            if error is None:
                return result

            if not result.is_empty:
                result.error = GenerationFailure("partial", result.succeeded, total, error)
                logger.warning("%s", result.error)
                return result

            if attempt >= self.max_batch_retries:
                result.error = GenerationFailure("total", 0, total, error)
                logger.error("%s", result.error)
                return result

            attempt += 1
            logger.warning(
                "All %d generations failed (%s); retrying batch in %.1fs (retry %d/%d)",
                total, error, self.retry_delay, attempt, self.max_batch_retries,
            )
            if cancel_event.wait(self.retry_delay):
                raise GenerationCancelled()

    def _run_batch(
        self,
        requests: List[ImagePrompt],
        screenshots: Mapping[GenerationKey, bytes],
        aggregator: _ResultAggregator,
        cancel_event: threading.Event,
    ) -> Optional[Exception]:
        """Run one batch; returns the first failure, if any."""
        first_error: Optional[Exception] = None
        executor = ThreadPoolExecutor(
            max_workers=min(self.max_concurrency, len(requests)),
            thread_name_prefix="appshots-gen",
        )
        futures: Dict[Future, GenerationKey] = {}
        cancelled = False
        try:
            for prompt in requests:
                future = executor.submit(
                    self._generate_one, prompt, screenshots.get(prompt.key), aggregator, cancel_event
                )
                futures[future] = prompt.key

            pending = set(futures)
            while pending:
                done, pending = wait(pending, timeout=_POLL_INTERVAL, return_when=FIRST_COMPLETED)
                if cancel_event.is_set():
                    cancelled = True
                    break
                for future in done:
                    key = futures[future]
                    try:
                        future.result()
                    except GenerationCancelled:
                        cancelled = True
                    except Exception as e:
                        logger.warning(
                            "Background for %s screen %d failed: %s", key.family.value, key.index, e
                        )
                        if first_error is None:
                            first_error = e
        finally:
            # In-flight calls cannot be interrupted; their late deliveries are dropped.
            executor.shutdown(wait=not cancelled, cancel_futures=cancelled)

        return first_error

    def _generate_one(
        self,
        prompt: ImagePrompt,
        reference: Optional[bytes],
        aggregator: _ResultAggregator,
        cancel_event: threading.Event,
    ) -> None:
        if cancel_event.is_set():
            raise GenerationCancelled()
        data = self.client.generate(prompt, reference, cancel_event)
        aggregator.deliver(prompt.key, data)


def _as_family(prompt: ImagePrompt, family: DeviceFamily) -> ImagePrompt:
    """Tag a prompt with its family, decoding legacy offset indices."""
    if prompt.screen_index >= TABLET_INDEX_OFFSET:
        key = GenerationKey.decode(prompt.screen_index)
    else:
        key = GenerationKey(family, prompt.screen_index)
    if key == prompt.key:
        return prompt
    return ImagePrompt(
        screen_index=key.index,
        prompt=prompt.prompt,
        negative_prompt=prompt.negative_prompt,
        family=key.family,
    )


class AutoAdvance:
    """
    Debounced one-shot timer.

    `schedule()` runs `action` after `delay` seconds on a timer thread;
    scheduling again or calling `cancel()` first discards the pending run.
    The action itself must re-check that advancing is still valid.
    """

    def __init__(self, delay: float, action: Callable[[], None]) -> None:
        self.delay = delay
        self._action = action
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._token = 0
        self._done = threading.Event()

    def schedule(self) -> None:
        with self._lock:
            self._cancel_locked()
            self._done.clear()
            token = self._token
            self._timer = threading.Timer(self.delay, self._fire, args=(token,))
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        with self._lock:
            self._cancel_locked()

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the scheduled action has run; False on timeout."""
        return self._done.wait(timeout)

    def _cancel_locked(self) -> None:
        self._token += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self, token: int) -> None:
        with self._lock:
            if token != self._token:
                return
            self._timer = None
        try:
            self._action()
        finally:
            self._done.set()
