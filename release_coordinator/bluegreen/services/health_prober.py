import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

import requests

from bluegreen.models.slot import Slot, SlotStatus

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_CAP = 5.0


class ProbeReason(Enum):
    HEALTHY = "healthy"
    TIMEOUT = "timeout"
    BAD_RESPONSES = "bad_responses"
    CANCELLED = "cancelled"


@dataclass
class ProbeResult:
    status: SlotStatus
    reason: ProbeReason
    attempts: int
    elapsed: float
    detail: str = ""

    @property
    def healthy(self) -> bool:
        return self.status == SlotStatus.HEALTHY


class HealthProber:
    """Polls a slot's HTTP endpoint until it answers with success, the budget runs out, or it is cancelled.

    Connection errors mean "not ready yet". Responses that arrive but are not a
    success count as bad; more than max_bad_responses of them in a row fail fast.
    """

    def __init__(self, host: str = "127.0.0.1", path: str = "/", max_bad_responses: int = 3,
                 expect: Optional[Dict[str, str]] = None, session: requests.Session = None,
                 cancel_event: threading.Event = None, clock=time.monotonic):
        self.host = host
        self.path = path if path.startswith("/") else f"/{path}"
        self.max_bad_responses = max_bad_responses
        self.expect = expect or {}
        self.session = session or requests.Session()
        self.cancel_event = cancel_event or threading.Event()
        self.clock = clock

    def url_for(self, slot: Slot) -> str:
        return f"http://{self.host}:{slot.port}{self.path}"

    def _evaluate(self, response):
        if not 200 <= response.status_code < 300:
            return False, f"HTTP {response.status_code}"
        if not self.expect:
            return True, f"HTTP {response.status_code}"
        try:
            body = response.json()
        except ValueError:
            return False, "non-JSON body"
        if not isinstance(body, dict):
            return False, f"unexpected body {body!r}"
        for key, expected in self.expect.items():
            if str(body.get(key)) != str(expected):
                return False, f"{key}={body.get(key)!r}, expected {expected!r}"
        return True, f"HTTP {response.status_code}"

    def probe(self, slot: Slot, timeout: float, interval: float) -> ProbeResult:
        url = self.url_for(slot)
        start = self.clock()
        deadline = start + timeout
        attempts = 0
        bad_streak = 0
        detail = ""
        logger.info(f"Probing slot {slot.id} at {url} (timeout={timeout}s, interval={interval}s)")

        def result(status, reason):
            elapsed = round(self.clock() - start, 3)
            logger.info(f"Probe of slot {slot.id} finished: {reason.value} after {attempts} attempts ({elapsed}s)")
            return ProbeResult(status=status, reason=reason, attempts=attempts, elapsed=elapsed, detail=detail)

        while True:
            if self.cancel_event.is_set():
                detail = "probe cancelled"
                return result(SlotStatus.UNHEALTHY, ProbeReason.CANCELLED)

            remaining = deadline - self.clock()
            if remaining <= 0:
                return result(SlotStatus.UNHEALTHY, ProbeReason.TIMEOUT)

            attempts += 1
            try:
                response = self.session.get(url, timeout=min(remaining, REQUEST_TIMEOUT_CAP))
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                # Not listening yet, or too slow to answer: keep waiting
                bad_streak = 0
                detail = f"not ready ({type(e).__name__})"
                logger.debug(f"Poll {attempts}: slot {slot.id} {detail}")
            except requests.exceptions.RequestException as e:
                bad_streak += 1
                detail = f"request failed ({e})"
                logger.warning(f"Poll {attempts}: slot {slot.id} {detail}")
            else:
                ok, detail = self._evaluate(response)
                if ok:
                    return result(SlotStatus.HEALTHY, ProbeReason.HEALTHY)
                bad_streak += 1
                logger.warning(f"Poll {attempts}: slot {slot.id} bad response {detail} ({bad_streak} in a row)")

            if bad_streak > self.max_bad_responses:
                detail = f"{bad_streak} consecutive bad responses, last: {detail}"
                return result(SlotStatus.UNHEALTHY, ProbeReason.BAD_RESPONSES)

            remaining = deadline - self.clock()
            if remaining <= 0:
                return result(SlotStatus.UNHEALTHY, ProbeReason.TIMEOUT)
            if self.cancel_event.wait(min(interval, remaining)):
                detail = "probe cancelled"
                return result(SlotStatus.UNHEALTHY, ProbeReason.CANCELLED)
