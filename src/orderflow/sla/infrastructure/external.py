"""
SLA External Service Integrations
==================================

External services for dwell-time monitoring:
- Threshold policy YAML file with hot reload (watchdog)
- Mail transports (SMTP, HTTP relay) behind a circuit breaker
- APScheduler for the periodic audit sweep
"""

import asyncio
import smtplib
import ssl
import threading
import time
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import formataddr
from html import escape
from pathlib import Path
from typing import Callable, Optional, Sequence

import httpx
import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from orderflow.config import Settings
from orderflow.core import ConfigurationException, DispatchFailure
from orderflow.sla.application.services import IMailTransport, IPolicyProvider
from orderflow.sla.domain import DispatchResult, ThresholdPolicy
from orderflow.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

TRANSPORT_BUDGET_SHARE = 0.8
RELAY_MAX_RETRIES = 3


# ========== Threshold policy ==========

class PolicyFileHandler(FileSystemEventHandler):
    """Watchdog event handler for threshold policy file changes."""

    def __init__(self, policy_manager: "ThresholdPolicyManager", policy_path: Path):
        self.policy_manager = policy_manager
        self.policy_path = policy_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.policy_path.resolve():
            logger.info("Threshold policy file changed", extra={"path": str(event.src_path)})
            self.policy_manager.reload()

    on_created = on_modified


class ThresholdPolicyManager(IPolicyProvider):
    """
    Thread-safe threshold policy holder with hot-reload support.

    The watchdog thread swaps in a new immutable policy; sweeps read one
    snapshot through ``get_policy`` and keep it for their whole run.
    """

    def __init__(self):
        self._policy: Optional[ThresholdPolicy] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> ThresholdPolicy:
        """
        Initial policy load.

        Raises:
            ConfigurationException: the file exists but is not a valid policy
        """
        self._path = path
        try:
            policy = self._load_from_file(path)
        except (yaml.YAMLError, ValidationError, OSError, TypeError) as e:
            raise ConfigurationException(f"Invalid threshold policy {path}: {e}")
        with self._lock:
            self._policy = policy
        return policy

    def _load_from_file(self, path: Path) -> ThresholdPolicy:
        if not path.exists():
            logger.warning("Threshold policy file not found, using defaults", extra={"path": str(path)})
            return ThresholdPolicy.default()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return ThresholdPolicy(**data)

    def reload(self) -> bool:
        """Reload from file; on failure the previous policy stays in force."""
        if self._path is None:
            return False

        try:
            new_policy = self._load_from_file(self._path)
        except (yaml.YAMLError, ValidationError, OSError, TypeError) as e:
            logger.error(
                "Failed to reload threshold policy, keeping previous policy",
                extra={"path": str(self._path), "error": str(e)}
            )
            return False

        with self._lock:
            self._policy = new_policy
        logger.info("Threshold policy reloaded", extra={"path": str(self._path)})
        return True

    def start_watching(self) -> None:
        """
        Start watching the policy file for changes.

        Skips watching when the file does not exist or inotify is unavailable.
        """
        if self._path is None:
            raise RuntimeError("Policy not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                "Threshold policy file doesn't exist, skipping file watch",
                extra={"path": str(self._path)}
            )
            return

        try:
            self._observer = Observer()
            handler = PolicyFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.parent.resolve()), recursive=False)
            self._observer.start()
            logger.info("Started watching threshold policy", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static policy", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def get_policy(self) -> ThresholdPolicy:
        with self._lock:
            if self._policy is None:
                raise RuntimeError("Threshold policy not loaded")
            return self._policy

    @property
    def policy(self) -> ThresholdPolicy:
        return self.get_policy()


# ========== Circuit breaker ==========

class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        time_source: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._time = time_source
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if self._time() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = self._time()

        if self._failure_count >= self.failure_threshold or self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


# ========== Mail transports ==========

def _html_body(body: str) -> str:
    return escape(body).replace("\n", "<br>")


class SMTPMailTransport(IMailTransport):
    """
    SMTP transport using the standard library client in a worker thread.

    Sends a plain-text body with an HTML alternative.
    """

    def __init__(
        self,
        host: str,
        port: int,
        sender_email: str,
        sender_name: str = "Nexus System Alert",
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_ssl: bool = True,
        timeout_seconds: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.sender_email = sender_email
        self.sender_name = sender_name
        self.username = username
        self.password = password
        self.use_ssl = use_ssl
        self.timeout_seconds = timeout_seconds
        self._circuit_breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)

    def build_message(self, recipients: Sequence[str], subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = formataddr((self.sender_name, self.sender_email))
        message["To"] = ", ".join(recipients)
        message["Subject"] = subject
        message.set_content(body)
        message.add_alternative(_html_body(body), subtype="html")
        return message

    def _deliver(self, message: EmailMessage) -> None:
        context = ssl.create_default_context()
        if self.use_ssl:
            with smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout_seconds, context=context) as smtp:
                self._login_and_send(smtp, message)
        else:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds) as smtp:
                smtp.starttls(context=context)
                self._login_and_send(smtp, message)

    def _login_and_send(self, smtp: smtplib.SMTP, message: EmailMessage) -> None:
        if self.username:
            smtp.login(self.username, self.password or "")
        smtp.send_message(message)

    async def send(self, recipients: Sequence[str], subject: str, body: str) -> DispatchResult:
        if not self._circuit_breaker.allow_request():
            logger.warning("Circuit breaker open, skipping SMTP send", extra={"subject": subject})
            return DispatchResult(ok=False, error="circuit open")

        message = self.build_message(recipients, subject, body)
        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            self._circuit_breaker.record_failure()
            logger.error("SMTP send failed", extra={"error": str(e), "smtp_host": self.host})
            return DispatchResult(ok=False, error=str(e))
        except asyncio.CancelledError:
            self._circuit_breaker.record_failure()
            raise

        self._circuit_breaker.record_success()
        logger.info("Email sent", extra={"recipient_count": len(recipients), "subject": subject})
        return DispatchResult(ok=True)


class RelayMailTransport(IMailTransport):
    """
    HTTP mail relay client with circuit breaker and retry logic.

    Posts one JSON document per message; any 2xx response counts as sent.
    ``budget_seconds`` bounds all attempts and backoff together; it is kept
    below the dispatcher timeout so a hung relay is recorded as a failure.
    """

    def __init__(
        self,
        relay_url: str,
        sender_email: Optional[str] = None,
        sender_name: str = "Nexus System Alert",
        timeout_seconds: float = 10.0,
        max_retries: int = 3,
        retry_backoff_seconds: float = 0.5,
        budget_seconds: Optional[float] = None,
    ):
        self.relay_url = relay_url
        self.sender_email = sender_email
        self.sender_name = sender_name
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self.budget_seconds = budget_seconds
        self._circuit_breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http_client

    async def send(self, recipients: Sequence[str], subject: str, body: str) -> DispatchResult:
        if not self._circuit_breaker.allow_request():
            logger.warning("Circuit breaker open, skipping relay send", extra={"subject": subject})
            return DispatchResult(ok=False, error="circuit open")

        payload = {
            "from": {"name": self.sender_name, "email": self.sender_email},
            "to": list(recipients),
            "subject": subject,
            "text": body,
            "html": _html_body(body),
        }

        try:
            return await asyncio.wait_for(
                self._post_with_retries(payload, len(recipients), subject),
                timeout=self.budget_seconds,
            )
        except asyncio.TimeoutError:
            self._circuit_breaker.record_failure()
            logger.error("Mail relay send exceeded its budget", extra={"budget_seconds": self.budget_seconds})
            return DispatchResult(ok=False, error=f"relay timed out after {self.budget_seconds:g}s")
        except asyncio.CancelledError:
            # cancelled by the caller's timeout
            self._circuit_breaker.record_failure()
            raise

    async def _post_with_retries(self, payload: dict, recipient_count: int, subject: str) -> DispatchResult:
        last_error = "no attempt made"
        for attempt in range(self.max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self.relay_url, json=payload)
                if not response.is_success:
                    raise DispatchFailure(
                        f"relay returned HTTP {response.status_code}",
                        {"status_code": response.status_code}
                    )
                self._circuit_breaker.record_success()
                logger.info(
                    "Email relayed",
                    extra={"recipient_count": recipient_count, "subject": subject}
                )
                return DispatchResult(ok=True)
            except DispatchFailure as e:
                last_error = e.reason
                logger.warning(
                    "Mail relay returned non-2xx",
                    extra={**e.details, "attempt": attempt + 1}
                )
            except httpx.HTTPError as e:
                last_error = str(e) or type(e).__name__
                logger.error(
                    "Mail relay request failed",
                    extra={"error": last_error, "attempt": attempt + 1}
                )

            if attempt < self.max_retries - 1:
                await asyncio.sleep(self.retry_backoff_seconds * (2 ** attempt))

        self._circuit_breaker.record_failure()
        return DispatchResult(ok=False, error=last_error)

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class NullMailTransport(IMailTransport):
    """Used when mail is disabled: every send fails, so nothing is journaled."""

    async def send(self, recipients: Sequence[str], subject: str, body: str) -> DispatchResult:
        logger.debug("Mail transport disabled, not sending", extra={"subject": subject})
        return DispatchResult(ok=False, error="mail transport disabled")


def build_mail_transport(settings: Settings) -> IMailTransport:
    """
    Create the configured mail transport.

    Raises:
        ConfigurationException: the selected transport is missing settings
    """
    # Transports finish or fail inside the dispatcher timeout
    budget = settings.dispatch_timeout_seconds * TRANSPORT_BUDGET_SHARE

    if settings.mail_transport == "smtp":
        if not settings.smtp_host or not settings.mail_sender_email:
            raise ConfigurationException("smtp_host and mail_sender_email are required for SMTP mail")
        return SMTPMailTransport(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender_email=settings.mail_sender_email,
            sender_name=settings.mail_sender_name,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_ssl=settings.smtp_use_ssl,
            timeout_seconds=budget,
        )
    if settings.mail_transport == "relay":
        if not settings.mail_relay_url:
            raise ConfigurationException("mail_relay_url is required for relay mail")
        return RelayMailTransport(
            relay_url=settings.mail_relay_url,
            sender_email=settings.mail_sender_email,
            sender_name=settings.mail_sender_name,
            timeout_seconds=budget / RELAY_MAX_RETRIES,
            max_retries=RELAY_MAX_RETRIES,
            budget_seconds=budget,
        )
    return NullMailTransport()


# ========== Scheduler ==========

class AuditScheduler:
    """
    Wrapper for APScheduler for the periodic audit sweep.

    Manages the lifecycle of the scheduler and its single job.
    """

    def __init__(self, interval_seconds: int = 60):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func, run_now: bool = False) -> None:
        """
        Start the scheduler with the given coroutine function.

        ``run_now`` fires the first sweep right away in the background
        instead of one interval later. With ``interval_seconds=0`` only that
        first sweep is scheduled.
        """
        if self._running:
            logger.warning("Audit scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()
        if self.interval_seconds > 0:
            # next_run_time=None would pause the job, so only pass it when set
            first_run = {"next_run_time": datetime.now(timezone.utc)} if run_now else {}
            self._scheduler.add_job(
                job_func,
                "interval",
                seconds=self.interval_seconds,
                id="audit_sweep",
                name="Audit Sweep Job",
                misfire_grace_time=self.interval_seconds,
                coalesce=True,
                max_instances=1,
                replace_existing=True,
                **first_run
            )
        elif run_now:
            self._scheduler.add_job(job_func, "date", id="audit_sweep_startup", name="Startup Audit Sweep")
        self._scheduler.start()
        self._running = True

        logger.info(
            "Audit scheduler started",
            extra={"interval_seconds": self.interval_seconds, "run_now": run_now}
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("Audit scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
