"""Async HTTP client wrapper for the BigBlueButton API.

Provides BigBlueButtonClient with retry logic (tenacity, exponential
backoff) for transport failures and 5xx answers only. Every call is a GET against
{server_url}/api/{call} signed with checksum = sha1(call + query + secret);
responses are XML documents with a <returncode> of SUCCESS or FAILED.

Failure mapping:
- transport errors, timeouts, HTTP 5xx after retries -> BackendUnavailableError
- HTTP 4xx (not retried), explicit FAILED return code or unreadable XML
  -> BackendRejectedError
"""

from __future__ import annotations

import hashlib
import xml.etree.ElementTree as ET
from urllib.parse import urlencode

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from src.conference.backend.schemas import CreatedMeeting, MeetingInfo
from src.conference.core.errors import BackendRejectedError, BackendUnavailableError
from src.conference.core.monitoring import backend_calls_total
from src.conference.servers.schemas import Server

logger = structlog.get_logger(__name__)

SUCCESS = "SUCCESS"


def _is_transient(exc: BaseException) -> bool:
    """Transport failures and 5xx answers are worth another attempt; 4xx are not."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return isinstance(exc, httpx.TransportError)


def _text(element: ET.Element, tag: str) -> str | None:
    child = element.find(tag)
    if child is None or child.text is None:
        return None
    return child.text.strip()


def _int(element: ET.Element, tag: str) -> int:
    value = _text(element, tag)
    try:
        return int(value) if value is not None else 0
    except ValueError:
        return 0


class BigBlueButtonClient:
    """Async client for one BigBlueButton server.

    Args:
        base_url: Server URL, e.g. https://bbb.example.com/bigbluebutton/.
        secret: Shared secret used to sign requests.
        timeout: Per-request timeout in seconds.
        max_attempts: Attempts for transient failures before giving up.
        retry_wait: Minimum backoff between attempts in seconds.
    """

    def __init__(
        self,
        base_url: str,
        secret: str,
        timeout: float = 10.0,
        max_attempts: int = 3,
        retry_wait: float = 1.0,
    ) -> None:
        self._api_url = base_url.rstrip("/") + "/api/"
        self._secret = secret
        self._timeout = timeout
        self._max_attempts = max(1, max_attempts)
        self._retry_wait = retry_wait

    def _client(self) -> httpx.AsyncClient:
        """Create a new httpx client with the configured timeout."""
        return httpx.AsyncClient(timeout=self._timeout)

    # ── Signing ──────────────────────────────────────────────────────────

    def checksum(self, call: str, query: str) -> str:
        return hashlib.sha1(f"{call}{query}{self._secret}".encode("utf-8")).hexdigest()

    def signed_url(self, call: str, params: dict[str, str]) -> str:
        """Build {api_url}{call}?{query}&checksum=... for the given call."""
        query = urlencode(params)
        checksum = self.checksum(call, query)
        if query:
            return f"{self._api_url}{call}?{query}&checksum={checksum}"
        return f"{self._api_url}{call}?checksum={checksum}"

    # ── Transport ────────────────────────────────────────────────────────

    async def _get(self, call: str, params: dict[str, str]) -> ET.Element:
        """Issue a signed GET and return the parsed <response> element.

        Raises:
            BackendUnavailableError: Transport failure or 5xx after all retries.
            BackendRejectedError: 4xx status, FAILED return code or unparseable body.
        """
        url = self.signed_url(call, params)
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_attempts),
                wait=wait_exponential(multiplier=self._retry_wait, min=self._retry_wait, max=10),
                retry=retry_if_exception(_is_transient),
                reraise=True,
            ):
                with attempt:
                    async with self._client() as client:
                        response = await client.get(url)
                        response.raise_for_status()
                        body = response.text
        except (httpx.TransportError, httpx.HTTPStatusError) as exc:
            if not _is_transient(exc):
                status_code = exc.response.status_code
                backend_calls_total.labels(call=call, status="rejected").inc()
                logger.info("backend.rejected", call=call, status_code=status_code)
                raise BackendRejectedError(call, f"http{status_code}", str(exc)) from exc
            backend_calls_total.labels(call=call, status="unavailable").inc()
            logger.warning(
                "backend.unavailable",
                call=call,
                api_url=self._api_url,
                error=str(exc),
            )
            raise BackendUnavailableError(f"Backend {call} failed: {exc}") from exc

        try:
            root = ET.fromstring(body)
        except ET.ParseError as exc:
            backend_calls_total.labels(call=call, status="rejected").inc()
            raise BackendRejectedError(call, "invalidResponse", str(exc)) from exc

        returncode = _text(root, "returncode")
        if returncode != SUCCESS:
            message_key = _text(root, "messageKey")
            message = _text(root, "message")
            backend_calls_total.labels(call=call, status="rejected").inc()
            logger.info(
                "backend.rejected",
                call=call,
                message_key=message_key,
                message=message,
            )
            raise BackendRejectedError(call, message_key, message)

        backend_calls_total.labels(call=call, status="success").inc()
        return root

    # ── API Calls ────────────────────────────────────────────────────────

    async def create_meeting(self, name: str, external_id: str, record: bool) -> CreatedMeeting:
        """Provision a meeting and return the credentials the backend issued."""
        root = await self._get(
            "create",
            {
                "name": name,
                "meetingID": external_id,
                "record": "true" if record else "false",
            },
        )
        moderator_pw = _text(root, "moderatorPW")
        attendee_pw = _text(root, "attendeePW")
        if not moderator_pw or not attendee_pw:
            raise BackendRejectedError("create", "missingCredentials", "Response lacks meeting passwords")
        created = CreatedMeeting(
            external_id=_text(root, "meetingID") or external_id,
            moderator_password=moderator_pw,
            attendee_password=attendee_pw,
            internal_id=_text(root, "internalMeetingID"),
        )
        logger.info("backend.meeting_created", external_id=created.external_id)
        return created

    async def end_meeting(self, external_id: str, password: str) -> None:
        await self._get("end", {"meetingID": external_id, "password": password})
        logger.info("backend.meeting_ended", external_id=external_id)

    async def get_meeting_info(self, external_id: str) -> MeetingInfo:
        root = await self._get("getMeetingInfo", {"meetingID": external_id})
        attendees: list[dict] = []
        attendees_el = root.find("attendees")
        if attendees_el is not None:
            for attendee in attendees_el.findall("attendee"):
                attendees.append(
                    {
                        "user_id": _text(attendee, "userID"),
                        "full_name": _text(attendee, "fullName"),
                        "role": (_text(attendee, "role") or "").lower(),
                    }
                )
        create_time = _text(root, "createTime")
        return MeetingInfo(
            external_id=_text(root, "meetingID") or external_id,
            name=_text(root, "meetingName"),
            running=_text(root, "running") == "true",
            recording=_text(root, "recording") == "true",
            participant_count=_int(root, "participantCount"),
            moderator_count=_int(root, "moderatorCount"),
            listener_count=_int(root, "listenerCount"),
            create_time=int(create_time) if create_time and create_time.isdigit() else None,
            attendees=attendees,
        )

    async def probe(self) -> None:
        """Innocuous signed query; raises like any other call on failure."""
        await self._get("getMeetings", {})

    def build_join_url(
        self,
        external_id: str,
        full_name: str,
        password: str | None = None,
        user_id: str | None = None,
        guest: bool = False,
    ) -> str:
        """Construct a signed join URL locally (no network call)."""
        params: dict[str, str] = {"fullName": full_name, "meetingID": external_id}
        if password is not None:
            params["password"] = password
        if user_id is not None:
            params["userID"] = user_id
        if guest:
            params["guest"] = "true"
        return self.signed_url("join", params)


class BackendClientFactory:
    """Builds a BigBlueButtonClient for a registered server.

    The lifecycle manager, membership manager, and health monitor resolve
    clients through this factory so each call is signed with the hosting
    server's own URL and secret.
    """

    def __init__(self, timeout: float = 10.0, max_attempts: int = 3) -> None:
        self._timeout = timeout
        self._max_attempts = max_attempts

    def __call__(self, server: Server) -> BigBlueButtonClient:
        return BigBlueButtonClient(
            base_url=server.url,
            secret=server.secret,
            timeout=self._timeout,
            max_attempts=self._max_attempts,
        )
