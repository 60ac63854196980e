# This project was developed with assistance from AI tools.
"""Salesforce record store client.

Talks to the Salesforce REST API over a shared ``httpx.AsyncClient``. The
session is obtained with the SOAP username/password login (password +
security token), cached on the client, and reused by every request in the
process. A failed login leaves nothing cached, so the next call retries;
an expired session (HTTP 401) is dropped and re-established once.

The module exposes a client initialised at app startup via
``init_record_store()`` and closed at shutdown via ``close_record_store()``.
"""

import asyncio
import logging
import xml.etree.ElementTree as ET
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Annotated, Any
from xml.sax.saxutils import escape

import httpx
from fastapi import Depends

from ..core.config import Settings

logger = logging.getLogger(__name__)

_SOAP_NS = {
    "env": "http://schemas.xmlsoap.org/soap/envelope/",
    "sf": "urn:partner.soap.sforce.com",
}

_LOGIN_ENVELOPE = """<?xml version="1.0" encoding="utf-8" ?>
<env:Envelope xmlns:xsd="http://www.w3.org/2001/XMLSchema"
    xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"
    xmlns:env="http://schemas.xmlsoap.org/soap/envelope/">
  <env:Body>
    <n1:login xmlns:n1="urn:partner.soap.sforce.com">
      <n1:username>{username}</n1:username>
      <n1:password>{password}</n1:password>
    </n1:login>
  </env:Body>
</env:Envelope>"""

# sObject collections accept at most 200 records per call
_COLLECTION_LIMIT = 200
_ROLLED_BACK = "ALL_OR_NONE_OPERATION_ROLLED_BACK"


class RecordStoreError(Exception):
    """Raised when a Salesforce call fails at the transport or API level.

    ``error_code`` is Salesforce's own code (``INVALID_FIELD``,
    ``REQUIRED_FIELD_MISSING``...) and is safe to surface to callers; the
    message may contain record data and is only logged.
    """

    def __init__(self, message: str, *, status_code: int | None = None, error_code: str = "UNKNOWN"):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


@dataclass(frozen=True)
class SalesforceSession:
    instance_url: str
    access_token: str


@dataclass
class SaveResult:
    """Outcome of a single insert/update."""

    id: str | None
    success: bool
    errors: list[dict[str, Any]] = field(default_factory=list)


def soql_quote(value: str) -> str:
    """Render a string as a quoted SOQL literal."""
    escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def soql_in(values: Iterable[str]) -> str:
    """Render values as the parenthesised list of a SOQL ``IN`` clause."""
    return "(" + ",".join(soql_quote(v) for v in values) + ")"


def record_key(record_id: str | None) -> str:
    """Case-sensitive 15-character form of a Salesforce id, for comparing 15- and 18-character ids."""
    return (record_id or "")[:15]


def _strip_attributes(value: Any) -> Any:
    """Drop the ``attributes`` metadata Salesforce attaches to every record."""
    if isinstance(value, dict):
        return {k: _strip_attributes(v) for k, v in value.items() if k != "attributes"}
    if isinstance(value, list):
        return [_strip_attributes(v) for v in value]
    return value


def _parse_error(response: httpx.Response) -> tuple[str, str]:
    """Return (error_code, message) from a Salesforce REST error body."""
    try:
        body = response.json()
    except ValueError:
        return "HTTP_" + str(response.status_code), response.text[:500]
    if isinstance(body, list) and body and isinstance(body[0], dict):
        return body[0].get("errorCode", "UNKNOWN"), body[0].get("message", "")
    if isinstance(body, dict):
        return body.get("errorCode") or body.get("error", "UNKNOWN"), body.get("message", "")
    return "UNKNOWN", str(body)[:500]


def _to_save_result(raw: dict[str, Any], fallback_id: str | None = None) -> SaveResult:
    return SaveResult(
        id=raw.get("id") or fallback_id,
        success=bool(raw.get("success")),
        errors=list(raw.get("errors") or []),
    )


def raise_for_failures(results: Iterable[SaveResult], action: str) -> None:
    """Raise RecordStoreError if any save result reports failure."""
    failed = [r for r in results if not r.success]
    if not failed:
        return
    errors = [e for r in failed for e in r.errors]
    # all-or-none batches mark every untouched row as rolled back; report the row that caused it
    first = next((e for e in errors if e.get("statusCode") != _ROLLED_BACK), errors[0] if errors else {})
    raise RecordStoreError(
        f"{action} failed for {len(failed)} record(s): {first.get('message', 'unknown error')}",
        error_code=first.get("statusCode") or first.get("errorCode") or "SAVE_FAILED",
    )


class SalesforceClient:
    """Async Salesforce REST client with a cached, lazily-established session."""

    def __init__(
        self,
        login_url: str,
        username: str,
        password: str,
        security_token: str = "",
        api_version: str = "59.0",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._login_url = login_url.rstrip("/")
        self._username = username
        self._password = password + security_token
        self._api_version = api_version
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._session: SalesforceSession | None = None
        self._login_lock = asyncio.Lock()

    @property
    def api_path(self) -> str:
        return f"/services/data/v{self._api_version}"

    # ------------------------------------------------------------------
    # Session handling
    # ------------------------------------------------------------------

    async def _login(self) -> SalesforceSession:
        """SOAP partner login with username + password + security token."""
        url = f"{self._login_url}/services/Soap/u/{self._api_version}"
        body = _LOGIN_ENVELOPE.format(
            username=escape(self._username),
            password=escape(self._password),
        )
        try:
            response = await self._http.post(
                url,
                content=body.encode("utf-8"),
                headers={"Content-Type": "text/xml; charset=UTF-8", "SOAPAction": "login"},
            )
        except httpx.HTTPError as exc:
            raise RecordStoreError(f"Salesforce login transport error: {exc}", error_code="TRANSPORT_ERROR") from exc

        try:
            root = ET.fromstring(response.content)
        except ET.ParseError as exc:
            raise RecordStoreError(
                "Salesforce login returned a non-XML body",
                status_code=response.status_code,
                error_code="LOGIN_FAILED",
            ) from exc

        fault = root.find(".//env:Fault/faultstring", _SOAP_NS)
        if fault is not None or response.status_code != 200:
            message = fault.text if fault is not None else f"HTTP {response.status_code}"
            raise RecordStoreError(
                f"Salesforce login failed: {message}",
                status_code=response.status_code,
                error_code="LOGIN_FAILED",
            )

        server_url = root.findtext(".//sf:result/sf:serverUrl", namespaces=_SOAP_NS)
        session_id = root.findtext(".//sf:result/sf:sessionId", namespaces=_SOAP_NS)
        if not server_url or not session_id:
            raise RecordStoreError("Salesforce login response missing session", error_code="LOGIN_FAILED")

        parsed = httpx.URL(server_url)
        return SalesforceSession(
            instance_url=f"{parsed.scheme}://{parsed.netloc.decode('ascii')}",
            access_token=session_id,
        )

    async def get_session(self) -> SalesforceSession:
        """Return the cached session, logging in on first use."""
        if self._session is not None:
            return self._session
        async with self._login_lock:
            if self._session is None:
                self._session = await self._login()
                logger.info("Salesforce session established (instance=%s)", self._session.instance_url)
        return self._session

    def _invalidate(self, stale: SalesforceSession) -> None:
        if self._session is stale:
            self._session = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send an authenticated request, re-logging in once on HTTP 401."""
        for attempt in range(2):
            session = await self.get_session()
            url = path if path.startswith("http") else f"{session.instance_url}{path}"
            try:
                response = await self._http.request(
                    method,
                    url,
                    headers={"Authorization": f"Bearer {session.access_token}"},
                    **kwargs,
                )
            except httpx.HTTPError as exc:
                raise RecordStoreError(
                    f"Salesforce transport error on {method} {path}: {exc}",
                    error_code="TRANSPORT_ERROR",
                ) from exc

            if response.status_code == 401 and attempt == 0:
                logger.warning("Salesforce session rejected, logging in again")
                self._invalidate(session)
                continue
            return response
        return response

    async def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._request(method, path, **kwargs)
        if response.is_error:
            error_code, message = _parse_error(response)
            raise RecordStoreError(
                f"Salesforce {method} {path} failed: {message}",
                status_code=response.status_code,
                error_code=error_code,
            )
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # ------------------------------------------------------------------
    # Record operations
    # ------------------------------------------------------------------

    async def query(self, soql: str) -> list[dict[str, Any]]:
        """Run a SOQL query and return every record, following pagination."""
        body = await self._json("GET", f"{self.api_path}/query", params={"q": " ".join(soql.split())})
        records = list(body.get("records", []))
        while not body.get("done", True) and body.get("nextRecordsUrl"):
            body = await self._json("GET", body["nextRecordsUrl"])
            records.extend(body.get("records", []))
        return _strip_attributes(records)

    async def retrieve(self, sobject: str, record_id: str) -> dict[str, Any] | None:
        """Fetch one record by id, or None when it does not exist."""
        response = await self._request("GET", f"{self.api_path}/sobjects/{sobject}/{record_id}")
        if response.status_code == 404:
            return None
        if response.is_error:
            error_code, message = _parse_error(response)
            raise RecordStoreError(
                f"Salesforce retrieve {sobject}/{record_id} failed: {message}",
                status_code=response.status_code,
                error_code=error_code,
            )
        return _strip_attributes(response.json())

    async def insert(self, sobject: str, fields: dict[str, Any]) -> SaveResult:
        """Create one record."""
        body = await self._json("POST", f"{self.api_path}/sobjects/{sobject}", json=fields)
        return _to_save_result(body)

    async def update(self, sobject: str, fields: dict[str, Any]) -> SaveResult:
        """Update one record; ``fields`` must carry ``Id``."""
        record_id = fields["Id"]
        payload = {k: v for k, v in fields.items() if k != "Id"}
        await self._json("PATCH", f"{self.api_path}/sobjects/{sobject}/{record_id}", json=payload)
        return SaveResult(id=record_id, success=True)

    async def insert_many(self, sobject: str, records: list[dict[str, Any]]) -> list[SaveResult]:
        """Create records through the sObject collections API."""
        return await self._collection("POST", sobject, records)

    async def update_many(self, sobject: str, records: list[dict[str, Any]]) -> list[SaveResult]:
        """Update records (each carrying ``Id``) through the sObject collections API."""
        return await self._collection("PATCH", sobject, records)

    async def _collection(self, method: str, sobject: str, records: list[dict[str, Any]]) -> list[SaveResult]:
        results: list[SaveResult] = []
        for start in range(0, len(records), _COLLECTION_LIMIT):
            chunk = records[start : start + _COLLECTION_LIMIT]
            payload = {
                "allOrNone": True,
                "records": [{"attributes": {"type": sobject}, **r} for r in chunk],
            }
            body = await self._json(method, f"{self.api_path}/composite/sobjects", json=payload)
            chunk_results = [
                _to_save_result(raw, fallback_id=sent.get("Id")) for raw, sent in zip(body or [], chunk, strict=False)
            ]
            results.extend(chunk_results)
            if not all(r.success for r in chunk_results):
                # the chunk was rolled back; later chunks are not sent
                break
        return results

    async def fetch_binary(self, path: str, params: dict[str, str] | None = None) -> tuple[bytes, str]:
        """GET a binary resource under the API path; returns (content, content_type)."""
        response = await self._request("GET", f"{self.api_path}{path}", params=params)
        if response.is_error:
            error_code, message = _parse_error(response)
            raise RecordStoreError(
                f"Salesforce binary fetch {path} failed: {message}",
                status_code=response.status_code,
                error_code=error_code,
            )
        return response.content, response.headers.get("content-type", "application/octet-stream")

    async def aclose(self) -> None:
        await self._http.aclose()


# ---------------------------------------------------------------------------
# Module-level client
# ---------------------------------------------------------------------------

_client: SalesforceClient | None = None


def init_record_store(cfg: Settings, transport: httpx.AsyncBaseTransport | None = None) -> SalesforceClient:
    """Initialise the client (called once from app lifespan)."""
    global _client  # noqa: PLW0603
    _client = SalesforceClient(
        login_url=cfg.SF_LOGIN_URL,
        username=cfg.SF_USERNAME,
        password=cfg.SF_PASSWORD,
        security_token=cfg.SF_SECURITY_TOKEN,
        api_version=cfg.SF_API_VERSION,
        timeout=cfg.SF_TIMEOUT,
        transport=transport,
    )
    logger.info("SalesforceClient initialised (login_url=%s)", cfg.SF_LOGIN_URL)
    return _client


async def close_record_store() -> None:
    """Close the client's connection pool (called from app lifespan)."""
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
        _client = None


def get_record_store() -> SalesforceClient:
    """Return the initialised SalesforceClient."""
    if _client is None:
        raise RuntimeError("SalesforceClient not initialised -- call init_record_store() first")
    return _client


# Type alias for use in route signatures
RecordStore = Annotated[SalesforceClient, Depends(get_record_store)]
