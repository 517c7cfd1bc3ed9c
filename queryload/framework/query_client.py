"""
HTTP client for range queries against a Prometheus-compatible API.

The client posts one form-encoded ``query_range`` request per call and
turns whatever happens (response, timeout, connection failure) into a
RequestOutcome. It never raises for per-request failures.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from .. import __version__
from .models import ErrorKind, QueryRequest, RequestOutcome, TimestampUnit

logger = logging.getLogger(__name__)

QUERY_RANGE_PATH = "/prometheus/api/v1/query_range"


def build_query_range_url(base_url: str, tenant: Optional[str] = "0") -> str:
    """Build the ``query_range`` URL for a vmselect or single-node target.

    Args:
        base_url: Scheme and host (optionally a path prefix) of the target
        tenant: Cluster tenant (account) ID; None for a single-node target

    Returns:
        ``<base>/select/<tenant>/prometheus/api/v1/query_range`` or
        ``<base>/prometheus/api/v1/query_range`` when tenant is None
    """
    base = base_url.rstrip("/")
    if tenant is None or tenant == "":
        return f"{base}{QUERY_RANGE_PATH}"
    return f"{base}/select/{tenant}{QUERY_RANGE_PATH}"


class QueryClient:
    """
    Client for issuing range queries under load.

    Example:
        >>> async with QueryClient(build_query_range_url("http://vmselect:8481")) as client:
        ...     outcome = await client.send(request, scenario_name="test_metric")
        ...     print(outcome.status_code, outcome.latency_ms)
    """

    def __init__(
        self,
        endpoint: str,
        timeout: float = 30.0,
        verify_tls: bool = True,
        auth_token: Optional[str] = None,
        timestamp_unit: TimestampUnit = TimestampUnit.SECONDS,
        headers: Optional[dict[str, str]] = None,
        max_connections: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the query client.

        Args:
            endpoint: Default ``query_range`` URL
            timeout: Per-request timeout in seconds
            verify_tls: Verify server certificates; disabling must be explicit
            auth_token: Optional bearer token
            timestamp_unit: Unit used to encode ``start`` and ``end``
            headers: Optional additional headers
            max_connections: Connection pool size, unbounded when None
            transport: Optional httpx transport (used by tests)
        """
        self.endpoint = endpoint
        self.timeout = timeout
        self.verify_tls = verify_tls
        self.timestamp_unit = timestamp_unit
        self.headers = {"User-Agent": f"queryload/{__version__}"}
        if auth_token:
            self.headers["Authorization"] = f"Bearer {auth_token}"
        self.headers.update(headers or {})
        self.max_connections = max_connections
        self._transport = transport
        self._async_client: Optional[httpx.AsyncClient] = None

        if not verify_tls:
            logger.warning("TLS certificate verification is disabled for %s", endpoint)

    @property
    def async_client(self) -> httpx.AsyncClient:
        """Get or create the asynchronous HTTP client."""
        if self._async_client is None:
            self._async_client = httpx.AsyncClient(
                timeout=self.timeout,
                verify=self.verify_tls,
                headers=self.headers,
                limits=httpx.Limits(
                    max_connections=self.max_connections,
                    max_keepalive_connections=self.max_connections,
                ),
                transport=self._transport,
            )
        return self._async_client

    async def aclose(self) -> None:
        """Close the async HTTP client."""
        if self._async_client is not None:
            await self._async_client.aclose()
            self._async_client = None

    async def __aenter__(self) -> "QueryClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.aclose()

    def encode_form(self, request: QueryRequest) -> dict[str, str]:
        """Encode a request as ``query_range`` form fields."""
        return {
            "query": request.query,
            "start": str(self.timestamp_unit.from_ns(request.start_ns)),
            "end": str(self.timestamp_unit.from_ns(request.end_ns)),
            "step": request.step,
        }

    async def send(
        self,
        request: QueryRequest,
        endpoint: Optional[str] = None,
        *,
        scenario_name: str = "",
        timeout: Optional[float] = None,
    ) -> RequestOutcome:
        """
        Issue one range query and record its outcome.

        Args:
            request: Query to send
            endpoint: Target URL, the client's default when omitted
            scenario_name: Scenario recorded on the outcome
            timeout: Per-call timeout override in seconds

        Returns:
            RequestOutcome with status code and latency; transport failures
            have ``status_code=0`` and ``error`` set
        """
        url = endpoint or self.endpoint
        kwargs: dict[str, Any] = {"data": self.encode_form(request)}
        if timeout is not None:
            kwargs["timeout"] = timeout

        timestamp = datetime.now(timezone.utc)
        start = time.perf_counter()
        try:
            response = await self.async_client.post(url, **kwargs)
        except httpx.TimeoutException as e:
            return self._failure(scenario_name, timestamp, start, ErrorKind.TIMEOUT, e)
        except httpx.TransportError as e:
            return self._failure(scenario_name, timestamp, start, ErrorKind.TRANSPORT, e)
        latency_ms = (time.perf_counter() - start) * 1000

        if not 200 <= response.status_code <= 299:
            logger.debug(
                "Query %r returned HTTP %d in %.1fms",
                request.query, response.status_code, latency_ms,
            )

        return RequestOutcome(
            scenario_name=scenario_name,
            timestamp=timestamp,
            status_code=response.status_code,
            latency_ms=latency_ms,
        )

    def _failure(
        self,
        scenario_name: str,
        timestamp: datetime,
        start: float,
        kind: ErrorKind,
        error: Exception,
    ) -> RequestOutcome:
        latency_ms = (time.perf_counter() - start) * 1000
        logger.debug("Request to %s failed (%s): %s", self.endpoint, kind.value, error)
        return RequestOutcome(
            scenario_name=scenario_name,
            timestamp=timestamp,
            status_code=0,
            latency_ms=latency_ms,
            error=kind,
            error_message=f"{type(error).__name__}: {error}",
        )
