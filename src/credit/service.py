"""Credit score lookups through the rate-limited API client.

Translates terminal upstream failures into HTTP errors for the caller:
timeouts become 504, unreachable upstream 502, and upstream error
statuses are forwarded with the upstream body.
"""

from fastapi import HTTPException

from src.clients.api_client import RateLimitedApiClient
from src.clients.errors import NETWORK_ERROR, TIMEOUT_ERROR, UpstreamRequestError
from src.config.settings import get_settings
from src.credit.bureaus import extract_report_url, extract_score, get_bureau_config
from src.credit.models import CreditCheckRequest, CreditReportResult
from src.logging.audit import generate_request_id, get_audit_logger, request_id_var


async def check_credit_score(
    client: RateLimitedApiClient,
    api_key: str,
    request: CreditCheckRequest,
    base_url: str | None = None,
) -> CreditReportResult:
    """Fetch a credit report for `request` from its bureau."""
    if not api_key:
        raise HTTPException(status_code=500, detail="Surepass API key not configured")

    # Tag this lookup's log lines and the client's attempt logs with one id
    token = None if request_id_var.get() else request_id_var.set(generate_request_id())
    try:
        return await _fetch_report(client, api_key, request, base_url)
    finally:
        if token is not None:
            request_id_var.reset(token)


async def _fetch_report(
    client: RateLimitedApiClient,
    api_key: str,
    request: CreditCheckRequest,
    base_url: str | None,
) -> CreditReportResult:
    logger = get_audit_logger()
    bureau = get_bureau_config(request.bureau)
    endpoint = bureau.endpoint(base_url or get_settings().base_url)
    payload = bureau.format_payload(request.bureau_fields())

    try:
        response = await client.make_credit_check_request(api_key, endpoint, payload)
    except UpstreamRequestError as e:
        logger.error(
            "Credit check failed",
            extra={"audit_data": {
                "bureau": bureau.name,
                "upstream_status": e.status_code,
                "error_code": e.code,
                "attempts": e.attempts,
            }},
        )
        raise _to_http_exception(e) from e

    try:
        body = response.json()
    except ValueError:
        # e.g. a raw PDF from a fetch-report-pdf endpoint; score and link stay unset
        body = {}
    result = CreditReportResult(
        bureau=bureau.name,
        score=extract_score(body),
        report_url=extract_report_url(body),
        raw=body,
    )
    logger.info(
        "Credit report fetched",
        extra={"audit_data": {
            "bureau": bureau.name,
            "has_score": result.score is not None,
            "has_report_url": result.report_url is not None,
        }},
    )
    return result


def _to_http_exception(error: UpstreamRequestError) -> HTTPException:
    if error.code == TIMEOUT_ERROR:
        return HTTPException(
            status_code=504,
            detail={
                "message": "Request timeout when connecting to credit bureau. Please try again later.",
                "error": TIMEOUT_ERROR,
            },
        )
    if error.code == NETWORK_ERROR or error.status_code is None:
        return HTTPException(
            status_code=502,
            detail={
                "message": "Network error when connecting to credit bureau. Please try again later.",
                "error": NETWORK_ERROR,
            },
        )
    return HTTPException(
        status_code=error.status_code,
        detail={"message": "Credit check failed", "error": error.body or str(error)},
    )
