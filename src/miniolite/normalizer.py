"""Response normalization: raw HTTP responses to result envelopes."""

import http
import logging
from typing import Any

from miniolite.models import NormalizedResponse, RawResponse, Result
from miniolite.xml_utils import flatten, parse_xml

logger = logging.getLogger(__name__)

CODE_SUCCESS = 200
CODE_DEL_SUCCESS = 204


class ResponseNormalizer:
    """Parses raw responses and classifies them against a success code."""

    def normalize(
        self,
        raw: RawResponse,
        success_code: int = CODE_SUCCESS,
        *,
        parse_body: bool = True,
    ) -> NormalizedResponse:
        """Parse a raw response body into plain mappings.

        Args:
            raw: The transport's response.
            success_code: The status the operation expects on success.
            parse_body: When False, a successful body is kept as raw bytes
                (object downloads). Error bodies are always parsed.

        Returns:
            The normalized response.
        """
        if not parse_body and raw.status_code == success_code:
            data: Any = raw.body
        else:
            data = flatten(parse_xml(raw.body))
        return NormalizedResponse(code=raw.status_code, headers=dict(raw.headers), data=data)

    def to_result(
        self,
        normalized: NormalizedResponse,
        success_code: int = CODE_SUCCESS,
        message: str = "OK",
        with_headers: bool = False,
    ) -> Result:
        """Classify a normalized response as a success or error envelope.

        Args:
            normalized: The normalized response.
            success_code: The status that counts as success.
            message: Message for the success envelope.
            with_headers: Return the whole response (code, headers, data) as
                the payload instead of only the data.

        Returns:
            A success envelope, or an error envelope carrying the service's
            error message, the status code and the parsed error body.
        """
        headers = normalized.headers if with_headers else None
        if normalized.code == success_code:
            payload = normalized.to_dict() if with_headers else normalized.data
            return Result.success(message, payload, code=normalized.code, headers=headers)

        error_body = normalized.data if isinstance(normalized.data, dict) else {}
        error_message = _error_message(normalized.code, error_body)
        logger.info(
            "Request failed with status %d: %s",
            normalized.code,
            error_message,
            extra={"status": normalized.code},
        )
        return Result.error(error_message, error_body, code=normalized.code, headers=headers)

    def classify(
        self,
        raw: RawResponse,
        success_code: int = CODE_SUCCESS,
        message: str = "OK",
        with_headers: bool = False,
        parse_body: bool = True,
    ) -> Result:
        """Normalize and classify in one step."""
        normalized = self.normalize(raw, success_code, parse_body=parse_body)
        return self.to_result(normalized, success_code, message, with_headers)


def _error_message(code: int, body: dict[str, Any]) -> str:
    message = body.get("Message")
    if isinstance(message, str) and message:
        return message
    try:
        return http.HTTPStatus(code).phrase
    except ValueError:
        return f"Request failed with status {code}"
