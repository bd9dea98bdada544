"""
Client for the sibling serverless functions (story generation, product
creation, image stylizing, social posting).

Functions are called with the service role key, like the scheduler calls us.
"""

import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from musicscan.config import settings
from musicscan.services.http_client import UpstreamClient, UpstreamError
from musicscan.services.steps import SchemaValidationError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def parse_response(function_name: str, data: Any, schema: type[M]) -> M:
    """Validate a function response, raising SchemaValidationError on mismatch."""
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        missing = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise SchemaValidationError(
            f"{function_name} returned an unexpected response (invalid: {missing})"
        ) from e


class FunctionsClient:
    """Invokes functions at ``{functions_base_url}/{name}``."""

    def __init__(
        self,
        base_url: str | None = None,
        service_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        **client_options: Any,
    ):
        key = service_key if service_key is not None else settings.service_role_key
        headers = {"Content-Type": "application/json"}
        if key:
            headers["Authorization"] = f"Bearer {key}"
            headers["apikey"] = key
        self.http = UpstreamClient(
            base_url or settings.functions_base_url,
            headers=headers,
            transport=transport,
            **client_options,
        )

    async def invoke(
        self,
        name: str,
        body: dict[str, Any] | None = None,
        schema: type[M] | None = None,
    ) -> Any:
        """
        Call a function and return its JSON body, or the validated schema.

        A body of the form ``{"error": "..."}`` is an upstream failure even
        with a 2xx status.
        """
        logger.debug(f"Invoking function {name}")
        data = await self.http.post_json(name, body)

        if isinstance(data, dict) and data.get("error") and data.get("success") is not True:
            raise UpstreamError(f"{name} failed: {data['error']}")

        if schema is None:
            return data
        return parse_response(name, data, schema)


_client: FunctionsClient | None = None


def get_functions_client() -> FunctionsClient:
    global _client
    if _client is None:
        _client = FunctionsClient()
    return _client


def set_functions_client(client: FunctionsClient | None) -> None:
    """Replace the shared client (tests, alternative deployments)."""
    global _client
    _client = client
