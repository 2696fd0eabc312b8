"""
PKCE support for the proxied token exchange.

The relay never stores the code verifier: the client sends it to our token
endpoint and PKCETransport adds it to the form body of the outgoing request
to the provider's token endpoint.
"""

from urllib.parse import parse_qsl, urlencode

import httpx


class PKCETransport(httpx.AsyncBaseTransport):
    """
    httpx transport wrapper that appends `code_verifier` to token requests.

    Only POST requests whose path contains "/token" are modified, and a
    `code_verifier` already present in the body is left alone.
    """

    def __init__(self, code_verifier: str, base: httpx.AsyncBaseTransport | None = None):
        self.code_verifier = code_verifier
        self._base = base or httpx.AsyncHTTPTransport()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST" and "/token" in request.url.path and self.code_verifier:
            request = await self._with_verifier(request)
        return await self._base.handle_async_request(request)

    async def _with_verifier(self, request: httpx.Request) -> httpx.Request:
        body = (await request.aread()).decode("utf-8")
        fields = parse_qsl(body, keep_blank_values=True)
        if any(key == "code_verifier" and value for key, value in fields):
            return request

        fields = [(key, value) for key, value in fields if key != "code_verifier"]
        fields.append(("code_verifier", self.code_verifier))

        headers = request.headers.copy()
        if "content-length" in headers:
            del headers["content-length"]
        return httpx.Request(
            request.method,
            request.url,
            headers=headers,
            content=urlencode(fields).encode("utf-8"),
            extensions=request.extensions,
        )

    async def aclose(self) -> None:
        await self._base.aclose()
