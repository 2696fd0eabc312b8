"""
Wire encoding of the OAuth `state` parameter in proxy mode.

With a fixed redirect URI the provider always calls us back, so the client's
own state and redirect URI travel inside the state we send to the provider:

    base64url(json({"state": "<client state>", "redirect": "<client redirect>"}))

Older deployments used `<client state>|<client redirect>`; that form is still
accepted on decode. No server-side session store is involved.
"""

import base64
import binascii
import json
from dataclasses import dataclass


@dataclass(frozen=True)
class FlowState:
    state: str
    redirect: str

    def encode(self) -> str:
        payload = json.dumps({"state": self.state, "redirect": self.redirect})
        return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")


def decode_state(value: str) -> FlowState | None:
    """Decode the structured form; None if `value` is not one."""
    if not value:
        return None
    padded = value + "=" * (-len(value) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError):
        return None

    if not isinstance(data, dict):
        return None
    state = data.get("state")
    redirect = data.get("redirect")
    if not isinstance(state, str) or not isinstance(redirect, str):
        return None
    return FlowState(state=state, redirect=redirect)


def decode_legacy_state(value: str) -> FlowState | None:
    """Decode `state|redirect`: exactly one pipe, both parts non-empty."""
    if value.count("|") != 1:
        return None
    state, redirect = value.split("|")
    if not state or not redirect:
        return None
    return FlowState(state=state, redirect=redirect)


def parse_state(value: str) -> FlowState | None:
    """Structured form first, then the legacy pipe form."""
    return decode_state(value) or decode_legacy_state(value)
