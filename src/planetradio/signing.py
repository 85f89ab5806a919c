from __future__ import annotations

import time
from typing import Callable, Dict, List, Optional
from urllib.parse import unquote_plus, urlencode, urlsplit, urlunsplit


PLAYER_ID = "BMUK_inpage_html5"


def auth_params(user_id: str, *, epoch: int, region: str = "GB") -> Dict[str, str]:
    return {
        "direct": "false",
        "listenerid": user_id,
        "aw_0_1st.bauer_listenerid": user_id,
        "aw_0_1st.playerid": PLAYER_ID,
        "aw_0_1st.skey": str(epoch),
        "aw_0_1st.bauer_loggedin": "true",
        "user_id": user_id,
        "aw_0_1st.bauer_user_id": user_id,
        "region": region,
    }


def merge_query(url: str, params: Dict[str, str]) -> str:
    """Return ``url`` with ``params`` set, replacing any same-named keys.

    Unrelated parameters are kept byte for byte in their original position;
    the new ones are appended, encoded, in ``params`` order.
    """
    parts = urlsplit(url)
    kept: List[str] = [
        field for field in parts.query.split("&")
        if field and unquote_plus(field.partition("=")[0]) not in params
    ]
    if params:
        kept.append(urlencode(params))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "&".join(kept), parts.fragment))


class AuthenticatedUrlBuilder:
    """Adds the listener/session query parameters the stream hosts expect."""

    def __init__(self, *, region: str = "GB", clock: Optional[Callable[[], float]] = None) -> None:
        self.region = region
        self._clock = clock or time.time

    def sign(self, url: str, user_id: str) -> str:
        if not user_id:
            raise ValueError("user_id is required to sign a stream URL")
        epoch = int(self._clock())
        return merge_query(url, auth_params(str(user_id), epoch=epoch, region=self.region))
