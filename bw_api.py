"""StarCraft: Remastered local web API client (profile + matchmaker lookups)."""

from urllib.parse import quote

import requests

GATEWAY_NAMES = {10: "US West", 11: "US East", 20: "Europe", 30: "Korea", 45: "Asia"}


def gateway_label(gateway: int) -> str:
    return GATEWAY_NAMES.get(gateway, "Unknown")


class BwWebApi:
    """Raw JSON access to the game client's /web-api/ endpoints.

    Payloads are returned as decoded JSON; interpretation belongs to the
    resolver. HTTP and transport errors surface as requests exceptions.
    """

    def __init__(self, base_url: str, session: requests.Session | None = None,
                 timeout=(5, 30)):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def get_headers(self):
        return {"Accept": "application/json"}

    def _get_json(self, path: str, params=None):
        resp = self.session.get(f"{self.base_url}{path}", headers=self.get_headers(),
                                params=params, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def scr_profile(self, toon: str, gateway: int) -> dict:
        """Profile payload for a toon; includes up to 20 recent `replays`."""
        path = f"/web-api/v2/aurora-profile-by-toon/{quote(toon, safe='')}/{gateway}"
        return self._get_json(path, params={"request_flags": "scr_profile"})

    def matchmaker_player_info(self, link: str) -> dict:
        """Per-match detail keyed by a replay `link`; carries the download URLs."""
        path = f"/web-api/v1/matchmaker-gameinfo-playerinfo/{quote(link, safe='')}"
        return self._get_json(path)
