import json
import urllib.error
import urllib.parse
import urllib.request
from typing import Optional

from config import STATS_TIMEOUT_S
from errors import NetworkError
from sr_types import ScoreStats


def parse_stats(data: dict) -> ScoreStats:
    return ScoreStats(
        min_score=data.get("min_score"),
        mean_score=data.get("mean_score"),
        max_score=data.get("max_score"),
        recent_scores=tuple(data.get("most_recent_scores") or ()),
    )


class HttpStatsGateway:
    """
    Talks to the score service:
      GET  <base>/score/get/<item>/<qpm>/<profile>          -> stats JSON
      POST <base>/score/set/<item>/<score>/<qpm>/<profile>  -> ack
    Any transport or decoding failure is raised as NetworkError.
    """

    def __init__(self, base_url: str, timeout: float = STATS_TIMEOUT_S):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _url(self, *parts) -> str:
        return self.base_url + "/" + "/".join(urllib.parse.quote(str(p), safe="") for p in parts)

    def _request(self, url: str, method: str = "GET") -> bytes:
        req = urllib.request.Request(url, method=method)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                return resp.read()
        except (urllib.error.URLError, OSError) as e:
            raise NetworkError(f"{method} {url} failed: {e}") from e

    def fetch_stats(self, item_id: str, qpm: int, profile: str) -> Optional[ScoreStats]:
        body = self._request(self._url("score", "get", item_id, qpm, profile))
        try:
            data = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise NetworkError(f"Bad stats payload for {item_id}: {e}") from e
        if not isinstance(data, dict):
            raise NetworkError(f"Bad stats payload for {item_id}: {data!r}")
        return parse_stats(data)

    def record(self, item_id: str, score: int, qpm: int, profile: str) -> None:
        self._request(self._url("score", "set", item_id, score, qpm, profile), method="POST")


class NullStatsGateway:
    """Used when no score service is configured."""

    def fetch_stats(self, item_id: str, qpm: int, profile: str) -> Optional[ScoreStats]:
        return None

    def record(self, item_id: str, score: int, qpm: int, profile: str) -> None:
        pass
