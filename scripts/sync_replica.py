"""Push queued local edits to the scores API, then refresh the local replica."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import requests
from pydantic.alias_generators import to_camel

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from engines.validation import TransportError, ValidationError
from replica import LocalReplica, SQLiteKeyValueStore
from schemas import PatchOutcome, ScorePatch, StudentRecord
from thresholds import ThresholdConfigError

logger = logging.getLogger("scores.sync")


class ScoresClient:
    """Thin HTTP client for the endpoints the replica needs."""

    def __init__(self, base_url: str, timeout: float = 30.0, session: Optional[Any] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = self.session.request(
                method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs
            )
        except requests.RequestException as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc
        if response.status_code in (400, 404, 422):
            try:
                body = response.json()
            except ValueError:
                body = response.text
            detail = body.get("detail", body) if isinstance(body, dict) else body
            raise ValidationError(f"{method} {path} rejected: {detail}")
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise TransportError(f"{method} {path} failed: {response.status_code}") from exc
        return response.json()

    def fetch_scores(self, subject: str = "math") -> List[StudentRecord]:
        rows = self._request("GET", "/student-scores", params={"subject": subject})
        return [StudentRecord.model_validate(row) for row in rows]

    def fetch_settings(self) -> Dict[str, Any]:
        return self._request("GET", "/settings")

    def send_patch(self, patch: ScorePatch) -> PatchOutcome:
        payload = {
            to_camel(name): value
            for name, value in patch.model_dump(include=patch.model_fields_set).items()
        }
        return PatchOutcome.model_validate(self._request("PATCH", "/student-scores", json=payload))


def sync(replica: LocalReplica, client: ScoresClient, subject: str = "math", pull: bool = True) -> Dict[str, Any]:
    summary: Dict[str, Any] = {"push": replica.flush(client.send_patch)}
    if pull:
        try:
            replica.save_settings(client.fetch_settings())
        except (ValidationError, TransportError, ThresholdConfigError) as exc:
            # Scores are still served without a threshold config
            logger.warning("Keeping local thresholds: %s", exc)
        summary["mirrored"] = replica.mirror(client.fetch_scores(subject), subject=subject)
    return summary


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--url",
        type=str,
        default=os.getenv("SCORES_API_URL", "http://localhost:8000"),
        help="Base URL of the scores API (default: $SCORES_API_URL or http://localhost:8000)",
    )
    parser.add_argument(
        "--replica",
        type=str,
        default=os.getenv("REPLICA_PATH", "replica.db"),
        help="Path to the local replica database (default: $REPLICA_PATH or replica.db)",
    )
    parser.add_argument("--subject", type=str, default="math", help="Subject to mirror (default: math)")
    parser.add_argument(
        "--push-only",
        action="store_true",
        help="Only replay queued edits, do not refresh the mirror",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    store = SQLiteKeyValueStore(args.replica)
    try:
        replica = LocalReplica(store)
        client = ScoresClient(args.url)
        try:
            summary = sync(replica, client, subject=args.subject, pull=not args.push_only)
        except TransportError as exc:
            print(f"Sync failed: {exc}", file=sys.stderr)
            return 2
    finally:
        store.close()

    print(json.dumps(summary, indent=2))
    return 1 if summary["push"]["remaining"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
