"""GraphQL client for the gameplay data provider.

Fetches one adventurer and its ordered event log. The adventurer is read
from the provider's decoded model; events are paged with cursors up to
``max_events``.
"""

from __future__ import annotations

from typing import Any

import httpx
from pydantic import ValidationError as SchemaValidationError

from ..config import GameplayProviderConfig, settings
from ..errors import NotFoundError, ProviderError, ValidationError
from ..logging import logger
from ..models.schemas import Adventurer, GameEvent, GameplayRecord

ADVENTURER_QUERY = """
query GetAdventurer($id: String!) {
  adventurer(id: $id) {
    id
    name
    health
    xp
    level
    gold
    stats { strength dexterity vitality intelligence wisdom charisma }
    equipment {
      weapon { id name type }
      chest { id name type }
      head { id name type }
      waist { id name type }
      foot { id name type }
      hand { id name type }
      neck { id name type }
      ring { id name type }
    }
  }
}
"""

EVENTS_QUERY = """
query GetGameEvents($id: String!, $first: Int!, $after: String) {
  gameEvents(adventurerId: $id, first: $first, after: $after) {
    edges {
      node { id eventType turnNumber timestamp data }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""

LAST_EVENT_QUERY = """
query GetLastGameEvent($id: String!) {
  gameEvents(adventurerId: $id, last: 1) {
    edges {
      node { id eventType turnNumber timestamp data }
    }
  }
}
"""


class GraphQLResponseError(ProviderError):
    """The provider answered, but with a GraphQL ``errors`` array."""


class GameplayClient:
    """Synchronous client; one instance per worker."""

    def __init__(
        self,
        config: GameplayProviderConfig | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.config = config or settings.gameplay_config
        self.client = client or httpx.Client(
            headers={"User-Agent": "saga-worker/1.0", "Content-Type": "application/json"},
            timeout=self.config.request_timeout_seconds,
        )

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> GameplayClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _post(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self.client.post(
                self.config.graphql_url,
                json={"query": query, "variables": variables},
            )
        except httpx.TimeoutException as exc:
            raise ProviderError(f"gameplay provider timed out: {exc}", stage="fetch") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"gameplay provider unreachable: {exc}", stage="fetch") from exc

        if response.status_code == 404:
            raise NotFoundError("gameplay provider endpoint returned 404", stage="fetch")
        if response.status_code == 429 or response.status_code >= 500:
            raise ProviderError(
                f"gameplay provider returned {response.status_code}", stage="fetch"
            )
        if response.status_code >= 400:
            raise ValidationError(
                f"gameplay provider rejected request ({response.status_code})", stage="fetch"
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderError("gameplay provider returned invalid JSON", stage="fetch") from exc
        if body.get("errors"):
            raise GraphQLResponseError(f"GraphQL error: {body['errors']}", stage="fetch")
        return body.get("data") or {}

    def fetch_adventurer(self, game_id: str) -> Adventurer:
        data = self._post(ADVENTURER_QUERY, {"id": game_id})
        node = data.get("adventurer")
        if not node:
            raise NotFoundError(f"Game ID not found: {game_id}", stage="fetch")
        try:
            return Adventurer.model_validate(node)
        except SchemaValidationError as exc:
            raise ProviderError(f"adventurer payload malformed: {exc}", stage="fetch") from exc

    def _parse_edges(self, game_id: str, edges: list[dict[str, Any]]) -> list[GameEvent]:
        parsed: list[GameEvent] = []
        for edge in edges:
            try:
                parsed.append(GameEvent.model_validate(edge["node"]))
            except (KeyError, SchemaValidationError) as exc:
                logger.warning("gameplay_event_skipped", game_id=game_id, error=str(exc))
        return parsed

    def fetch_last_event(self, game_id: str) -> GameEvent | None:
        data = self._post(LAST_EVENT_QUERY, {"id": game_id})
        edges = (data.get("gameEvents") or {}).get("edges") or []
        parsed = self._parse_edges(game_id, edges)
        return parsed[-1] if parsed else None

    def fetch_events(self, game_id: str) -> list[GameEvent]:
        """Page through the event log, oldest first, up to ``max_events``.

        A log longer than the cap keeps its opening events and always ends
        with the provider's final event, so the death turn survives truncation.
        """
        limit = self.config.max_events
        events: list[GameEvent] = []
        cursor: str | None = None
        truncated = False
        while len(events) < limit:
            first = min(self.config.event_page_size, limit - len(events))
            data = self._post(EVENTS_QUERY, {"id": game_id, "first": first, "after": cursor})
            connection = data.get("gameEvents") or {}
            edges = connection.get("edges") or []
            events.extend(self._parse_edges(game_id, edges))
            page_info = connection.get("pageInfo") or {}
            cursor = page_info.get("endCursor")
            if not edges or not page_info.get("hasNextPage") or not cursor:
                break
        else:
            truncated = True
        if len(events) > limit:
            truncated = True

        if not truncated:
            return events
        last = self.fetch_last_event(game_id)
        if last is None or any(event.id == last.id for event in events):
            return events[:limit]
        logger.info("gameplay_events_truncated", game_id=game_id, kept=limit, last_event=last.id)
        return events[: limit - 1] + [last]

    def fetch(self, game_id: str) -> GameplayRecord:
        """Return the adventurer and its event log for *game_id*."""
        adventurer = self.fetch_adventurer(game_id)
        try:
            events = self.fetch_events(game_id)
        except GraphQLResponseError as exc:
            # Some deployments do not expose the event model; stats alone still tell a story.
            logger.warning("gameplay_events_unavailable", game_id=game_id, error=exc.message)
            events = []
        if len(events) < 10:
            logger.info("gameplay_events_sparse", game_id=game_id, events=len(events))
        logger.info("gameplay_fetched", game_id=game_id, events=len(events), level=adventurer.level)
        return GameplayRecord(game_id=game_id, adventurer=adventurer, events=events)
