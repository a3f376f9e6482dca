"""In-memory challenge registry, keyed by id and grouped by topic."""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Tuple

from .models import Challenge, Difficulty


class ChallengeNotFoundError(LookupError):
    """No challenge with the requested id. Recoverable: stale links and typos end up here."""

    def __init__(self, challenge_id: str):
        self.challenge_id = challenge_id
        super().__init__(f"Unknown challenge id '{challenge_id}'")


class DuplicateChallengeError(ValueError):
    """Two challenge definitions share an id."""


@dataclass(frozen=True, slots=True)
class Topic:
    slug: str
    label: str
    count: int


class ChallengeRegistry:
    """Read-only store of challenge definitions.

    Built once from an iterable of challenges (see ``apps.grader.bank`` for the
    YAML loader) and never mutated afterwards, so concurrent readers need no
    locking. Insertion order is preserved everywhere.
    """

    def __init__(self, challenges: Iterable[Challenge]) -> None:
        by_id: Dict[str, Challenge] = {}
        by_topic: Dict[str, List[Challenge]] = {}
        labels: Dict[str, str] = {}
        for challenge in challenges:
            if challenge.id in by_id:
                raise DuplicateChallengeError(f"Duplicate challenge id '{challenge.id}'")
            by_id[challenge.id] = challenge
            by_topic.setdefault(challenge.topic_slug, []).append(challenge)
            labels.setdefault(challenge.topic_slug, challenge.topic)

        self._by_id = MappingProxyType(by_id)
        self._by_topic = MappingProxyType({slug: tuple(items) for slug, items in by_topic.items()})
        self._slug_for_label = MappingProxyType({label.strip().lower(): slug for slug, label in labels.items()})
        self._labels = MappingProxyType(labels)

    # ------------------------------------------------------------------

    def get(self, challenge_id: str) -> Challenge:
        challenge = self.find(challenge_id)
        if challenge is None:
            raise ChallengeNotFoundError(challenge_id)
        return challenge

    def find(self, challenge_id: str) -> Challenge | None:
        if not isinstance(challenge_id, str):
            return None
        return self._by_id.get(challenge_id.strip())

    def list_by_topic(self, topic: str) -> Tuple[Challenge, ...]:
        """Challenges of one topic in definition order. Accepts a slug or a label."""

        key = (topic or "").strip()
        if key in self._by_topic:
            return self._by_topic[key]
        slug = self._slug_for_label.get(key.lower())
        if slug is None:
            return ()
        return self._by_topic[slug]

    def list_by_difficulty(self, difficulty: Difficulty | str) -> Tuple[Challenge, ...]:
        level = Difficulty.parse(difficulty)
        return tuple(challenge for challenge in self._by_id.values() if challenge.difficulty is level)

    def topics(self) -> Tuple[Topic, ...]:
        return tuple(
            Topic(slug=slug, label=self._labels[slug], count=len(items))
            for slug, items in self._by_topic.items()
        )

    def ids(self) -> Tuple[str, ...]:
        return tuple(self._by_id)

    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._by_id)

    def __iter__(self) -> Iterator[Challenge]:
        return iter(tuple(self._by_id.values()))

    def __contains__(self, challenge_id: object) -> bool:
        return isinstance(challenge_id, str) and challenge_id.strip() in self._by_id


__all__ = ["ChallengeNotFoundError", "ChallengeRegistry", "DuplicateChallengeError", "Topic"]
