from __future__ import annotations

import pytest

from apps.grader.models import Challenge, Difficulty, TestCase
from apps.grader.registry import ChallengeNotFoundError, ChallengeRegistry, DuplicateChallengeError
from apps.grader.rules import ContainsToken


def _challenge(challenge_id: str, topic: str = "Operators", slug: str = "operators", difficulty=Difficulty.EASY) -> Challenge:
    return Challenge(
        id=challenge_id,
        title=challenge_id.replace("-", " ").title(),
        topic=topic,
        topic_slug=slug,
        difficulty=difficulty,
        description="",
        starter_source="fun main() {}",
        solution_source="fun main() { println(1) }",
        expected_output="1",
        test_cases=(TestCase("Prints", ContainsToken("println")),),
    )


@pytest.fixture()
def registry() -> ChallengeRegistry:
    return ChallengeRegistry(
        [
            _challenge("mono-just-hello", "Mono & Flux", "mono-flux"),
            _challenge("map-transform"),
            _challenge("flux-range-sum", "Mono & Flux", "mono-flux"),
            _challenge("zip-combine", difficulty=Difficulty.MEDIUM),
        ]
    )


def test_get_and_find(registry: ChallengeRegistry) -> None:
    assert registry.get("map-transform").id == "map-transform"
    assert registry.get("  map-transform ").id == "map-transform"
    assert registry.find("nope") is None
    assert registry.find(None) is None  # type: ignore[arg-type]


def test_unknown_id_raises_lookup_error(registry: ChallengeRegistry) -> None:
    with pytest.raises(ChallengeNotFoundError) as excinfo:
        registry.get("does-not-exist")
    assert isinstance(excinfo.value, LookupError)
    assert excinfo.value.challenge_id == "does-not-exist"


def test_list_by_topic_keeps_insertion_order(registry: ChallengeRegistry) -> None:
    ids = [challenge.id for challenge in registry.list_by_topic("mono-flux")]
    assert ids == ["mono-just-hello", "flux-range-sum"]
    assert registry.list_by_topic("Mono & Flux") == registry.list_by_topic("mono-flux")
    assert registry.list_by_topic("mono & flux") == registry.list_by_topic("mono-flux")
    assert registry.list_by_topic("unknown") == ()


def test_list_by_difficulty(registry: ChallengeRegistry) -> None:
    assert [challenge.id for challenge in registry.list_by_difficulty("medium")] == ["zip-combine"]
    assert len(registry.list_by_difficulty(Difficulty.EASY)) == 3
    assert registry.list_by_difficulty("Hard") == ()


def test_topics_and_ids(registry: ChallengeRegistry) -> None:
    topics = registry.topics()
    assert [(topic.slug, topic.count) for topic in topics] == [("mono-flux", 2), ("operators", 2)]
    assert topics[0].label == "Mono & Flux"
    assert registry.ids() == ("mono-just-hello", "map-transform", "flux-range-sum", "zip-combine")
    assert len(registry) == 4
    assert "zip-combine" in registry
    assert 42 not in registry
    assert [challenge.id for challenge in registry] == list(registry.ids())


def test_duplicate_ids_rejected() -> None:
    with pytest.raises(DuplicateChallengeError):
        ChallengeRegistry([_challenge("map-transform"), _challenge("map-transform")])


def test_difficulty_ordering() -> None:
    assert Difficulty.EASY < Difficulty.MEDIUM < Difficulty.HARD
    assert sorted([Difficulty.HARD, Difficulty.EASY, Difficulty.MEDIUM]) == [
        Difficulty.EASY,
        Difficulty.MEDIUM,
        Difficulty.HARD,
    ]
    assert Difficulty.parse(" hard ") is Difficulty.HARD
    with pytest.raises(ValueError):
        Difficulty.parse("impossible")
