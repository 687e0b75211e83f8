"""
Text grouping for stuck detection.

Near-duplicate notes are grouped with a pluggable similarity strategy.
The default is token-set Jaccard similarity: cheap and deterministic. An
embedding-based strategy can be swapped in without changing the detector.
"""

import re
from dataclasses import dataclass, field
from typing import Callable, Generic, List, Protocol, Set, TypeVar

T = TypeVar("T")

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


class TextSimilarity(Protocol):
    """Strategy deciding whether two texts describe the same thing."""

    def is_similar(self, text1: str, text2: str) -> bool:
        ...


def tokenize(text: str) -> Set[str]:
    """Lowercase, strip non-alphanumerics and split on whitespace."""
    return set(_NON_ALNUM.sub("", text.lower()).split())


def jaccard_similarity(set1: Set[str], set2: Set[str]) -> float:
    """Intersection over union of two sets (0 when both are empty)."""
    union = set1 | set2
    if not union:
        return 0.0
    return len(set1 & set2) / len(union)


class JaccardSimilarity:
    """Token-set Jaccard similarity with a fixed threshold."""

    def __init__(self, threshold: float = 0.7):
        self.threshold = threshold

    def score(self, text1: str, text2: str) -> float:
        return jaccard_similarity(tokenize(text1), tokenize(text2))

    def is_similar(self, text1: str, text2: str) -> bool:
        return self.score(text1, text2) >= self.threshold


@dataclass
class Group(Generic[T]):
    """Items sharing a representative (the group's first member)."""

    representative: str
    members: List[T] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.members)


def group_similar(
    items: List[T],
    similarity: TextSimilarity,
    text_of: Callable[[T], str],
) -> List[Group[T]]:
    """
    Greedy single-pass grouping.

    Each item joins the first group whose representative it is similar to,
    otherwise it starts a new group.

    Args:
        items: Items to group, in order
        similarity: Similarity strategy
        text_of: Extracts the comparable text from an item

    Returns:
        Groups in order of creation
    """
    groups: List[Group[T]] = []

    for item in items:
        text = text_of(item)
        for group in groups:
            if similarity.is_similar(text, group.representative):
                group.members.append(item)
                break
        else:
            groups.append(Group(representative=text, members=[item]))

    return groups


def largest_group(groups: List[Group[T]], minimum: int) -> "Group[T] | None":
    """The largest group with at least ``minimum`` members (first wins ties)."""
    best = None
    for group in groups:
        if len(group) >= minimum and (best is None or len(group) > len(best)):
            best = group
    return best
