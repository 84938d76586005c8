"""Department scoping of concern visibility for the admin surfaces."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

from .models import Concern


class MatchMode(str, Enum):
    EXACT = "exact"
    CONTAINS = "contains"


def _fold(value: str) -> str:
    return value.strip().casefold()


@dataclass(frozen=True, slots=True)
class DepartmentMatch:
    """Case-insensitive predicate over a concern's department."""

    value: str
    mode: MatchMode = MatchMode.CONTAINS

    def matches(self, department: str | None) -> bool:
        if not department:
            return False
        needle = _fold(self.value)
        haystack = _fold(department)
        if self.mode is MatchMode.EXACT:
            return haystack == needle
        return needle in haystack


@dataclass(frozen=True, slots=True)
class DepartmentScope:
    """Set of departments an admin surface may see.

    A wildcard scope sees every concern; otherwise a concern is visible when
    its department satisfies at least one predicate.
    """

    predicates: tuple[DepartmentMatch, ...] = ()
    wildcard: bool = False

    def __post_init__(self) -> None:
        if not self.wildcard and not self.predicates:
            raise ValueError("A department scope needs a wildcard or at least one predicate")

    @classmethod
    def all(cls) -> "DepartmentScope":
        return cls(wildcard=True)

    @classmethod
    def containing(cls, *values: str) -> "DepartmentScope":
        return cls(predicates=tuple(DepartmentMatch(value, MatchMode.CONTAINS) for value in values))

    @classmethod
    def exactly(cls, *values: str) -> "DepartmentScope":
        return cls(predicates=tuple(DepartmentMatch(value, MatchMode.EXACT) for value in values))


def department_visible(department: str | None, scope: DepartmentScope) -> bool:
    if scope.wildcard:
        return True
    return any(predicate.matches(department) for predicate in scope.predicates)


def is_visible_to(concern: Concern, scope: DepartmentScope) -> bool:
    return department_visible(concern.department, scope)


def filter_visible(concerns: Iterable[Concern], scope: DepartmentScope) -> list[Concern]:
    return [concern for concern in concerns if is_visible_to(concern, scope)]


def build_scope(exact: Sequence[str] = (), contains: Sequence[str] = ()) -> DepartmentScope:
    """Combine exact and substring predicates into a single scope."""

    predicates = tuple(DepartmentMatch(value, MatchMode.EXACT) for value in exact) + tuple(
        DepartmentMatch(value, MatchMode.CONTAINS) for value in contains
    )
    return DepartmentScope(predicates=predicates)
