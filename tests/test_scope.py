from __future__ import annotations

import pytest

from portal.concerns.scope import (
    DepartmentMatch,
    DepartmentScope,
    MatchMode,
    build_scope,
    department_visible,
    filter_visible,
    is_visible_to,
)
from portal.core.config import Settings
from portal.dependencies.auth import Surface
from portal.dependencies.concerns import scope_for_surface

MOTORPOOL = DepartmentScope.containing("motorpool", "shuttle")
MERCHANT = DepartmentScope.exactly("Merchant Office")


def test_motorpool_sees_shuttle_departments(make_concern):
    concern = make_concern(department="NU Shuttle Service")

    assert is_visible_to(concern, MOTORPOOL)
    assert not is_visible_to(concern, MERCHANT)
    assert is_visible_to(concern, DepartmentScope.all())


def test_merchant_scope_is_exact_and_case_insensitive(make_concern):
    assert is_visible_to(make_concern(department="merchant office"), MERCHANT)
    assert is_visible_to(make_concern(department="  Merchant Office "), MERCHANT)
    assert not is_visible_to(make_concern(department="Merchant Office Annex"), MERCHANT)


@pytest.mark.parametrize("department", [None, ""])
def test_missing_department_only_visible_to_wildcard(make_concern, department):
    concern = make_concern(department=department)

    assert not is_visible_to(concern, MOTORPOOL)
    assert not is_visible_to(concern, MERCHANT)
    assert is_visible_to(concern, DepartmentScope.all())


def test_contains_match_is_case_insensitive():
    match = DepartmentMatch("SHUTTLE", MatchMode.CONTAINS)

    assert match.matches("nu shuttle service")
    assert not match.matches("Registrar")


def test_scope_requires_predicates_or_wildcard():
    with pytest.raises(ValueError):
        DepartmentScope()


def test_build_scope_combines_modes():
    scope = build_scope(exact=["Cashier"], contains=["motorpool"])

    assert department_visible("cashier", scope)
    assert not department_visible("Cashier Window 2", scope)
    assert department_visible("Motorpool Dispatch", scope)


def test_filter_visible_keeps_order(make_concern):
    concerns = [
        make_concern(id="AST-1", department="Motorpool"),
        make_concern(id="AST-2", department="Merchant Office"),
        make_concern(id="AST-3", department="NU Shuttle Service"),
    ]

    assert [item.id for item in filter_visible(concerns, MOTORPOOL)] == ["AST-1", "AST-3"]


def test_scope_for_surface_uses_settings():
    settings = Settings(merchant_departments=("Merchant Office",), motorpool_departments=("motorpool", "shuttle"))

    assert scope_for_surface(Surface.SYSAD, settings).wildcard
    assert department_visible("Merchant Office", scope_for_surface(Surface.MERCHANT, settings))
    assert department_visible("NU Shuttle Service", scope_for_surface(Surface.MOTORPOOL, settings))
    assert not department_visible("NU Shuttle Service", scope_for_surface(Surface.MERCHANT, settings))


def test_treasury_surface_matches_cash_desks():
    scope = scope_for_surface(Surface.TREASURY, Settings())

    assert not scope.wildcard
    assert department_visible("Treasury Office", scope)
    assert department_visible("Cashier Window 2", scope)
    assert not department_visible("NU Shuttle Service", scope)
