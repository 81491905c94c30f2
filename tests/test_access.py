from __future__ import annotations

import pytest

from fuel_invoicing.access import (
    Actor,
    allow_identities,
    any_of,
    deny_all,
    policy_from_env,
    require_roles,
)


def test_allow_identities_matches_id_or_email_case_insensitively():
    policy = allow_identities(["Ops@Station.example", "op-7"])
    assert policy(Actor(id="x", email="ops@station.example"))
    assert policy(Actor(id="OP-7"))
    assert not policy(Actor(id="op-8"))
    assert not policy(Actor(id="op-8", email=None))


def test_require_roles_and_any_of():
    admin = require_roles("price-admin")
    policy = any_of(allow_identities(["boss"]), admin)
    assert policy(Actor(id="boss"))
    assert policy(Actor(id="clerk", roles=frozenset({"price-admin"})))
    assert not policy(Actor(id="clerk", roles=frozenset({"cashier"})))
    assert not deny_all(Actor(id="boss"))


def test_policy_from_env_defaults_to_price_admin_role(monkeypatch: pytest.MonkeyPatch):
    policy = policy_from_env()
    assert policy(Actor(id="anyone", roles=frozenset({"price-admin"})))
    assert not policy(Actor(id="anyone"))


def test_policy_from_env_reads_operators_and_roles(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("FUEL_LEDGER_OPERATORS", "owner@station.example, op-1")
    monkeypatch.setenv("FUEL_LEDGER_ROLES", "manager")
    policy = policy_from_env()
    assert policy(Actor(id="op-1"))
    assert policy(Actor(id="z", email="OWNER@station.example"))
    assert policy(Actor(id="z", roles=frozenset({"manager"})))
    assert not policy(Actor(id="z", roles=frozenset({"price-admin"})))
