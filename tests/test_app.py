"""
Tests for the Flask orchestration endpoint.
"""
from unittest.mock import MagicMock

import pytest

from app import SmartAccountHandler
from contracts import encode_approve, encode_swap

from conftest import ACCOUNT_ADDRESS, SWAP_ADDRESS, TOKEN_A, FakeContext, op_hash


def make_client(context=None, context_factory=None):
    factory = context_factory or MagicMock(return_value=context or FakeContext())
    handler = SmartAccountHandler(context_factory=factory)
    handler.app.testing = True
    return handler.app.test_client(), factory


def swap_payload(amount=100):
    return {
        "calls": [
            {"to": TOKEN_A, "data": encode_approve(SWAP_ADDRESS, amount)},
            {"to": SWAP_ADDRESS, "data": encode_swap(amount)},
        ]
    }


@pytest.mark.parametrize("method", ["get", "post"])
def test_missing_configuration_is_500_without_network(method):
    client, factory = make_client()

    response = getattr(client, method)("/api/smartaccount", json=swap_payload())

    assert response.status_code == 500
    assert response.get_json() == {"error": "Missing env vars"}
    factory.assert_not_called()


def test_missing_rpc_only(monkeypatch):
    monkeypatch.setenv("PRIVATE_KEY", "0x" + "11" * 32)
    client, factory = make_client()

    response = client.get("/api/smartaccount")

    assert response.status_code == 500
    factory.assert_not_called()


def test_invalid_configuration_reports_the_bad_value(configured_env, monkeypatch):
    monkeypatch.setenv("PRE_VERIFICATION_GAS", "lots")
    client, factory = make_client()

    response = client.post("/api/smartaccount", json=swap_payload())

    assert response.status_code == 500
    assert response.get_json() == {"error": "Invalid integer for PRE_VERIFICATION_GAS: lots"}
    factory.assert_not_called()


def test_get_returns_account_address(configured_env):
    client, factory = make_client(FakeContext())

    response = client.get("/api/smartaccount")

    assert response.status_code == 200
    assert response.get_json() == {"address": ACCOUNT_ADDRESS}
    factory.assert_called_once()


def test_get_reports_context_errors(configured_env):
    client, _ = make_client(context_factory=MagicMock(side_effect=RuntimeError("factory call reverted")))

    response = client.get("/api/smartaccount")

    assert response.status_code == 500
    assert response.get_json() == {"error": "factory call reverted"}


def test_post_approve_then_swap(configured_env, sleeps):
    context = FakeContext(allowances=[100])
    client, _ = make_client(context)

    response = client.post("/api/smartaccount", json=swap_payload())

    assert response.status_code == 200
    assert response.get_json() == {"userOpHash": op_hash(2)}
    assert [call.to for batch in context.submissions for call in batch] == [TOKEN_A, SWAP_ADDRESS]


def test_post_allowance_not_updated(configured_env, sleeps):
    context = FakeContext(allowances=[0])
    client, _ = make_client(context)

    response = client.post("/api/smartaccount", json=swap_payload())

    assert response.status_code == 400
    assert response.get_json() == {"error": "Allowance not updated"}
    assert len(context.submissions) == 1


def test_post_uses_configured_settle_delay(configured_env, monkeypatch, sleeps):
    monkeypatch.setenv("SETTLE_DELAY_SECONDS", "12")
    client, _ = make_client(FakeContext(allowances=[100]))

    client.post("/api/smartaccount", json=swap_payload())

    assert sleeps == [12.0]


def test_post_single_call(configured_env):
    context = FakeContext()
    client, _ = make_client(context)

    response = client.post("/api/smartaccount", json={"calls": swap_payload()["calls"][:1]})

    assert response.status_code == 200
    assert response.get_json() == {"userOpHash": op_hash(1)}
    assert len(context.submissions) == 1


def test_post_approve_failure(configured_env):
    client, _ = make_client(FakeContext(fail_submissions={0}))

    response = client.post("/api/smartaccount", json=swap_payload())

    assert response.status_code == 500
    assert response.get_json() == {"error": "Approve failed: bundler rejected user operation"}


def test_post_swap_failure(configured_env, sleeps):
    client, _ = make_client(FakeContext(allowances=[100], fail_submissions={1}))

    response = client.post("/api/smartaccount", json=swap_payload())

    assert response.status_code == 500
    assert response.get_json() == {"error": "Swap failed: bundler rejected user operation"}


@pytest.mark.parametrize("body", [{}, {"calls": []}, {"calls": [{"to": "nope", "data": "0x"}]}, {"calls": "x"}])
def test_post_malformed_body(configured_env, body):
    context = FakeContext()
    client, _ = make_client(context)

    response = client.post("/api/smartaccount", json=body)

    assert response.status_code == 500
    assert "error" in response.get_json()
    assert context.submissions == []


def test_health_check():
    client, _ = make_client()

    response = client.get("/health")

    assert response.status_code == 200
    assert response.data == b"OK"
