import os
import random
import sys
from collections import Counter

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from app.models import Dispatcher, ServiceRequestRecord
from app.services import assignment
from app.services.assignment import CapabilityAssignmentPolicy, RandomAssignmentPolicy, policy_from_env
from app.services.errors import NoDispatcherAvailableError


def _request(service_id="wifi-fix"):
    return ServiceRequestRecord(
        id="req_test",
        user_id="cust-1",
        dependant_id="dep_1",
        parent_name="Mona",
        location="Byblos",
        service_id=service_id,
        service_title="Wi-Fi Troubleshooting",
        category="IT & TECH",
        expat_price=30,
        runner_payout=20,
        status="requested",
        created_at="2026-01-01T00:00:00+00:00",
        updated_at="2026-01-01T00:00:00+00:00",
    )


DIRECTORY = [
    Dispatcher(id="disp-1", name="Samer", supported_service_ids=["solar-check"]),
    Dispatcher(id="disp-2", name="Rami", supported_service_ids=["wifi-fix"]),
    Dispatcher(id="disp-3", name="Nadim"),
]


def test_random_policy_always_picks_from_directory():
    policy = RandomAssignmentPolicy(rng=random.Random(3))
    picks = Counter(policy.pick(_request(), DIRECTORY) for _ in range(300))

    assert set(picks) == {"disp-1", "disp-2", "disp-3"}
    # Roughly uniform; every dispatcher gets a fair share.
    assert min(picks.values()) > 60


def test_random_policy_rejects_empty_directory():
    with pytest.raises(NoDispatcherAvailableError):
        RandomAssignmentPolicy().pick(_request(), [])


def test_capability_policy_prefers_supporting_dispatchers():
    policy = CapabilityAssignmentPolicy(rng=random.Random(1))

    picks = {policy.pick(_request("wifi-fix"), DIRECTORY) for _ in range(50)}

    assert picks == {"disp-2"}


def test_capability_policy_falls_back_to_whole_directory():
    policy = CapabilityAssignmentPolicy(rng=random.Random(1))

    picks = {policy.pick(_request("grocery"), DIRECTORY) for _ in range(100)}

    assert picks == {"disp-1", "disp-2", "disp-3"}


def test_policy_from_env(monkeypatch):
    monkeypatch.setenv("ASSIGNMENT_POLICY", "capability")
    assert isinstance(policy_from_env(), CapabilityAssignmentPolicy)

    monkeypatch.setenv("ASSIGNMENT_POLICY", "round-robin")
    assert isinstance(policy_from_env(), RandomAssignmentPolicy)

    monkeypatch.delenv("ASSIGNMENT_POLICY")
    assert policy_from_env().name == "random"
    assert set(assignment.POLICIES) == {"random", "capability"}
