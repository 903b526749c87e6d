import logging
import os
import random
from typing import Optional, Protocol, Sequence

from app.models import Dispatcher, ServiceRequestRecord
from app.services.errors import NoDispatcherAvailableError

logger = logging.getLogger(__name__)


class AssignmentPolicy(Protocol):
    name: str

    def pick(self, request: ServiceRequestRecord, directory: Sequence[Dispatcher]) -> str:
        ...


class RandomAssignmentPolicy:
    """Uniform pick over the whole directory. Capabilities are ignored."""

    name = "random"

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random()

    def pick(self, request: ServiceRequestRecord, directory: Sequence[Dispatcher]) -> str:
        if not directory:
            raise NoDispatcherAvailableError("No dispatchers are available right now")
        return self._rng.choice(list(directory)).id


class CapabilityAssignmentPolicy:
    """Random pick among dispatchers that list the request's service id.

    Falls back to the whole directory when nobody supports the service, so a
    request is never left unassigned while any dispatcher exists.
    """

    name = "capability"

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random()

    def pick(self, request: ServiceRequestRecord, directory: Sequence[Dispatcher]) -> str:
        if not directory:
            raise NoDispatcherAvailableError("No dispatchers are available right now")
        capable = [d for d in directory if request.service_id in d.supported_service_ids]
        if not capable:
            logger.info("No dispatcher supports %s; falling back to full directory", request.service_id)
            capable = list(directory)
        return self._rng.choice(capable).id


POLICIES = {
    RandomAssignmentPolicy.name: RandomAssignmentPolicy,
    CapabilityAssignmentPolicy.name: CapabilityAssignmentPolicy,
}


def policy_from_env() -> AssignmentPolicy:
    name = os.getenv("ASSIGNMENT_POLICY", RandomAssignmentPolicy.name).strip().lower()
    policy_cls = POLICIES.get(name)
    if policy_cls is None:
        logger.warning("Unknown ASSIGNMENT_POLICY=%r; using %s", name, RandomAssignmentPolicy.name)
        policy_cls = RandomAssignmentPolicy
    return policy_cls()
