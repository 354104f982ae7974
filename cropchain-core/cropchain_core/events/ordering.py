"""Lifecycle ordering policies.

The ledger itself accepts any event on any stream at any time.  Deployments
that want the field stages of a crop enforced select
:class:`CropLifecycleOrdering`; the check runs inside the per-stream critical
section so it sees the same chain the new block will link to.
"""
from typing import Iterable

from cropchain_core.errors import OrderingViolationError
from cropchain_core.ledger.block import EventName


class PermissiveOrdering:
    """Accept every event.  The default."""

    name = "permissive"
    needs_history = False

    def check(self, event_name: EventName, recorded: Iterable[str]) -> None:
        return None


class CropLifecycleOrdering:
    """Require each field stage's predecessor to already be on the chain."""

    name = "crop-lifecycle"
    needs_history = True

    #: event -> events of which at least one must already be recorded
    PREREQUISITES: dict[EventName, tuple[EventName, ...]] = {
        EventName.TILLERING: (EventName.SOWING,),
        EventName.FLOWERING: (EventName.TILLERING,),
        EventName.GRAIN_FILLING: (EventName.FLOWERING,),
        EventName.HARVEST: (EventName.SOWING,),
        EventName.QR_GENERATED: (EventName.CERTIFICATE_GENERATED,),
    }

    def check(self, event_name: EventName, recorded: Iterable[str]) -> None:
        required = self.PREREQUISITES.get(event_name)
        if not required:
            return
        seen = set(recorded)
        if not any(r.value in seen for r in required):
            names = ", ".join(r.value for r in required)
            raise OrderingViolationError(
                f"{event_name.value} requires a prior {names} event on this stream"
            )


_POLICIES = {
    PermissiveOrdering.name: PermissiveOrdering,
    CropLifecycleOrdering.name: CropLifecycleOrdering,
}


def get_policy(name: str) -> "PermissiveOrdering | CropLifecycleOrdering":
    try:
        return _POLICIES[name]()
    except KeyError:
        raise ValueError(
            f"Unknown ordering policy {name!r}; expected one of {sorted(_POLICIES)}"
        ) from None
