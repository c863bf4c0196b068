"""OS runtime-permission bridge.

Warden never requests OS permissions itself; it only asks the host whether a
permission is already held, so callers know when to prompt the user before
requesting a capability that implies one.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol, runtime_checkable

from .capabilities import Capability, os_permissions_of


@runtime_checkable
class OsPermissionBridge(Protocol):
    def is_os_permission_granted(self, permission_id: str) -> bool: ...


class StaticOsPermissionBridge:
    """Bridge answering from a fixed set, for tests and headless hosts."""

    def __init__(self, granted: Iterable[str] = ()):
        self._granted = set(granted)

    def is_os_permission_granted(self, permission_id: str) -> bool:
        return permission_id in self._granted

    def grant(self, permission_id: str) -> None:
        self._granted.add(permission_id)

    def revoke(self, permission_id: str) -> None:
        self._granted.discard(permission_id)


def missing_os_permissions(bridge: OsPermissionBridge, capabilities: Iterable[Capability]) -> list[str]:
    """OS permissions implied by ``capabilities`` that the host has not granted.

    Sorted and de-duplicated.
    """
    needed = {perm for capability in capabilities for perm in os_permissions_of(capability)}
    return sorted(perm for perm in needed if not bridge.is_os_permission_granted(perm))
