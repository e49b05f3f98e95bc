"""Freshness-based probe selection and per-cycle group dedup"""
import asyncio
import threading
from typing import Dict, Iterable, List, Optional, Set

from ..storage.models import AddressBinding


def is_binding_trusted(binding: AddressBinding, now_ts: int, reverify_seconds: int) -> bool:
    """True if the address has a group and the binding is within the reverify horizon"""
    if not binding.group_name:
        return False
    return now_ts - binding.group_last_checked <= reverify_seconds


def needs_probe(
    binding: AddressBinding,
    now_ts: int,
    reverify_seconds: int,
    cache_seconds: int
) -> bool:
    """
    Decide whether an address must be probed this cycle
    
    An address needs a probe when its group is unknown, its binding is older
    than the reverify horizon, or its group's schedule is missing or older
    than the cache horizon.
    """
    if not is_binding_trusted(binding, now_ts, reverify_seconds):
        return True
    if binding.schedule_last_checked is None:
        return True
    return now_ts - binding.schedule_last_checked > cache_seconds


def select_addresses_for_check(
    bindings: Iterable[AddressBinding],
    now_ts: int,
    reverify_seconds: int,
    cache_seconds: int
) -> List[AddressBinding]:
    """Filter bindings down to those needing a probe, keeping their order"""
    return [
        binding for binding in bindings
        if needs_probe(binding, now_ts, reverify_seconds, cache_seconds)
    ]


class GroupLedger:
    """
    Groups resolved during one cycle, plus groups with a probe in flight.
    
    A unit that believes its address belongs to group G calls acquire(G)
    before probing. The first caller gets the claim; later callers wait until
    it is released and then either skip (G got resolved) or take the claim
    themselves (the probe failed, so G is still unresolved).
    """
    
    def __init__(self):
        self._lock = threading.Lock()
        self._resolved: Set[str] = set()
        self._in_flight: Dict[str, asyncio.Event] = {}
    
    async def acquire(self, group_name: str) -> bool:
        """
        Claim the probe of a group
        
        Returns:
            True if the caller must probe, False if the group is already resolved
        """
        while True:
            with self._lock:
                if group_name in self._resolved:
                    return False
                event = self._in_flight.get(group_name)
                if event is None:
                    self._in_flight[group_name] = asyncio.Event()
                    return True
            await event.wait()
    
    def release(self, group_name: str, resolved_group: Optional[str] = None):
        """
        End a claim
        
        Args:
            group_name: Group that was claimed
            resolved_group: Group the probe actually resolved to, None on failure
        """
        with self._lock:
            event = self._in_flight.pop(group_name, None)
            if resolved_group:
                self._resolved.add(resolved_group)
        if event is not None:
            event.set()
    
    def mark_resolved(self, group_name: str):
        with self._lock:
            self._resolved.add(group_name)
    
    def is_resolved(self, group_name: str) -> bool:
        with self._lock:
            return group_name in self._resolved
