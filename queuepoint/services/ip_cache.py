from __future__ import annotations

import threading


class IpRegistrationCache:
    """Last known PC binding per raw IP string, with the reverse PC lookup.

    A PC holds at most one IP, so both maps stay one-to-one. Registry writes
    that move or drop a binding must invalidate it in the same unit of work;
    nothing here expires on its own.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pc_by_ip: dict[str, int] = {}
        self._ip_by_pc: dict[int, str] = {}

    def get(self, ip: str) -> int | None:
        with self._lock:
            return self._pc_by_ip.get(ip)

    def ip_for(self, pc_id: int) -> str | None:
        with self._lock:
            return self._ip_by_pc.get(pc_id)

    def remember(self, ip: str, pc_id: int) -> None:
        with self._lock:
            self._drop_ip(ip)
            self._drop_pc(pc_id)
            self._pc_by_ip[ip] = pc_id
            self._ip_by_pc[pc_id] = ip

    def invalidate_ip(self, ip: str | None) -> None:
        if not ip:
            return
        with self._lock:
            self._drop_ip(ip)

    def invalidate_pc(self, pc_id: int) -> None:
        with self._lock:
            self._drop_pc(pc_id)

    def clear(self) -> None:
        with self._lock:
            self._pc_by_ip.clear()
            self._ip_by_pc.clear()

    # Callers hold the lock.
    def _drop_ip(self, ip: str) -> None:
        pc_id = self._pc_by_ip.pop(ip, None)
        if pc_id is not None:
            self._ip_by_pc.pop(pc_id, None)

    def _drop_pc(self, pc_id: int) -> None:
        ip = self._ip_by_pc.pop(pc_id, None)
        if ip is not None:
            self._pc_by_ip.pop(ip, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pc_by_ip)
