from __future__ import annotations

import re
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from queuepoint.errors import ConflictState, InvalidInput, InvalidTransition, NotFound
from queuepoint.models import DetectedIp, DetectedIpStatus, Pc, PcStatus, TerminalSession, TerminalSessionStatus
from queuepoint.services.change_feed import DELETE, INSERT, UPDATE, ChangeFeed
from queuepoint.services.gateway import atomic
from queuepoint.services.ip_cache import IpRegistrationCache
from queuepoint.services.ip_echo import normalize_ip

OPEN_SESSION_STATUSES = (TerminalSessionStatus.PENDING, TerminalSessionStatus.ACTIVE)
_PC_NUMBER_RE = re.compile(r'^(.*?)(\d+)$')

PCS = 'pcs'
SESSIONS = 'sessions'
DETECTED_IPS = 'detected_ips'


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def pc_row(pc: Pc) -> dict:
    return {
        'id': pc.id,
        'pc_number': pc.pc_number,
        'ip_address': pc.ip_address,
        'status': pc.status.value,
        'current_session_id': pc.current_session_id,
        'session_started_at': _iso(pc.session_started_at),
        'last_seen': _iso(pc.last_seen),
    }


def session_row(session: TerminalSession) -> dict:
    return {
        'id': session.id,
        'pc_id': session.pc_id,
        'ip_address': session.ip_address,
        'status': session.status.value,
        'started_at': _iso(session.started_at),
        'ended_at': _iso(session.ended_at),
    }


def detected_ip_row(record: DetectedIp) -> dict:
    return {
        'id': record.id,
        'ip_address': record.ip_address,
        'status': record.status.value,
        'assigned_pc_id': record.assigned_pc_id,
        'detected_at': _iso(record.detected_at),
        'registered_at': _iso(record.registered_at),
    }


def pc_sort_key(pc_number: str) -> tuple[str, int, str]:
    match = _PC_NUMBER_RE.match(pc_number or '')
    if not match:
        return (pc_number or '', -1, pc_number or '')
    return (match.group(1), int(match.group(2)), pc_number)


class _Changes:
    def __init__(self) -> None:
        self._events: list[tuple[str, str, object]] = []

    def add(self, table: str, event: str, obj) -> None:
        self._events.append((table, event, obj))

    def publish(self, feed: ChangeFeed | None) -> None:
        if feed is None:
            return
        serializers = {PCS: pc_row, SESSIONS: session_row, DETECTED_IPS: detected_ip_row}
        for table, event, obj in self._events:
            row = obj if isinstance(obj, dict) else serializers[table](obj)
            feed.publish(table, event, row)


def _require_ip(ip: str | None) -> str:
    normalized = normalize_ip(ip)
    if not normalized:
        raise InvalidInput(f'Invalid IP address: {ip!r}')
    return normalized


def get_pc(db: Session, pc_id: int, *, lock: bool = False) -> Pc:
    stmt = select(Pc).where(Pc.id == pc_id)
    if lock:
        stmt = stmt.with_for_update()
    pc = db.execute(stmt).scalar_one_or_none()
    if not pc:
        raise NotFound(f'PC {pc_id} not found')
    return pc


def get_pc_by_number(db: Session, pc_number: str) -> Pc | None:
    return db.execute(select(Pc).where(Pc.pc_number == pc_number.strip().upper())).scalar_one_or_none()


def get_session(db: Session, session_id: int) -> TerminalSession:
    session = db.execute(select(TerminalSession).where(TerminalSession.id == session_id)).scalar_one_or_none()
    if not session:
        raise NotFound(f'Session {session_id} not found')
    return session


def list_pcs(db: Session) -> list[Pc]:
    pcs = db.execute(select(Pc)).scalars().all()
    return sorted(pcs, key=lambda pc: pc_sort_key(pc.pc_number))


def available_pcs(db: Session) -> list[Pc]:
    return [pc for pc in list_pcs(db) if pc.status in (PcStatus.OFFLINE, PcStatus.MAINTENANCE)]


def open_sessions(db: Session, pc_id: int) -> list[TerminalSession]:
    return list(
        db.execute(
            select(TerminalSession)
            .where(TerminalSession.pc_id == pc_id, TerminalSession.status.in_(OPEN_SESSION_STATUSES))
            .order_by(TerminalSession.id.asc())
        ).scalars().all()
    )


def create_pc(db: Session, *, pc_number: str, feed: ChangeFeed | None = None) -> Pc:
    number = (pc_number or '').strip().upper()
    if not number:
        raise InvalidInput('PC number is required')
    changes = _Changes()
    with atomic(db, operation='create_pc'):
        if get_pc_by_number(db, number):
            raise ConflictState(f'{number} already exists')
        pc = Pc(pc_number=number, status=PcStatus.OFFLINE)
        db.add(pc)
        db.flush()
        changes.add(PCS, INSERT, pc)
    changes.publish(feed)
    return pc


def check_ip_exists(db: Session, ip: str, *, cache: IpRegistrationCache) -> Pc | None:
    """The PC bound to this IP, or None. An unknown IP is not an error."""
    key = (ip or '').strip()
    if not key:
        return None
    cached_pc_id = cache.get(key)
    if cached_pc_id is not None:
        pc = db.get(Pc, cached_pc_id)
        if pc is not None and pc.ip_address == key:
            return pc
        cache.invalidate_ip(key)

    pc = db.execute(select(Pc).where(Pc.ip_address == key).order_by(Pc.id.asc())).scalars().first()
    if pc is not None:
        cache.remember(key, pc.id)
    return pc


def _close_open_sessions(db: Session, pc: Pc, *, now: datetime, changes: _Changes) -> None:
    for session in open_sessions(db, pc.id):
        # A request nobody granted is rejected; a running session is ended.
        if session.status == TerminalSessionStatus.PENDING:
            session.status = TerminalSessionStatus.REJECTED
        else:
            session.status = TerminalSessionStatus.ENDED
        session.ended_at = now
        changes.add(SESSIONS, UPDATE, session)
    pc.current_session_id = None
    pc.session_started_at = None


def _release_detected_ip(db: Session, ip: str | None, *, changes: _Changes) -> None:
    if not ip:
        return
    records = db.execute(
        select(DetectedIp).where(DetectedIp.ip_address == ip, DetectedIp.status == DetectedIpStatus.REGISTERED)
    ).scalars().all()
    for record in records:
        record.status = DetectedIpStatus.PENDING
        record.assigned_pc_id = None
        record.registered_at = None
        changes.add(DETECTED_IPS, UPDATE, record)


def _ensure_ip_not_held_elsewhere(db: Session, ip: str, pc: Pc, *, changes: _Changes) -> None:
    holders = db.execute(select(Pc).where(Pc.ip_address == ip, Pc.id != pc.id)).scalars().all()
    for holder in holders:
        if holder.status in (PcStatus.ONLINE, PcStatus.PENDING):
            raise ConflictState(f'{ip} is in use by {holder.pc_number}')
        holder.ip_address = None
        changes.add(PCS, UPDATE, holder)


def request_pc_access(
    db: Session,
    *,
    pc_id: int,
    ip: str,
    cache: IpRegistrationCache,
    feed: ChangeFeed | None = None,
    now: datetime | None = None,
) -> TerminalSession:
    ip = _require_ip(ip)
    now = now or _now()
    changes = _Changes()
    with atomic(db, operation='request_pc_access'):
        pc = get_pc(db, pc_id, lock=True)
        if pc.status == PcStatus.MAINTENANCE:
            raise ConflictState(f'{pc.pc_number} is under maintenance')
        if pc.status != PcStatus.OFFLINE or open_sessions(db, pc.id):
            raise ConflictState(f'{pc.pc_number} already has an open session')
        _ensure_ip_not_held_elsewhere(db, ip, pc, changes=changes)

        session = TerminalSession(pc_id=pc.id, ip_address=ip, status=TerminalSessionStatus.PENDING)
        db.add(session)
        db.flush()
        changes.add(SESSIONS, INSERT, session)

        previous_ip = pc.ip_address
        pc.ip_address = ip
        pc.status = PcStatus.PENDING
        pc.last_seen = now
        changes.add(PCS, UPDATE, pc)

        cache.invalidate_ip(previous_ip)
        cache.invalidate_pc(pc.id)
        cache.invalidate_ip(ip)
    changes.publish(feed)
    return session


def grant_access(
    db: Session,
    *,
    pc_id: int,
    session_id: int,
    cache: IpRegistrationCache,
    feed: ChangeFeed | None = None,
    now: datetime | None = None,
) -> TerminalSession:
    now = now or _now()
    changes = _Changes()
    with atomic(db, operation='grant_access'):
        pc = get_pc(db, pc_id, lock=True)
        session = get_session(db, session_id)
        if session.pc_id != pc.id:
            raise ConflictState(f'Session {session.id} does not belong to {pc.pc_number}')
        if session.status != TerminalSessionStatus.PENDING:
            raise InvalidTransition(f'Session {session.id} is {session.status.value}, not pending')
        if pc.status != PcStatus.PENDING:
            raise InvalidTransition(f'{pc.pc_number} is {pc.status.value}, not pending')

        session.status = TerminalSessionStatus.ACTIVE
        session.started_at = now
        changes.add(SESSIONS, UPDATE, session)

        pc.status = PcStatus.ONLINE
        pc.ip_address = session.ip_address
        pc.current_session_id = session.id
        pc.session_started_at = now
        pc.last_seen = now
        changes.add(PCS, UPDATE, pc)

        cache.remember(session.ip_address, pc.id)
    changes.publish(feed)
    return session


def deny_access(
    db: Session,
    *,
    pc_id: int,
    session_id: int,
    cache: IpRegistrationCache,
    feed: ChangeFeed | None = None,
    now: datetime | None = None,
) -> TerminalSession:
    now = now or _now()
    changes = _Changes()
    with atomic(db, operation='deny_access'):
        pc = get_pc(db, pc_id, lock=True)
        session = get_session(db, session_id)
        if session.pc_id != pc.id:
            raise ConflictState(f'Session {session.id} does not belong to {pc.pc_number}')
        if session.status != TerminalSessionStatus.PENDING:
            raise InvalidTransition(f'Session {session.id} is {session.status.value}, not pending')
        if pc.status != PcStatus.PENDING:
            raise InvalidTransition(f'{pc.pc_number} is {pc.status.value}, not pending')

        session.status = TerminalSessionStatus.REJECTED
        session.ended_at = now
        changes.add(SESSIONS, UPDATE, session)

        released_ip = pc.ip_address
        pc.status = PcStatus.OFFLINE
        pc.ip_address = None
        pc.current_session_id = None
        pc.session_started_at = None
        pc.last_seen = now
        changes.add(PCS, UPDATE, pc)

        _release_detected_ip(db, released_ip, changes=changes)
        cache.invalidate_ip(released_ip)
        cache.invalidate_pc(pc.id)
    changes.publish(feed)
    return session


def end_session(
    db: Session,
    *,
    pc_id: int,
    cache: IpRegistrationCache,
    feed: ChangeFeed | None = None,
    now: datetime | None = None,
) -> Pc:
    """Take an online PC offline. The IP binding stays so the terminal is recognised next time."""
    now = now or _now()
    changes = _Changes()
    with atomic(db, operation='end_session'):
        pc = get_pc(db, pc_id, lock=True)
        if pc.status != PcStatus.ONLINE:
            raise InvalidTransition(f'{pc.pc_number} is {pc.status.value}, not online')
        _close_open_sessions(db, pc, now=now, changes=changes)
        pc.status = PcStatus.OFFLINE
        pc.last_seen = now
        changes.add(PCS, UPDATE, pc)

        # The detected-IP record stays registered along with the binding.
        cache.invalidate_ip(pc.ip_address)
        cache.invalidate_pc(pc.id)
    changes.publish(feed)
    return pc


def kick_client(
    db: Session,
    *,
    pc_id: int,
    cache: IpRegistrationCache,
    feed: ChangeFeed | None = None,
    now: datetime | None = None,
) -> Pc:
    """Take a PC offline and drop its IP binding."""
    now = now or _now()
    changes = _Changes()
    with atomic(db, operation='kick_client'):
        pc = get_pc(db, pc_id, lock=True)
        if pc.status == PcStatus.MAINTENANCE:
            raise InvalidTransition(f'{pc.pc_number} is under maintenance')
        _close_open_sessions(db, pc, now=now, changes=changes)
        released_ip = pc.ip_address
        pc.status = PcStatus.OFFLINE
        pc.ip_address = None
        pc.last_seen = now
        changes.add(PCS, UPDATE, pc)

        _release_detected_ip(db, released_ip, changes=changes)
        cache.invalidate_ip(released_ip)
        cache.invalidate_pc(pc.id)
    changes.publish(feed)
    return pc


def set_maintenance(
    db: Session,
    *,
    pc_id: int,
    cache: IpRegistrationCache,
    feed: ChangeFeed | None = None,
    now: datetime | None = None,
) -> Pc:
    now = now or _now()
    changes = _Changes()
    with atomic(db, operation='set_maintenance'):
        pc = get_pc(db, pc_id, lock=True)
        if pc.status not in (PcStatus.OFFLINE, PcStatus.ONLINE):
            raise InvalidTransition(f'{pc.pc_number} is {pc.status.value}; only offline or online PCs go to maintenance')
        _close_open_sessions(db, pc, now=now, changes=changes)
        pc.status = PcStatus.MAINTENANCE
        pc.last_seen = now
        changes.add(PCS, UPDATE, pc)

        cache.invalidate_ip(pc.ip_address)
        cache.invalidate_pc(pc.id)
    changes.publish(feed)
    return pc


def restore_from_maintenance(
    db: Session,
    *,
    pc_id: int,
    feed: ChangeFeed | None = None,
    now: datetime | None = None,
) -> Pc:
    now = now or _now()
    changes = _Changes()
    with atomic(db, operation='restore_from_maintenance'):
        pc = get_pc(db, pc_id, lock=True)
        if pc.status != PcStatus.MAINTENANCE:
            raise InvalidTransition(f'{pc.pc_number} is {pc.status.value}, not in maintenance')
        pc.status = PcStatus.OFFLINE
        pc.last_seen = now
        changes.add(PCS, UPDATE, pc)
    changes.publish(feed)
    return pc


def log_detected_ip(db: Session, *, ip: str, feed: ChangeFeed | None = None) -> tuple[DetectedIp, bool]:
    """Quarantine an IP no PC is bound to. Returns (record, created); repeat sightings reuse the pending record."""
    ip = _require_ip(ip)
    changes = _Changes()
    with atomic(db, operation='log_detected_ip'):
        existing = db.execute(
            select(DetectedIp)
            .where(DetectedIp.ip_address == ip, DetectedIp.status == DetectedIpStatus.PENDING)
            .order_by(DetectedIp.id.asc())
        ).scalars().first()
        if existing:
            return existing, False
        record = DetectedIp(ip_address=ip, status=DetectedIpStatus.PENDING, detected_at=_now())
        db.add(record)
        db.flush()
        changes.add(DETECTED_IPS, INSERT, record)
    changes.publish(feed)
    return record, True


def list_detected_ips(db: Session, *, status: str | None = None) -> list[DetectedIp]:
    stmt = select(DetectedIp).order_by(DetectedIp.detected_at.desc(), DetectedIp.id.desc())
    if status:
        stmt = stmt.where(DetectedIp.status == _parse_detected_status(status))
    return list(db.execute(stmt).scalars().all())


def _parse_detected_status(value: str | DetectedIpStatus) -> DetectedIpStatus:
    if isinstance(value, DetectedIpStatus):
        return value
    try:
        return DetectedIpStatus(str(value).strip().lower())
    except ValueError as exc:
        raise InvalidInput(f'Unknown detected IP status: {value}') from exc


def _detected_records(db: Session, ip: str) -> list[DetectedIp]:
    records = list(db.execute(select(DetectedIp).where(DetectedIp.ip_address == ip)).scalars().all())
    if not records:
        raise NotFound(f'{ip} has not been detected')
    return records


def update_detected_ip_status(
    db: Session,
    *,
    ip: str,
    status: str | DetectedIpStatus,
    feed: ChangeFeed | None = None,
) -> list[DetectedIp]:
    ip = _require_ip(ip)
    target = _parse_detected_status(status)
    if target == DetectedIpStatus.REGISTERED:
        raise InvalidInput('Assign the IP to a PC to register it')
    changes = _Changes()
    with atomic(db, operation='update_detected_ip_status'):
        records = _detected_records(db, ip)
        for record in records:
            if record.status == DetectedIpStatus.REGISTERED:
                raise ConflictState(f'{ip} is registered to a PC; delete or reassign it instead')
            record.status = target
            changes.add(DETECTED_IPS, UPDATE, record)
    changes.publish(feed)
    return records


def assign_ip_to_pc(
    db: Session,
    *,
    ip: str,
    pc_id: int,
    cache: IpRegistrationCache,
    feed: ChangeFeed | None = None,
    now: datetime | None = None,
) -> TerminalSession:
    """Bind a quarantined IP to a PC and open a pending session for the admin to grant."""
    ip = _require_ip(ip)
    now = now or _now()
    changes = _Changes()
    with atomic(db, operation='assign_ip_to_pc'):
        pc = get_pc(db, pc_id, lock=True)
        if pc.status != PcStatus.OFFLINE or open_sessions(db, pc.id):
            raise ConflictState(f'{pc.pc_number} is {pc.status.value}; only offline PCs can take a new IP')
        records = _detected_records(db, ip)
        _ensure_ip_not_held_elsewhere(db, ip, pc, changes=changes)

        previous_ip = pc.ip_address
        pc.ip_address = ip
        pc.status = PcStatus.PENDING
        pc.last_seen = now
        changes.add(PCS, UPDATE, pc)

        session = TerminalSession(pc_id=pc.id, ip_address=ip, status=TerminalSessionStatus.PENDING)
        db.add(session)
        db.flush()
        changes.add(SESSIONS, INSERT, session)

        for record in records:
            record.status = DetectedIpStatus.REGISTERED
            record.assigned_pc_id = pc.id
            record.registered_at = now
            changes.add(DETECTED_IPS, UPDATE, record)

        cache.invalidate_ip(previous_ip)
        cache.invalidate_pc(pc.id)
        cache.remember(ip, pc.id)
    changes.publish(feed)
    return session


def delete_detected_ip(
    db: Session,
    *,
    ip: str,
    cache: IpRegistrationCache,
    feed: ChangeFeed | None = None,
    now: datetime | None = None,
) -> int:
    """Drop an IP from quarantine and unbind it from whichever PC it was assigned to."""
    ip = _require_ip(ip)
    now = now or _now()
    changes = _Changes()
    with atomic(db, operation='delete_detected_ip'):
        records = _detected_records(db, ip)
        assigned_pc_ids = {record.assigned_pc_id for record in records if record.assigned_pc_id is not None}
        assigned_pc_ids.update(db.execute(select(Pc.id).where(Pc.ip_address == ip)).scalars().all())
        for record in records:
            changes.add(DETECTED_IPS, DELETE, detected_ip_row(record))
            db.delete(record)

        for pc_id in sorted(assigned_pc_ids):
            pc = db.get(Pc, pc_id)
            if pc is None or pc.ip_address != ip:
                continue
            _close_open_sessions(db, pc, now=now, changes=changes)
            if pc.status != PcStatus.MAINTENANCE:
                pc.status = PcStatus.OFFLINE
            pc.ip_address = None
            pc.last_seen = now
            changes.add(PCS, UPDATE, pc)
            cache.invalidate_pc(pc.id)
        cache.invalidate_ip(ip)
    changes.publish(feed)
    return len(records)
