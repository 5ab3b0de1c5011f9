from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, File, Request, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from queuepoint.auth import Principal, require_admin
from queuepoint.db import get_db
from queuepoint.dependencies import get_change_feed, get_client_ip, get_ip_cache
from queuepoint.errors import InvalidInput
from queuepoint.models import CustomerFeedback, DetectedIp, DetectedIpStatus, FeedbackStatus, LoginAttemptType, Pc
from queuepoint.schemas import (
    AssignIpIn,
    AvailabilityIn,
    InventoryItemIn,
    InventoryItemPatch,
    MenuItemIn,
    MenuItemPatch,
    PcCreateIn,
    SessionActionIn,
    StaffIn,
    StaffPatch,
    StatusIn,
    StockAdjustIn,
    adjustment_payload,
    admin_menu_item_payload,
    feedback_payload,
    inventory_item_payload,
    login_attempt_payload,
    order_payload,
    principal_payload,
)
from queuepoint.security.csrf import verify_csrf
from queuepoint.services.audit_service import audited
from queuepoint.services.auth_guard_service import is_locked, recent_activity
from queuepoint.services.change_feed import ChangeEvent, ChangeFeed
from queuepoint.services.feedback_service import delete_feedback, list_feedback, update_feedback_status
from queuepoint.services.inventory_csv_service import export_csv, import_csv
from queuepoint.services.inventory_service import (
    InventoryItemInput,
    add_item,
    adjust_stock,
    delete_item,
    get_item,
    list_adjustments,
    list_items,
    low_stock_items,
    parse_unit,
    signed_delta,
    update_item,
)
from queuepoint.services.ip_cache import IpRegistrationCache
from queuepoint.services.menu_service import (
    add_menu_item,
    delete_menu_item,
    get_menu_item,
    list_menu,
    set_menu_availability,
    update_menu_item,
)
from queuepoint.services.order_service import (
    delete_order,
    get_order,
    list_orders,
    parse_status,
    pending_queue,
    update_status,
)
from queuepoint.services import pc_registry_service as registry
from queuepoint.services import staff_service

router = APIRouter(prefix='/admin', tags=['admin'])
admin_access = require_admin

PC_EVENT_TABLES = (registry.PCS, registry.SESSIONS, registry.DETECTED_IPS)
SSE_KEEPALIVE_SECONDS = 15
SSE_QUEUE_SIZE = 256


def _audit(db: Session, request: Request, principal: Principal, action: str, metadata: dict | None = None):
    return audited(db, actor_principal_id=principal.id, action=action, ip=get_client_ip(request), metadata=metadata)


@router.get('')
def dashboard(
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    pcs_by_status = dict(db.execute(select(Pc.status, func.count(Pc.id)).group_by(Pc.status)).all())
    pending_ips = db.execute(
        select(func.count(DetectedIp.id)).where(DetectedIp.status == DetectedIpStatus.PENDING)
    ).scalar_one()
    new_feedback = db.execute(
        select(func.count(CustomerFeedback.id)).where(CustomerFeedback.status == FeedbackStatus.NEW)
    ).scalar_one()
    return {
        'principal': {'email': principal.email, 'role': principal.role.value},
        'active_orders': len(pending_queue(db)),
        'low_stock_items': len(low_stock_items(db)),
        'pcs': {status.value: count for status, count in pcs_by_status.items()},
        'pending_detected_ips': pending_ips,
        'new_feedback': new_feedback,
    }


# Orders


@router.get('/orders')
def admin_orders(
    status: str | None = None,
    terminal: str | None = None,
    limit: int = 200,
    _principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    return [order_payload(order) for order in list_orders(db, status=status, terminal=terminal, limit=limit)]


@router.get('/orders/{order_id}')
def admin_order_detail(
    order_id: int,
    _principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    return order_payload(get_order(db, order_id))


@router.post('/orders/{order_id}/status')
def admin_update_order_status(
    order_id: int,
    payload: StatusIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    current = get_order(db, order_id)
    metadata = {
        'order_number': current.order_number,
        'previous_status': current.status.value,
        'new_status': parse_status(payload.status).value,
    }
    with _audit(db, request, principal, 'ORDER_STATUS_UPDATED', metadata):
        order = update_status(db, order_id=order_id, new_status=payload.status)
    return {'success': True, 'order': order_payload(order)}


@router.delete('/orders/{order_id}')
def admin_delete_order(
    order_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    metadata = {'order_id': order_id, 'order_number': get_order(db, order_id).order_number}
    with _audit(db, request, principal, 'ORDER_DELETED', metadata):
        order_number = delete_order(db, order_id=order_id)
    return {'success': True, 'order_number': order_number}


# Menu


@router.get('/menu')
def admin_menu(
    category: str | None = None,
    _principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    return [admin_menu_item_payload(item) for item in list_menu(db, category=category, include_unavailable=True)]


@router.post('/menu', status_code=201)
def admin_add_menu_item(
    payload: MenuItemIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with _audit(db, request, principal, 'MENU_ITEM_CREATED', {'name': payload.name}) as details:
        item = add_menu_item(db, **payload.model_dump())
        details['menu_item_id'] = item.id
    return {'success': True, 'item': admin_menu_item_payload(item)}


@router.get('/menu/{menu_item_id}')
def admin_menu_item(
    menu_item_id: int,
    _principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    return admin_menu_item_payload(get_menu_item(db, menu_item_id))


@router.patch('/menu/{menu_item_id}')
def admin_update_menu_item(
    menu_item_id: int,
    payload: MenuItemPatch,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    changes = payload.model_dump(exclude_unset=True)
    metadata = {'menu_item_id': menu_item_id, 'fields': sorted(changes)}
    if 'price' in changes:
        metadata['previous_price'] = str(get_menu_item(db, menu_item_id).price)
        metadata['price'] = str(changes['price'])
    with _audit(db, request, principal, 'MENU_ITEM_UPDATED', metadata):
        item = update_menu_item(db, menu_item_id, changes)
    return {'success': True, 'item': admin_menu_item_payload(item)}


@router.post('/menu/{menu_item_id}/availability')
def admin_menu_availability(
    menu_item_id: int,
    payload: AvailabilityIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    metadata = {'menu_item_id': menu_item_id, 'available': payload.available}
    with _audit(db, request, principal, 'MENU_ITEM_AVAILABILITY_SET', metadata):
        item = set_menu_availability(db, menu_item_id, payload.available)
    return {'success': True, 'item': admin_menu_item_payload(item)}


@router.delete('/menu/{menu_item_id}')
def admin_delete_menu_item(
    menu_item_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with _audit(db, request, principal, 'MENU_ITEM_DELETED', {'menu_item_id': menu_item_id}) as details:
        details['name'] = delete_menu_item(db, menu_item_id)
    return {'success': True}


# Inventory


@router.get('/inventory')
def admin_inventory(
    q: str | None = None,
    category: str | None = None,
    status: str | None = None,
    _principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    return [inventory_item_payload(item) for item in list_items(db, query=q, category=category, status=status)]


@router.get('/inventory/low-stock')
def admin_low_stock(
    _principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    return [inventory_item_payload(item) for item in low_stock_items(db)]


@router.get('/inventory/adjustments')
def admin_adjustments(
    item_id: int | None = None,
    limit: int = 500,
    _principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    return [adjustment_payload(adjustment) for adjustment in list_adjustments(db, item_id=item_id, limit=limit)]


@router.get('/inventory/export.csv')
def admin_inventory_export(
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    items = list_items(db)
    with _audit(db, request, principal, 'INVENTORY_EXPORTED_CSV', {'rows': len(items)}):
        body = export_csv(items)

    stamp = datetime.now(tz=timezone.utc).strftime('%Y-%m-%d')
    return StreamingResponse(
        iter([body]),
        media_type='text/csv',
        headers={'Content-Disposition': f'attachment; filename=inventory-{stamp}.csv'},
    )


@router.post('/inventory/import')
async def admin_inventory_import(
    request: Request,
    file: UploadFile = File(...),
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    raw = await file.read()
    try:
        text = raw.decode('utf-8-sig')
    except UnicodeDecodeError as exc:
        raise InvalidInput('CSV file must be UTF-8 encoded') from exc

    with _audit(db, request, principal, 'INVENTORY_IMPORTED_CSV', {'filename': file.filename}) as details:
        summary = import_csv(db, csv_text=text)
        details.update(created=summary.created, updated=summary.updated, skipped=summary.skipped)
    return {
        'success': True,
        'created': summary.created,
        'updated': summary.updated,
        'skipped': summary.skipped,
        'skipped_rows': summary.skipped_rows,
    }


@router.post('/inventory', status_code=201)
def admin_add_inventory_item(
    payload: InventoryItemIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with _audit(db, request, principal, 'INVENTORY_ITEM_CREATED', {'sku': payload.sku}) as details:
        item_id = add_item(
            db,
            InventoryItemInput(
                sku=payload.sku,
                name=payload.name,
                category=payload.category,
                unit=parse_unit(payload.unit),
                stock=payload.stock,
                reorder_threshold=payload.reorder_threshold,
                cost_price=payload.cost_price,
                selling_price=payload.selling_price,
                notes=payload.notes,
            ),
        )
        details['item_id'] = item_id
    return {'success': True, 'item': inventory_item_payload(get_item(db, item_id))}


@router.get('/inventory/{item_id}')
def admin_inventory_item(
    item_id: int,
    _principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    payload = inventory_item_payload(get_item(db, item_id))
    payload['adjustments'] = [adjustment_payload(a) for a in list_adjustments(db, item_id=item_id, limit=50)]
    return payload


@router.patch('/inventory/{item_id}')
def admin_update_inventory_item(
    item_id: int,
    payload: InventoryItemPatch,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    changes = payload.model_dump(exclude_unset=True)
    with _audit(db, request, principal, 'INVENTORY_ITEM_UPDATED', {'item_id': item_id, 'fields': sorted(changes)}):
        update_item(db, item_id, changes)
    return {'success': True, 'item': inventory_item_payload(get_item(db, item_id))}


@router.delete('/inventory/{item_id}')
def admin_delete_inventory_item(
    item_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with _audit(db, request, principal, 'INVENTORY_ITEM_DELETED', {'item_id': item_id}):
        delete_item(db, item_id)
    return {'success': True}


@router.post('/inventory/{item_id}/adjust')
def admin_adjust_stock(
    item_id: int,
    payload: StockAdjustIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    delta = signed_delta(payload.reason, payload.amount)
    metadata = {'item_id': item_id, 'delta': str(delta), 'reason': payload.reason}
    with _audit(db, request, principal, 'INVENTORY_STOCK_ADJUSTED', metadata):
        item = adjust_stock(db, item_id, delta=delta, reason=payload.reason, note=payload.note)
    return {'success': True, 'item': inventory_item_payload(item)}


# PCs and sessions


@router.get('/pcs')
def admin_pcs(
    _principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    return [registry.pc_row(pc) for pc in registry.list_pcs(db)]


@router.get('/pcs/available')
def admin_available_pcs(
    _principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    return [registry.pc_row(pc) for pc in registry.available_pcs(db)]


@router.get('/pcs/events')
async def admin_pc_events(
    request: Request,
    _principal: Principal = Depends(admin_access),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """Server-sent events for pcs, sessions and detected_ips changes."""
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[ChangeEvent] = asyncio.Queue(maxsize=SSE_QUEUE_SIZE)

    def _offer(change: ChangeEvent) -> None:
        if queue.full():
            # Slow reader: drop the oldest change, the admin panel reloads on gaps anyway.
            queue.get_nowait()
        queue.put_nowait(change)

    def _forward(change: ChangeEvent) -> None:
        # Publishers run in worker threads.
        if not loop.is_closed():
            loop.call_soon_threadsafe(_offer, change)

    unsubscribers = [feed.subscribe(table, _forward) for table in PC_EVENT_TABLES]

    async def stream():
        try:
            yield 'retry: 5000\n\n'
            while not await request.is_disconnected():
                try:
                    change = await asyncio.wait_for(queue.get(), timeout=SSE_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ': keepalive\n\n'
                    continue
                yield f'event: {change.table}\ndata: {json.dumps(change.as_dict())}\n\n'
        finally:
            for unsubscribe in unsubscribers:
                unsubscribe()

    return StreamingResponse(
        stream(),
        media_type='text/event-stream',
        headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'},
    )


@router.post('/pcs', status_code=201)
def admin_create_pc(
    payload: PcCreateIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
    _: None = Depends(verify_csrf),
):
    with _audit(db, request, principal, 'PC_CREATED', {'pc_number': payload.pc_number.strip().upper()}):
        pc = registry.create_pc(db, pc_number=payload.pc_number, feed=feed)
    return {'success': True, 'pc': registry.pc_row(pc)}


@router.get('/pcs/{pc_id}')
def admin_pc_detail(
    pc_id: int,
    _principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    pc = registry.get_pc(db, pc_id)
    payload = registry.pc_row(pc)
    payload['open_sessions'] = [registry.session_row(s) for s in registry.open_sessions(db, pc.id)]
    return payload


@router.post('/pcs/{pc_id}/grant')
def admin_grant_access(
    pc_id: int,
    payload: SessionActionIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    cache: IpRegistrationCache = Depends(get_ip_cache),
    feed: ChangeFeed = Depends(get_change_feed),
    _: None = Depends(verify_csrf),
):
    metadata = {'pc_id': pc_id, 'session_id': payload.session_id}
    with _audit(db, request, principal, 'PC_ACCESS_GRANTED', metadata):
        session = registry.grant_access(db, pc_id=pc_id, session_id=payload.session_id, cache=cache, feed=feed)
    return {'success': True, 'session': registry.session_row(session)}


@router.post('/pcs/{pc_id}/deny')
def admin_deny_access(
    pc_id: int,
    payload: SessionActionIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    cache: IpRegistrationCache = Depends(get_ip_cache),
    feed: ChangeFeed = Depends(get_change_feed),
    _: None = Depends(verify_csrf),
):
    metadata = {'pc_id': pc_id, 'session_id': payload.session_id}
    with _audit(db, request, principal, 'PC_ACCESS_DENIED', metadata):
        session = registry.deny_access(db, pc_id=pc_id, session_id=payload.session_id, cache=cache, feed=feed)
    return {'success': True, 'session': registry.session_row(session)}


def _pc_action(action_name: str, operation):
    def handler(
        pc_id: int,
        request: Request,
        principal: Principal = Depends(admin_access),
        db: Session = Depends(get_db),
        cache: IpRegistrationCache = Depends(get_ip_cache),
        feed: ChangeFeed = Depends(get_change_feed),
        _: None = Depends(verify_csrf),
    ):
        metadata = {'pc_id': pc_id, 'pc_number': registry.get_pc(db, pc_id).pc_number}
        with _audit(db, request, principal, action_name, metadata):
            pc = operation(db, pc_id=pc_id, cache=cache, feed=feed)
        return {'success': True, 'pc': registry.pc_row(pc)}

    return handler


router.add_api_route('/pcs/{pc_id}/end-session', _pc_action('PC_SESSION_ENDED', registry.end_session), methods=['POST'])
router.add_api_route('/pcs/{pc_id}/kick', _pc_action('PC_CLIENT_KICKED', registry.kick_client), methods=['POST'])
router.add_api_route(
    '/pcs/{pc_id}/maintenance', _pc_action('PC_MAINTENANCE_SET', registry.set_maintenance), methods=['POST']
)


@router.post('/pcs/{pc_id}/restore')
def admin_restore_pc(
    pc_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
    _: None = Depends(verify_csrf),
):
    metadata = {'pc_id': pc_id, 'pc_number': registry.get_pc(db, pc_id).pc_number}
    with _audit(db, request, principal, 'PC_MAINTENANCE_CLEARED', metadata):
        pc = registry.restore_from_maintenance(db, pc_id=pc_id, feed=feed)
    return {'success': True, 'pc': registry.pc_row(pc)}


# Detected IPs


@router.get('/detected-ips')
def admin_detected_ips(
    status: str | None = None,
    _principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    return [registry.detected_ip_row(record) for record in registry.list_detected_ips(db, status=status)]


@router.post('/detected-ips/{ip}/status')
def admin_detected_ip_status(
    ip: str,
    payload: StatusIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
    _: None = Depends(verify_csrf),
):
    with _audit(db, request, principal, 'DETECTED_IP_STATUS_UPDATED', {'ip': ip, 'status': payload.status}):
        records = registry.update_detected_ip_status(db, ip=ip, status=payload.status, feed=feed)
    return {'success': True, 'detected': [registry.detected_ip_row(record) for record in records]}


@router.post('/detected-ips/{ip}/assign')
def admin_assign_ip(
    ip: str,
    payload: AssignIpIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    cache: IpRegistrationCache = Depends(get_ip_cache),
    feed: ChangeFeed = Depends(get_change_feed),
    _: None = Depends(verify_csrf),
):
    with _audit(db, request, principal, 'DETECTED_IP_ASSIGNED', {'ip': ip, 'pc_id': payload.pc_id}):
        session = registry.assign_ip_to_pc(db, ip=ip, pc_id=payload.pc_id, cache=cache, feed=feed)
    return {'success': True, 'session': registry.session_row(session)}


@router.delete('/detected-ips/{ip}')
def admin_delete_detected_ip(
    ip: str,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    cache: IpRegistrationCache = Depends(get_ip_cache),
    feed: ChangeFeed = Depends(get_change_feed),
    _: None = Depends(verify_csrf),
):
    with _audit(db, request, principal, 'DETECTED_IP_DELETED', {'ip': ip}) as details:
        details['records'] = registry.delete_detected_ip(db, ip=ip, cache=cache, feed=feed)
    removed = details['records']
    return {'success': True, 'removed': removed}


# Login attempts


@router.get('/login-attempts')
def admin_login_attempts(
    email: str | None = None,
    attempt_type: str | None = None,
    limit: int = 50,
    _principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    parsed_type = None
    if attempt_type:
        try:
            parsed_type = LoginAttemptType(attempt_type.strip().lower())
        except ValueError as exc:
            raise InvalidInput(f'Unknown attempt type: {attempt_type}') from exc

    payload: dict = {
        'attempts': [
            login_attempt_payload(attempt)
            for attempt in recent_activity(db, email=email, attempt_type=parsed_type, limit=limit)
        ]
    }
    if email:
        payload['lockout'] = {}
        for lockout_type in LoginAttemptType:
            lockout = is_locked(db, email=email, attempt_type=lockout_type)
            payload['lockout'][lockout_type.value] = {
                'locked': lockout.locked,
                'failed_count': lockout.failed_count,
                'last_attempt': lockout.last_attempt.isoformat() if lockout.last_attempt else None,
            }
    return payload


# Feedback


@router.get('/feedback')
def admin_feedback(
    status: str | None = None,
    _principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    return [feedback_payload(feedback) for feedback in list_feedback(db, status=status)]


@router.post('/feedback/{feedback_id}/status')
def admin_feedback_status(
    feedback_id: int,
    payload: StatusIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    metadata = {'feedback_id': feedback_id, 'status': payload.status}
    with _audit(db, request, principal, 'FEEDBACK_STATUS_UPDATED', metadata):
        feedback = update_feedback_status(db, feedback_id=feedback_id, status=payload.status)
    return {'success': True, 'feedback': feedback_payload(feedback)}


@router.delete('/feedback/{feedback_id}')
def admin_delete_feedback(
    feedback_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with _audit(db, request, principal, 'FEEDBACK_DELETED', {'feedback_id': feedback_id}):
        delete_feedback(db, feedback_id=feedback_id)
    return {'success': True}


# Staff accounts


@router.get('/staff')
def admin_staff(
    _principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    return [principal_payload(account) for account in staff_service.list_principals(db)]


@router.post('/staff', status_code=201)
def admin_create_staff(
    payload: StaffIn,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    metadata = {'email': payload.email.strip().lower(), 'role': payload.role.strip().upper()}
    with _audit(db, request, principal, 'STAFF_ACCOUNT_CREATED', metadata) as details:
        account = staff_service.create_principal(db, email=payload.email, password=payload.password, role=payload.role)
        details['principal_id'] = account.id
    return {'success': True, 'account': principal_payload(account)}


@router.patch('/staff/{principal_id}')
def admin_update_staff(
    principal_id: int,
    payload: StaffPatch,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    changes = payload.model_dump(exclude_unset=True)
    # Field names only; the password never reaches the audit log.
    metadata = {'principal_id': principal_id, 'fields': sorted(changes)}
    if 'active' in changes:
        metadata['active'] = changes['active']
    with _audit(db, request, principal, 'STAFF_ACCOUNT_UPDATED', metadata):
        account = staff_service.update_principal(db, actor_id=principal.id, principal_id=principal_id, changes=changes)
    return {'success': True, 'account': principal_payload(account)}


@router.delete('/staff/{principal_id}')
def admin_delete_staff(
    principal_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    with _audit(db, request, principal, 'STAFF_ACCOUNT_DELETED', {'principal_id': principal_id}) as details:
        details['email'] = staff_service.delete_principal(db, actor_id=principal.id, principal_id=principal_id)
    return {'success': True}
