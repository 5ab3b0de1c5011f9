from __future__ import annotations

import ipaddress

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from queuepoint.config import settings
from queuepoint.db import get_db
from queuepoint.dependencies import get_change_feed, get_client_ip, get_ip_cache
from queuepoint.errors import InvalidInput, NotFound
from queuepoint.schemas import (
    AccessRequestIn,
    FeedbackIn,
    OrderCreateIn,
    board_payload,
    feedback_payload,
    menu_item_payload,
    order_payload,
)
from queuepoint.security.csrf import verify_csrf
from queuepoint.services.change_feed import ChangeFeed
from queuepoint.services.feedback_service import create_feedback
from queuepoint.services.ip_cache import IpRegistrationCache
from queuepoint.services.ip_echo import detect_client_ip, normalize_ip
from queuepoint.services.menu_service import get_menu_item, list_menu
from queuepoint.services.order_service import OrderLineInput, create_order, get_order, pending_queue
from queuepoint.services.pc_registry_service import (
    check_ip_exists,
    detected_ip_row,
    get_pc_by_number,
    log_detected_ip,
    pc_row,
    request_pc_access,
    session_row,
)
from queuepoint.services.queue_view_service import build_board

router = APIRouter(tags=['kiosk'])


def resolve_terminal_ip(request: Request, claimed_ip: str | None = None) -> str | None:
    """Pick the address a kiosk is known by.

    An address reported by the kiosk wins only when accept_reported_ip is set.
    Otherwise the connecting address is used, unless it is loopback, in which
    case the kiosk shares our host and the public address comes from the
    IP-echo service.
    """
    if claimed_ip and settings.accept_reported_ip:
        return normalize_ip(claimed_ip)
    connecting = normalize_ip(get_client_ip(request))
    if connecting and not ipaddress.ip_address(connecting).is_loopback:
        return connecting
    return detect_client_ip() or connecting


@router.get('/menu')
def menu(category: str | None = None, db: Session = Depends(get_db)):
    return [menu_item_payload(item) for item in list_menu(db, category=category)]


@router.get('/menu/{menu_item_id}')
def menu_item(menu_item_id: int, db: Session = Depends(get_db)):
    return menu_item_payload(get_menu_item(db, menu_item_id))


@router.post('/orders', status_code=status.HTTP_201_CREATED)
def place_order(
    payload: OrderCreateIn,
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    order = create_order(
        db,
        lines=[
            OrderLineInput(
                menu_item_id=line.menu_item_id,
                quantity=line.quantity,
                customizations=list(line.customizations),
                notes=line.notes,
            )
            for line in payload.items
        ],
        customer_name=payload.customer_name,
        terminal=payload.terminal,
    )
    return {'success': True, 'order': order_payload(order)}


@router.get('/orders/{order_id}')
def order_status(order_id: int, db: Session = Depends(get_db)):
    return order_payload(get_order(db, order_id))


@router.get('/queue/board')
def queue_board(db: Session = Depends(get_db)):
    return board_payload(build_board(pending_queue(db)))


@router.get('/gate/status')
def gate_status(
    request: Request,
    ip: str | None = None,
    db: Session = Depends(get_db),
    cache: IpRegistrationCache = Depends(get_ip_cache),
    feed: ChangeFeed = Depends(get_change_feed),
):
    terminal_ip = resolve_terminal_ip(request, ip)
    if not terminal_ip:
        raise InvalidInput('Could not determine this terminal\'s IP address')

    pc = check_ip_exists(db, terminal_ip, cache=cache)
    if pc is not None:
        return {'registered': True, 'ip': terminal_ip, 'pc': pc_row(pc)}

    record, created = log_detected_ip(db, ip=terminal_ip, feed=feed)
    return {
        'registered': False,
        'ip': terminal_ip,
        'detected': detected_ip_row(record),
        'newly_detected': created,
    }


@router.post('/gate/request-access', status_code=status.HTTP_201_CREATED)
def gate_request_access(
    payload: AccessRequestIn,
    request: Request,
    db: Session = Depends(get_db),
    cache: IpRegistrationCache = Depends(get_ip_cache),
    feed: ChangeFeed = Depends(get_change_feed),
    _: None = Depends(verify_csrf),
):
    terminal_ip = resolve_terminal_ip(request, payload.ip)
    if not terminal_ip:
        raise InvalidInput('Could not determine this terminal\'s IP address')
    pc = get_pc_by_number(db, payload.pc_number)
    if pc is None:
        raise NotFound(f'{payload.pc_number.strip().upper()} not found')

    session = request_pc_access(db, pc_id=pc.id, ip=terminal_ip, cache=cache, feed=feed)
    return {'success': True, 'session': session_row(session), 'pc': pc_row(pc)}


@router.post('/feedback', status_code=status.HTTP_201_CREATED)
def submit_feedback(
    payload: FeedbackIn,
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    feedback = create_feedback(
        db,
        customer_name=payload.customer_name,
        pc_number=payload.pc_number,
        message=payload.message,
        rating=payload.rating,
    )
    return {'success': True, 'feedback': feedback_payload(feedback)}
