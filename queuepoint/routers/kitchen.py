from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from queuepoint.auth import Principal, require_kitchen
from queuepoint.db import get_db
from queuepoint.dependencies import get_client_ip
from queuepoint.schemas import StatusIn, board_payload, order_payload
from queuepoint.security.csrf import verify_csrf
from queuepoint.services.audit_service import audited
from queuepoint.services.order_service import get_order, parse_status, pending_queue, update_status
from queuepoint.services.queue_view_service import build_board

router = APIRouter(tags=['kitchen'])


@router.get('/queue')
def staff_queue(
    principal: Principal = Depends(require_kitchen),
    db: Session = Depends(get_db),
):
    payload = board_payload(build_board(pending_queue(db)))
    payload['principal'] = {'email': principal.email, 'role': principal.role.value}
    return payload


@router.get('/kitchen/board')
def kitchen_board(
    _principal: Principal = Depends(require_kitchen),
    db: Session = Depends(get_db),
):
    return board_payload(build_board(pending_queue(db)))


@router.post('/kitchen/orders/{order_id}/status')
def kitchen_update_status(
    order_id: int,
    payload: StatusIn,
    request: Request,
    principal: Principal = Depends(require_kitchen),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    current = get_order(db, order_id)
    with audited(
        db,
        actor_principal_id=principal.id,
        action='ORDER_STATUS_UPDATED',
        ip=get_client_ip(request),
        metadata={
            'order_number': current.order_number,
            'previous_status': current.status.value,
            'new_status': parse_status(payload.status).value,
        },
    ):
        order = update_status(db, order_id=order_id, new_status=payload.status)
    return {'success': True, 'order': order_payload(order)}
