# points_ledger/services/transfer.py

import logging
import uuid
from sqlalchemy.orm import Session

from points_ledger.core.exceptions import MemberNotFound, SelfTransfer, TransferNotFound
from points_ledger.crud import ledger as crud_ledger
from points_ledger.crud import member as crud_member
from points_ledger.models.ledger import REF_TRANSFER, TX_TRANSFER_IN, TX_TRANSFER_OUT
from points_ledger.schemas.transfer import Transfer, TransferAudit
from points_ledger.services import ledger as ledger_service

logger = logging.getLogger(__name__)

TRANSFER_SOURCE = "member_transfer"


def transfer_points(db: Session, from_member_id: int, to_member_id: int, points: int, reason: str) -> Transfer:
    """
    Переводит баллы между участниками одной транзакцией:
    списание у отправителя и зачисление получателю фиксируются вместе или не фиксируются вовсе.
    Баланс отправителя проверяется под блокировкой обеих строк.
    """
    if from_member_id == to_member_id:
        raise SelfTransfer("Cannot transfer points to yourself")

    transfer_id = f"transfer_{uuid.uuid4().hex}"
    try:
        locked = {m.id for m in crud_member.lock_members(db, [from_member_id, to_member_id])}
        for member_id in (from_member_id, to_member_id):
            if member_id not in locked:
                raise MemberNotFound(f"Member {member_id} not found")

        out_entry = ledger_service.append(
            db,
            member_id=from_member_id,
            transaction_type=TX_TRANSFER_OUT,
            source=TRANSFER_SOURCE,
            amount=-points,
            reference_type=REF_TRANSFER,
            reference_id=transfer_id,
            meta={"to_member_id": to_member_id, "reason": reason},
        )
        in_entry = ledger_service.append(
            db,
            member_id=to_member_id,
            transaction_type=TX_TRANSFER_IN,
            source=TRANSFER_SOURCE,
            amount=points,
            reference_type=REF_TRANSFER,
            reference_id=transfer_id,
            meta={"from_member_id": from_member_id, "reason": reason},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(out_entry)
    db.refresh(in_entry)
    logger.info(f"Transfer {transfer_id}: {points} points from member {from_member_id} to member {to_member_id}")
    return Transfer(transfer_id=transfer_id, from_entry=out_entry, to_entry=in_entry)


def audit_transfer(db: Session, transfer_id: str) -> TransferAudit:
    """Обе половины перевода на месте и в сумме дают ноль."""
    entries = crud_ledger.get_entries_by_reference(db, REF_TRANSFER, transfer_id)
    if not entries:
        raise TransferNotFound(f"Transfer {transfer_id} not found")
    net = sum(e.amount for e in entries)
    consistent = len(entries) == 2 and net == 0
    if not consistent:
        logger.error(f"Transfer {transfer_id} is unbalanced: {len(entries)} entries, net {net}")
    return TransferAudit(transfer_id=transfer_id, entries=entries, net=net, consistent=consistent)
