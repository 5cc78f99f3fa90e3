from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .models import TransactionKind, TransactionModel, UserModel
from .schemas import TransactionCreate


def get_user_by_chat_id(db: Session, chat_id: int) -> UserModel | None:
    return db.scalar(select(UserModel).where(UserModel.chat_id == chat_id))


def create_user(db: Session, chat_id: int) -> UserModel:
    user = UserModel(chat_id=chat_id)
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Another worker registered the same chat first.
        db.rollback()
        existing = get_user_by_chat_id(db, chat_id)
        if existing is None:
            raise
        return existing
    db.refresh(user)
    return user


def create_transaction(db: Session, user_id: int, data: TransactionCreate) -> TransactionModel:
    transaction = TransactionModel(
        user_id=user_id,
        amount=data.amount,
        category=data.category,
        kind=TransactionKind(data.type),
    )
    db.add(transaction)
    db.commit()
    db.refresh(transaction)
    return transaction


def delete_transactions_for_user(db: Session, user_id: int) -> int:
    result = db.execute(delete(TransactionModel).where(TransactionModel.user_id == user_id))
    db.commit()
    return result.rowcount or 0


def list_transactions(db: Session, user_id: int) -> list[TransactionModel]:
    stmt = (
        select(TransactionModel)
        .where(TransactionModel.user_id == user_id)
        .order_by(TransactionModel.id)
    )
    return list(db.scalars(stmt))
