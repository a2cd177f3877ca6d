# storefront/repos/order_repo.py
from datetime import datetime, timezone
from typing import List

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from storefront.data.models.order import OrderModel


class OrderRepo:
    def __init__(self, db: Session):
        self.db = db

    def create_order(self, order: OrderModel) -> OrderModel:
        self.db.add(order)
        self.db.commit()
        self.db.refresh(order)
        return order

    def get_order(self, order_id: str) -> OrderModel | None:
        # status zmieniany update-em z pominieciem sesji, czytamy zawsze z bazy
        return self.db.get(OrderModel, order_id, populate_existing=True)

    def get_by_intent(self, gateway: str, intent_id: str) -> OrderModel | None:
        return self.db.execute(
            select(OrderModel).where(
                OrderModel.payment_gateway == gateway,
                OrderModel.payment_intent_id == intent_id,
            )
        ).scalar_one_or_none()

    def transition_status(self, order_id: str, expected: str, new_status: str, **fields) -> int:
        """
        Optimistic locking na statusie:
        update orders set status = new where id = :id and status = :expected
        0 wierszy -> ktos inny juz zmienil status
        """
        values = {"status": new_status, "updated_at": datetime.now(timezone.utc), **fields}
        result = self.db.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id, OrderModel.status == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def list_stale(self, status: str, created_before: datetime) -> List[OrderModel]:
        return list(
            self.db.execute(
                select(OrderModel).where(
                    OrderModel.status == status,
                    OrderModel.created_at < created_before,
                )
            ).scalars()
        )

    def refresh(self, order: OrderModel) -> OrderModel:
        self.db.refresh(order)
        return order

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
