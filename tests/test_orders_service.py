import re
import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from unittest.mock import Mock

import pytest
from sqlalchemy.orm import sessionmaker

from core.db import build_engine, init_db
from core.errors import (
    AddressNotFound,
    Forbidden,
    InsufficientStock,
    InvalidTransition,
    NotFound,
    OrderNumberExhausted,
    ValidationError,
)
from models.notification import Notification
from models.order import Order
from security.identity import Identity
from services.cart import CartStore
from services.inventory import InventoryLedger
from services.notifications import EVENT_NEW_ORDER, EVENT_STATUS_UPDATE, EVENT_SYSTEM_ALERT, NotificationDispatcher
from services.orders import OrderFilters, OrderService

from factories import RecordingPush, RecordingRegistry, make_address, make_product, make_user


class TestCreateOrder:
    """Placing orders"""

    def test_order_from_cart(self, db, order_service, customer, customer_identity, address, registry_spy):
        product = make_product(db, "Product A", 1000, 5)
        CartStore(db).add_item(customer.id, product.id, 2)

        order = order_service.create_order(customer_identity, address.id, "Pay on Delivery")

        assert order.subtotal == Decimal("2000.00")
        assert order.delivery_fee == Decimal("5000.00")
        assert order.total == Decimal("7000.00")
        assert order.status == "Placed"
        assert order.payment_status == "pending"
        assert re.match(r"^ORD-\d{6}$", order.order_number)
        assert [(i.product_id, i.quantity, i.unit_price) for i in order.items] == [(product.id, 2, Decimal("1000.00"))]
        assert [t.status for t in order.tracking] == ["Placed"]
        assert InventoryLedger(db).available(product.id) == 3
        assert CartStore(db).find_by_user(customer.id) == []

    def test_explicit_items_use_catalogue_price(self, db, order_service, customer_identity, address, product_a, product_b):
        order = order_service.create_order(
            customer_identity, address.id, "Card Payment", items=[(product_a.id, 1), (product_b.id, 2)]
        )

        assert order.subtotal == Decimal("6000.00")
        assert order.total == Decimal("11000.00")
        assert {i.product_name for i in order.items} == {"Product A", "Product B"}

    def test_duplicate_lines_are_merged(self, db, order_service, customer_identity, address, product_a):
        order = order_service.create_order(
            customer_identity, address.id, "Pay on Delivery", items=[(product_a.id, 1), (product_a.id, 2)]
        )

        assert len(order.items) == 1
        assert order.items[0].quantity == 3
        assert InventoryLedger(db).available(product_a.id) == 7

    def test_order_numbers_are_distinct(self, order_service, customer_identity, address, product_a):
        first = order_service.create_order(customer_identity, address.id, "Pay on Delivery", items=[(product_a.id, 1)])
        second = order_service.create_order(customer_identity, address.id, "Pay on Delivery", items=[(product_a.id, 1)])

        assert first.order_number != second.order_number

    def test_notifies_admins_owner_and_push(
        self, order_service, customer, customer_identity, address, product_a, registry_spy, push_spy
    ):
        order = order_service.create_order(customer_identity, address.id, "Pay on Delivery", items=[(product_a.id, 1)])

        admin_events = registry_spy.to("admin")
        owner_events = registry_spy.to(f"user:{customer.id}")
        assert [e for e, _ in admin_events] == [EVENT_NEW_ORDER]
        assert admin_events[0][1]["order_number"] == order.order_number
        assert admin_events[0][1]["delivery_address"] == "12 Marina Road, Lagos Island, Lagos, Nigeria"
        assert [e for e, _ in owner_events] == [EVENT_STATUS_UPDATE]
        assert len(push_spy.delivered) == 1
        assert push_spy.delivered[0][0] == customer.id
        assert push_spy.delivered[0][1]["data"]["orderNumber"] == order.order_number

    def test_records_inbox_notification(self, db, order_service, customer, customer_identity, address, product_a):
        order = order_service.create_order(customer_identity, address.id, "Pay on Delivery", items=[(product_a.id, 1)])

        notes = db.query(Notification).filter(Notification.user_id == customer.id).all()
        assert len(notes) == 1
        assert order.order_number in notes[0].message

    def test_insufficient_stock_changes_nothing(
        self, db, order_service, customer_identity, address, product_a, product_b, registry_spy
    ):
        with pytest.raises(InsufficientStock) as exc:
            order_service.create_order(
                customer_identity, address.id, "Pay on Delivery", items=[(product_a.id, 2), (product_b.id, 4)]
            )

        assert exc.value.product_id == product_b.id
        assert InventoryLedger(db).available(product_a.id) == 10
        assert InventoryLedger(db).available(product_b.id) == 3
        assert db.query(Order).count() == 0
        assert registry_spy.sent == []

    def test_number_failure_rolls_back_reservations(self, db, dispatcher, customer_identity, address, product_a):
        numbers = Mock()
        numbers.next.side_effect = OrderNumberExhausted()
        service = OrderService(db, dispatcher, numbers=numbers)

        with pytest.raises(OrderNumberExhausted):
            service.create_order(customer_identity, address.id, "Pay on Delivery", items=[(product_a.id, 4)])

        assert InventoryLedger(db).available(product_a.id) == 10
        assert db.query(Order).count() == 0

    def test_empty_cart_rejected(self, order_service, customer_identity, address):
        with pytest.raises(ValidationError):
            order_service.create_order(customer_identity, address.id, "Pay on Delivery")

    @pytest.mark.parametrize("items", [[(1, 0)], [(0, 1)], []])
    def test_invalid_lines_rejected(self, order_service, customer_identity, address, product_a, items):
        with pytest.raises(ValidationError):
            order_service.create_order(customer_identity, address.id, "Pay on Delivery", items=items)

    def test_unknown_product(self, order_service, customer_identity, address, product_a):
        with pytest.raises(ValidationError) as exc:
            order_service.create_order(
                customer_identity, address.id, "Pay on Delivery", items=[(product_a.id, 1), (9999, 1)]
            )

        assert exc.value.message == "One or more products not found"

    def test_inactive_product(self, db, order_service, customer_identity, address):
        retired = make_product(db, "Retired", 300, 10, is_active=False)

        with pytest.raises(ValidationError):
            order_service.create_order(customer_identity, address.id, "Pay on Delivery", items=[(retired.id, 1)])

    def test_invalid_payment_method(self, order_service, customer_identity, address, product_a):
        with pytest.raises(ValidationError) as exc:
            order_service.create_order(customer_identity, address.id, "Crypto", items=[(product_a.id, 1)])

        assert "Pay on Delivery" in exc.value.message

    def test_missing_address(self, order_service, customer_identity, product_a):
        with pytest.raises(AddressNotFound):
            order_service.create_order(customer_identity, 9999, "Pay on Delivery", items=[(product_a.id, 1)])

    def test_someone_elses_address(self, db, order_service, customer_identity, other_customer, product_a):
        foreign = make_address(db, other_customer)

        with pytest.raises(Forbidden):
            order_service.create_order(customer_identity, foreign.id, "Pay on Delivery", items=[(product_a.id, 1)])

    def test_incomplete_address(self, db, order_service, customer, customer_identity, product_a):
        partial = make_address(db, customer, state="")

        with pytest.raises(ValidationError):
            order_service.create_order(customer_identity, partial.id, "Pay on Delivery", items=[(product_a.id, 1)])
        assert InventoryLedger(db).available(product_a.id) == 10

    def test_cart_clear_failure_raises_alert_but_keeps_order(
        self, db, order_service, customer_identity, address, product_a, registry_spy, monkeypatch
    ):
        from sqlalchemy.exc import OperationalError

        def broken_clear(user_id):
            raise OperationalError("DELETE FROM cart_items", {}, Exception("database is locked"))

        monkeypatch.setattr(order_service.carts, "clear", broken_clear)

        order = order_service.create_order(customer_identity, address.id, "Pay on Delivery", items=[(product_a.id, 1)])

        assert db.get(Order, order.id) is not None
        alerts = [p for e, p in registry_spy.to("admin") if e == EVENT_SYSTEM_ALERT]
        assert len(alerts) == 1
        assert order.order_number in alerts[0]["message"]

    def test_notification_failure_does_not_fail_order(self, db, customer_identity, address, product_a):
        registry = Mock()
        registry.broadcast.side_effect = RuntimeError("socket layer down")
        push = Mock()
        push.deliver.side_effect = RuntimeError("push down")
        service = OrderService(db, NotificationDispatcher(registry, push))

        order = service.create_order(customer_identity, address.id, "Pay on Delivery", items=[(product_a.id, 1)])

        assert order.id is not None
        assert InventoryLedger(db).available(product_a.id) == 9


class TestConcurrentCreation:
    def test_only_one_order_gets_the_last_unit(self, tmp_path):
        """Second request reads stock 1, then loses the decrement to the first."""
        engine = build_engine(f"sqlite:///{tmp_path / 'orders.db'}")
        init_db(engine)
        Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

        with Session() as setup:
            buyer_a = make_user(setup, "a@example.com")
            buyer_b = make_user(setup, "b@example.com")
            address_a = make_address(setup, buyer_a)
            address_b = make_address(setup, buyer_b)
            product = make_product(setup, "Single Unit", 1000, 1)

        session_a, session_b = Session(), Session()
        registry = RecordingRegistry()
        service_a = OrderService(session_a, NotificationDispatcher(registry, RecordingPush()))
        service_b = OrderService(session_b, NotificationDispatcher(registry, RecordingPush()))

        real_reserve = service_a.ledger.reserve
        winners = []

        def reserve_after_competitor(*args, **kwargs):
            if not winners:
                winners.append(
                    service_b.create_order(Identity(buyer_b.id), address_b.id, "Pay on Delivery", items=[(product.id, 1)])
                )
            return real_reserve(*args, **kwargs)

        service_a.ledger.reserve = reserve_after_competitor
        try:
            with pytest.raises(InsufficientStock):
                service_a.create_order(Identity(buyer_a.id), address_a.id, "Pay on Delivery", items=[(product.id, 1)])

            assert len(winners) == 1
            with Session() as check:
                assert InventoryLedger(check).available(product.id) == 0
                assert check.query(Order).count() == 1
        finally:
            session_a.close()
            session_b.close()
            engine.dispose()

    def test_parallel_orders_get_distinct_numbers(self, tmp_path):
        engine = build_engine(f"sqlite:///{tmp_path / 'orders.db'}")
        init_db(engine)
        Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        workers = 8

        with Session() as setup:
            buyer = make_user(setup, "busy@example.com")
            address = make_address(setup, buyer)
            product = make_product(setup, "Popular", 1000, 50)

        start = threading.Barrier(workers)

        def place_one():
            with Session() as session:
                service = OrderService(session, NotificationDispatcher(RecordingRegistry(), RecordingPush()))
                start.wait(timeout=10)
                return service.create_order(
                    Identity(buyer.id), address.id, "Pay on Delivery", items=[(product.id, 1)]
                ).order_number

        try:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                numbers = [f.result() for f in [pool.submit(place_one) for _ in range(workers)]]

            assert sorted(numbers) == [f"ORD-{seq:06d}" for seq in range(1, workers + 1)]
            with Session() as check:
                assert InventoryLedger(check).available(product.id) == 50 - workers
                assert check.query(Order).count() == workers
        finally:
            engine.dispose()


class TestOrderReads:
    def test_owner_and_admin_can_view(self, order_service, customer_identity, admin_identity, address, product_a):
        order = order_service.create_order(customer_identity, address.id, "Pay on Delivery", items=[(product_a.id, 1)])

        assert order_service.get_order(order.id, customer_identity).id == order.id
        assert order_service.get_order(order.id, admin_identity).id == order.id

    def test_other_user_is_forbidden(self, order_service, customer_identity, other_customer, address, product_a):
        order = order_service.create_order(customer_identity, address.id, "Pay on Delivery", items=[(product_a.id, 1)])

        with pytest.raises(Forbidden):
            order_service.get_order(order.id, Identity.of(other_customer))

    def test_missing_order(self, order_service, admin_identity):
        with pytest.raises(NotFound):
            order_service.get_order(424242, admin_identity)

    def test_track_by_number(self, order_service, customer_identity, address, product_a):
        order = order_service.create_order(customer_identity, address.id, "Pay on Delivery", items=[(product_a.id, 1)])

        assert order_service.track_by_number(f"  {order.order_number} ", customer_identity).id == order.id
        with pytest.raises(ValidationError):
            order_service.track_by_number("", customer_identity)
        with pytest.raises(NotFound):
            order_service.track_by_number("ORD-999999", customer_identity)

    def test_lists_are_scoped_to_owner(
        self, db, order_service, customer_identity, other_customer, admin_identity, address, product_a
    ):
        other_identity = Identity.of(other_customer)
        other_address = make_address(db, other_customer)
        order_service.create_order(customer_identity, address.id, "Pay on Delivery", items=[(product_a.id, 1)])
        order_service.create_order(customer_identity, address.id, "Pay on Delivery", items=[(product_a.id, 1)])
        order_service.create_order(other_identity, other_address.id, "Pay on Delivery", items=[(product_a.id, 1)])

        assert order_service.count_orders(customer_identity) == 2
        assert order_service.count_orders(other_identity) == 1
        assert order_service.count_orders(admin_identity) == 3
        assert all(o.user_id == other_customer.id for o in order_service.list_orders(other_identity))

    def test_filters_and_paging(self, order_service, customer_identity, admin_identity, address, product_a):
        created = [
            order_service.create_order(customer_identity, address.id, "Pay on Delivery", items=[(product_a.id, 1)])
            for _ in range(3)
        ]
        order_service.update_status(created[0].id, "Packed", admin_identity)

        packed = order_service.list_orders(admin_identity, OrderFilters(status="Packed"))
        assert [o.id for o in packed] == [created[0].id]

        by_number = order_service.list_orders(admin_identity, OrderFilters(order_number=created[1].order_number.lower()))
        assert [o.id for o in by_number] == [created[1].id]

        page = order_service.list_orders(admin_identity, OrderFilters(page=2, limit=2))
        assert len(page) == 1
        assert order_service.count_orders(admin_identity, OrderFilters(period="7d")) == 3

    def test_invalid_period(self, order_service, admin_identity):
        with pytest.raises(ValidationError):
            order_service.list_orders(admin_identity, OrderFilters(period="1y"))


class TestOrderLifecycle:
    """Admin status changes through the service"""

    @pytest.fixture()
    def order(self, order_service, customer_identity, address, product_a, registry_spy, push_spy):
        order = order_service.create_order(customer_identity, address.id, "Pay on Delivery", items=[(product_a.id, 1)])
        registry_spy.sent.clear()
        push_spy.delivered.clear()
        return order

    def test_placed_to_delivered(self, db, order_service, admin_identity, customer, order, registry_spy, push_spy):
        updated = order_service.update_status(order.id, "Delivered", admin_identity)

        assert updated.status == "Delivered"
        assert updated.delivered_at is not None
        assert [t.status for t in updated.tracking] == ["Placed", "Delivered"]
        assert len(registry_spy.to("admin")) == 1
        assert len(registry_spy.to(f"user:{customer.id}")) == 1
        assert len(push_spy.delivered) == 1
        assert registry_spy.to("admin")[0][1]["status"] == "Delivered"

        db.expire_all()
        stored = db.get(Order, order.id)
        assert stored.tracking[-1].status == stored.status

    def test_same_status_still_broadcasts(self, order_service, admin_identity, order, registry_spy):
        updated = order_service.update_status(order.id, "Placed", admin_identity)

        assert len(updated.tracking) == 1
        assert len(registry_spy.to("admin")) == 1

    def test_packed_records_inbox_notification(self, db, order_service, admin_identity, customer, order):
        order_service.update_status(order.id, "Packed", admin_identity)

        messages = [n.message for n in db.query(Notification).filter(Notification.user_id == customer.id)]
        assert any("ready for delivery" in m for m in messages)

    def test_backward_move_rejected_and_nothing_sent(self, order_service, admin_identity, order, registry_spy):
        order_service.update_status(order.id, "In Transit", admin_identity)
        registry_spy.sent.clear()

        with pytest.raises(InvalidTransition):
            order_service.update_status(order.id, "Packed", admin_identity)

        assert registry_spy.sent == []
        assert order_service.get_order(order.id, admin_identity).status == "In Transit"

    def test_customer_cannot_update(self, order_service, customer_identity, order):
        with pytest.raises(Forbidden):
            order_service.update_status(order.id, "Packed", customer_identity)

    def test_update_missing_order(self, order_service, admin_identity):
        with pytest.raises(NotFound):
            order_service.update_status(424242, "Packed", admin_identity)

    def test_payment_status(self, order_service, admin_identity, customer, order, registry_spy):
        updated = order_service.update_payment_status(order.id, "completed", admin_identity, reference="PSK-1")

        assert updated.payment_status == "completed"
        assert updated.payment_reference == "PSK-1"
        assert len(registry_spy.to(f"user:{customer.id}")) == 1

    def test_delete(self, db, order_service, admin_identity, order, registry_spy):
        order_service.delete_order(order.id, admin_identity)

        assert db.get(Order, order.id) is None
        events = registry_spy.to("admin")
        assert len(events) == 1
        assert events[0][1]["deleted"] is True

    def test_customer_cannot_delete(self, order_service, customer_identity, order):
        with pytest.raises(Forbidden):
            order_service.delete_order(order.id, customer_identity)
