"""Storage backed by SQLAlchemy (SQLite by default, any SQLAlchemy URL accepted)."""
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from functools import wraps
from typing import Any, Callable, Iterable, Iterator, Mapping, Optional

from loguru import logger
from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from carwash.core.config import get_settings
from carwash.core.utils import alert_status, as_utc, utcnow
from carwash.db import models
from carwash.db.create_tables import create_all
from carwash.db.session import get_engine, get_session
from carwash.domain.records import (
    Category,
    CompanyConfig,
    Customer,
    DnitConfig,
    InventoryItem,
    Record,
    Sale,
    SaleItem,
    Service,
    ServiceCombo,
    ServiceComboItem,
    User,
    Vehicle,
    WorkOrder,
    WorkOrderItem,
)
from carwash.domain.schemas import (
    CategoryCreate,
    CompanyConfigCreate,
    CustomerCreate,
    DnitConfigCreate,
    InventoryItemCreate,
    SaleCreate,
    SaleFromWorkOrder,
    SaleItemCreate,
    SaleWithItems,
    ServiceComboCreate,
    ServiceComboItemCreate,
    ServiceCreate,
    UserCreate,
    VehicleCreate,
    WorkOrderCreate,
    WorkOrderItemCreate,
)

from .base import (
    OWNED_CHILDREN,
    WORK_ORDER_COUNTER,
    Changes,
    IStorage,
    build_record,
    check_work_order_line,
    clean_changes,
    inventory_values,
    items_total,
    new_user_values,
    open_dnit_secrets,
    sale_from_work_order_values,
    sale_values,
    seal_dnit_secrets,
    staggered,
    user_changes,
    validated,
    work_order_values,
)
from .errors import ConstraintViolation, StorageError

MODELS: dict[type[Record], Any] = {
    User: models.User,
    CompanyConfig: models.CompanyConfig,
    DnitConfig: models.DnitConfig,
    Category: models.Category,
    Customer: models.Customer,
    Vehicle: models.Vehicle,
    Service: models.Service,
    ServiceCombo: models.ServiceCombo,
    ServiceComboItem: models.ServiceComboItem,
    WorkOrder: models.WorkOrder,
    WorkOrderItem: models.WorkOrderItem,
    InventoryItem: models.InventoryItem,
    Sale: models.Sale,
    SaleItem: models.SaleItem,
}

MIN_SQLITE_RETURNING = (3, 35)


def _degrade(empty: Callable[[], Any] | None = None):
    """Reads log engine failures and return an empty result instead of raising."""

    def decorator(fn):
        @wraps(fn)
        def wrapper(self, *args, **kwargs):
            try:
                return fn(self, *args, **kwargs)
            except SQLAlchemyError as exc:
                logger.error("{} failed: {}", fn.__name__, exc)
                return empty() if empty else None

        return wrapper

    return decorator


def _newest(model) -> tuple:
    return (model.created_at.desc(),)


def _by_name(model) -> tuple:
    return (func.lower(model.nombre), model.nombre)


def _inserted(model) -> tuple:
    return (model.created_at.asc(),)


class SQLStorage(IStorage):
    """CRUD helpers wrapping the SQLAlchemy session."""

    def __init__(self, database_url: str | None = None) -> None:
        self.database_url = database_url or get_settings().database_url
        self.use_returning = False

    # -------------------------- lifecycle --------------------------
    def initialize(self) -> None:
        try:
            create_all(self.database_url)
            engine = get_engine(self.database_url)
        except SQLAlchemyError as exc:
            logger.exception("Creating the SQL schema failed")
            raise StorageError("could not create the SQL schema") from exc
        self.use_returning = self.probe_returning(engine)
        with self._writing("seed work order counter") as session:
            self._seed_counter(session)
        logger.info("SQL storage ready ({})", engine.url.render_as_string(hide_password=True))

    @staticmethod
    def probe_returning(engine: Engine) -> bool:
        dialect = engine.dialect
        supported = bool(getattr(dialect, "insert_returning", False))
        if supported and dialect.name == "sqlite":
            supported = sqlite3.sqlite_version_info >= MIN_SQLITE_RETURNING
        logger.info(
            "INSERT ... RETURNING {} on {}",
            "enabled" if supported else "unavailable, using insert + select",
            dialect.name,
        )
        return supported

    def close(self) -> None:
        get_engine(self.database_url).dispose()

    def import_records(self, records: Iterable[Record], *, next_work_order_number: int = 1) -> int:
        """Copy records verbatim (ids and timestamps kept) in one transaction.

        Records must arrive parents first. The work-order counter is advanced
        so the next order gets at least ``next_work_order_number``.
        """
        count = 0
        with self._writing("import records") as session:
            for record in records:
                model = MODELS[type(record)]
                session.merge(model(**{name: getattr(record, name) for name in record.field_names()}))
                session.flush()
                count += 1
            self._seed_counter(session, floor=next_work_order_number - 1)
        return count

    # -------------------------- sessions --------------------------
    def _session(self):
        return get_session(self.database_url)

    @contextmanager
    def _writing(self, action: str) -> Iterator[Session]:
        with self._session() as session:
            try:
                yield session
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                logger.warning("{} rejected: {}", action, exc.orig)
                raise ConstraintViolation(f"{action}: {exc.orig}") from exc
            except SQLAlchemyError as exc:
                session.rollback()
                logger.exception("{} failed", action)
                raise StorageError(f"{action} failed") from exc

    # -------------------------- generic rows --------------------------
    @_degrade()
    def _get(self, record_cls: type[Record], record_id: str):
        with self._session() as session:
            row = session.get(MODELS[record_cls], record_id)
            return record_cls.from_row(row) if row else None

    @_degrade(list)
    def _select(self, record_cls: type[Record], *criteria, order_by: tuple | None = None) -> list:
        model = MODELS[record_cls]
        stmt = select(model).where(*criteria).order_by(*(order_by or _newest(model)))
        with self._session() as session:
            return [record_cls.from_row(row) for row in session.execute(stmt).scalars().all()]

    @_degrade()
    def _first(self, record_cls: type[Record], *criteria, order_by: tuple | None = None):
        model = MODELS[record_cls]
        stmt = select(model).where(*criteria).order_by(*(order_by or _newest(model))).limit(1)
        with self._session() as session:
            row = session.execute(stmt).scalars().first()
            return record_cls.from_row(row) if row else None

    def _insert_row(self, session: Session, record: Record):
        record_cls = type(record)
        model = MODELS[record_cls]
        values = {name: getattr(record, name) for name in record.field_names()}
        if self.use_returning:
            try:
                row = session.scalars(insert(model).returning(model), [values]).one()
                return record_cls.from_row(row)
            except IntegrityError:
                raise
            except SQLAlchemyError as exc:
                logger.warning(
                    "INSERT ... RETURNING into {} failed, switching to insert + select: {}",
                    model.__tablename__,
                    exc,
                )
                self.use_returning = False
        session.execute(insert(model), [values])
        return record_cls.from_row(session.get(model, values["id"]))

    def _insert(self, record: Record):
        with self._writing(f"insert into {record.collection}") as session:
            return self._insert_row(session, record)

    def _update_row(self, session: Session, record_cls: type[Record], record_id: str, values: Mapping[str, Any]):
        row = session.get(MODELS[record_cls], record_id)
        if row is None:
            return None
        for key, value in values.items():
            setattr(row, key, value)
        row.updated_at = utcnow()
        session.flush()
        return record_cls.from_row(row)

    def _update(self, record_cls: type[Record], record_id: str, values: Mapping[str, Any]):
        with self._writing(f"update {record_cls.collection}") as session:
            return self._update_row(session, record_cls, record_id, values)

    def _delete_where_row(self, session: Session, record_cls: type[Record], column: str, value: str) -> int:
        model = MODELS[record_cls]
        result = session.execute(
            delete(model).where(getattr(model, column) == value).execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    def _delete(self, record_cls: type[Record], record_id: str) -> bool:
        with self._writing(f"delete from {record_cls.collection}") as session:
            owned = OWNED_CHILDREN.get(record_cls)
            if owned:
                self._delete_where_row(session, *owned, record_id)
            return self._delete_where_row(session, record_cls, "id", record_id) > 0

    def _delete_where(self, record_cls: type[Record], column: str, value: str) -> int:
        with self._writing(f"delete from {record_cls.collection}") as session:
            return self._delete_where_row(session, record_cls, column, value)

    # -------------------------- users --------------------------
    def get_user(self, user_id: str) -> Optional[User]:
        return self._get(User, user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        return self._first(User, func.lower(models.User.username) == (username or "").lower())

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self._first(User, func.lower(models.User.email) == (email or "").lower())

    def get_users(self) -> list[User]:
        return self._select(User)

    def get_active_users(self) -> list[User]:
        return self._select(User, models.User.is_active.is_(True), models.User.is_blocked.is_(False))

    def create_user(self, data: UserCreate | Mapping[str, Any]) -> User:
        return self._insert(build_record(User, new_user_values(validated(UserCreate, data))))

    def update_user(self, user_id: str, changes: Changes) -> Optional[User]:
        return self._update(User, user_id, user_changes(changes))

    def delete_user(self, user_id: str) -> bool:
        return self._delete(User, user_id)

    def increment_user_invoice_count(self, user_id: str) -> Optional[User]:
        with self._writing("increment invoice count") as session:
            row = session.get(models.User, user_id)
            if row is None:
                return None
            row.current_month_invoices = models.User.current_month_invoices + 1
            row.updated_at = utcnow()
            session.flush()
            session.refresh(row)
            return User.from_row(row)

    # -------------------------- company config --------------------------
    def get_company_config(self) -> Optional[CompanyConfig]:
        return self._first(CompanyConfig, order_by=_inserted(models.CompanyConfig))

    def create_company_config(self, data: CompanyConfigCreate | Mapping[str, Any]) -> CompanyConfig:
        return self._insert(build_record(CompanyConfig, validated(CompanyConfigCreate, data).model_dump()))

    def update_company_config(self, config_id: str, changes: Changes) -> Optional[CompanyConfig]:
        return self._update(CompanyConfig, config_id, clean_changes(CompanyConfig, changes))

    def delete_company_config(self, config_id: str) -> bool:
        return self._delete(CompanyConfig, config_id)

    # -------------------------- DNIT config --------------------------
    def get_dnit_config(self) -> Optional[DnitConfig]:
        return open_dnit_secrets(self._first(DnitConfig, order_by=_inserted(models.DnitConfig)))

    def create_dnit_config(self, data: DnitConfigCreate | Mapping[str, Any]) -> DnitConfig:
        values = seal_dnit_secrets(validated(DnitConfigCreate, data).model_dump())
        return open_dnit_secrets(self._insert(build_record(DnitConfig, values)))

    def update_dnit_config(self, config_id: str, changes: Changes) -> Optional[DnitConfig]:
        values = seal_dnit_secrets(clean_changes(DnitConfig, changes))
        return open_dnit_secrets(self._update(DnitConfig, config_id, values))

    def delete_dnit_config(self, config_id: str) -> bool:
        return self._delete(DnitConfig, config_id)

    # -------------------------- categories --------------------------
    def get_category(self, category_id: str) -> Optional[Category]:
        return self._get(Category, category_id)

    def get_categories(self) -> list[Category]:
        return self._select(Category, order_by=_by_name(models.Category))

    def get_categories_by_type(self, tipo: str) -> list[Category]:
        return self._select(
            Category, models.Category.tipo.in_((tipo, "ambos")), order_by=_by_name(models.Category)
        )

    def get_active_categories(self) -> list[Category]:
        return self._select(Category, models.Category.activa.is_(True), order_by=_by_name(models.Category))

    def create_category(self, data: CategoryCreate | Mapping[str, Any]) -> Category:
        return self._insert(build_record(Category, validated(CategoryCreate, data).model_dump()))

    def update_category(self, category_id: str, changes: Changes) -> Optional[Category]:
        return self._update(Category, category_id, clean_changes(Category, changes))

    def delete_category(self, category_id: str) -> bool:
        return self._delete(Category, category_id)

    # -------------------------- customers --------------------------
    def get_customer(self, customer_id: str) -> Optional[Customer]:
        return self._get(Customer, customer_id)

    def get_customers(self) -> list[Customer]:
        return self._select(Customer)

    def create_customer(self, data: CustomerCreate | Mapping[str, Any]) -> Customer:
        return self._insert(build_record(Customer, validated(CustomerCreate, data).model_dump()))

    def update_customer(self, customer_id: str, changes: Changes) -> Optional[Customer]:
        return self._update(Customer, customer_id, clean_changes(Customer, changes))

    def delete_customer(self, customer_id: str) -> bool:
        return self._delete(Customer, customer_id)

    # -------------------------- vehicles --------------------------
    def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        return self._get(Vehicle, vehicle_id)

    def get_vehicles(self) -> list[Vehicle]:
        return self._select(Vehicle)

    def get_vehicles_by_customer(self, customer_id: str) -> list[Vehicle]:
        return self._select(Vehicle, models.Vehicle.customer_id == customer_id)

    def create_vehicle(self, data: VehicleCreate | Mapping[str, Any]) -> Vehicle:
        return self._insert(build_record(Vehicle, validated(VehicleCreate, data).model_dump()))

    def update_vehicle(self, vehicle_id: str, changes: Changes) -> Optional[Vehicle]:
        return self._update(Vehicle, vehicle_id, clean_changes(Vehicle, changes))

    def delete_vehicle(self, vehicle_id: str) -> bool:
        return self._delete(Vehicle, vehicle_id)

    # -------------------------- services --------------------------
    def get_service(self, service_id: str) -> Optional[Service]:
        return self._get(Service, service_id)

    def get_services(self) -> list[Service]:
        return self._select(Service, order_by=_by_name(models.Service))

    def get_active_services(self) -> list[Service]:
        return self._select(Service, models.Service.activo.is_(True), order_by=_by_name(models.Service))

    def create_service(self, data: ServiceCreate | Mapping[str, Any]) -> Service:
        return self._insert(build_record(Service, validated(ServiceCreate, data).model_dump()))

    def update_service(self, service_id: str, changes: Changes) -> Optional[Service]:
        return self._update(Service, service_id, clean_changes(Service, changes))

    def delete_service(self, service_id: str) -> bool:
        return self._delete(Service, service_id)

    # -------------------------- combos --------------------------
    def get_service_combo(self, combo_id: str) -> Optional[ServiceCombo]:
        return self._get(ServiceCombo, combo_id)

    def get_service_combos(self) -> list[ServiceCombo]:
        return self._select(ServiceCombo, order_by=_by_name(models.ServiceCombo))

    def get_active_service_combos(self) -> list[ServiceCombo]:
        return self._select(
            ServiceCombo, models.ServiceCombo.activo.is_(True), order_by=_by_name(models.ServiceCombo)
        )

    def create_service_combo(self, data: ServiceComboCreate | Mapping[str, Any]) -> ServiceCombo:
        return self._insert(build_record(ServiceCombo, validated(ServiceComboCreate, data).model_dump()))

    def update_service_combo(self, combo_id: str, changes: Changes) -> Optional[ServiceCombo]:
        return self._update(ServiceCombo, combo_id, clean_changes(ServiceCombo, changes))

    def delete_service_combo(self, combo_id: str) -> bool:
        return self._delete(ServiceCombo, combo_id)

    def get_service_combo_items(self, combo_id: str) -> list[ServiceComboItem]:
        return self._select(
            ServiceComboItem,
            models.ServiceComboItem.combo_id == combo_id,
            order_by=_inserted(models.ServiceComboItem),
        )

    def create_service_combo_item(
        self, data: ServiceComboItemCreate | Mapping[str, Any]
    ) -> ServiceComboItem:
        item = build_record(ServiceComboItem, validated(ServiceComboItemCreate, data).model_dump())
        return self._insert(item)

    def delete_service_combo_item(self, item_id: str) -> bool:
        return self._delete(ServiceComboItem, item_id)

    def delete_service_combo_items_by_combo(self, combo_id: str) -> int:
        return self._delete_where(ServiceComboItem, "combo_id", combo_id)

    def set_service_combo_items(self, combo_id: str, service_ids: Iterable[str]) -> list[ServiceComboItem]:
        now = utcnow()
        with self._writing("replace combo services") as session:
            if session.get(models.ServiceCombo, combo_id) is None:
                raise ConstraintViolation(f"service_combos {combo_id} does not exist")
            self._delete_where_row(session, ServiceComboItem, "combo_id", combo_id)
            return [
                self._insert_row(
                    session,
                    build_record(
                        ServiceComboItem,
                        {"combo_id": combo_id, "service_id": service_id},
                        staggered(now, index),
                    ),
                )
                for index, service_id in enumerate(service_ids)
            ]

    # -------------------------- work orders --------------------------
    def get_work_order(self, work_order_id: str) -> Optional[WorkOrder]:
        return self._get(WorkOrder, work_order_id)

    def get_work_orders(self) -> list[WorkOrder]:
        return self._select(WorkOrder, order_by=(models.WorkOrder.created_at.desc(), models.WorkOrder.numero.desc()))

    def get_work_orders_by_status(self, estado: str) -> list[WorkOrder]:
        return self._select(
            WorkOrder,
            models.WorkOrder.estado == estado,
            order_by=(models.WorkOrder.created_at.desc(), models.WorkOrder.numero.desc()),
        )

    def get_work_orders_by_customer(self, customer_id: str) -> list[WorkOrder]:
        return self._select(
            WorkOrder,
            models.WorkOrder.customer_id == customer_id,
            order_by=(models.WorkOrder.created_at.desc(), models.WorkOrder.numero.desc()),
        )

    def _seed_counter(self, session: Session, floor: int = 0) -> None:
        highest = session.execute(select(func.max(models.WorkOrder.numero))).scalar() or 0
        highest = max(highest, floor)
        counter = session.get(models.Counter, WORK_ORDER_COUNTER)
        if counter is None:
            session.add(models.Counter(name=WORK_ORDER_COUNTER, value=highest))
            logger.info("Work order counter seeded at {}", highest)
        elif counter.value < highest:
            logger.warning("Work order counter behind MAX(numero) ({} < {}); advancing it", counter.value, highest)
            counter.value = highest
        session.flush()

    def _take_number(self, session: Session) -> int:
        counter = models.Counter
        stmt = (
            update(counter)
            .where(counter.name == WORK_ORDER_COUNTER)
            .values(value=counter.value + 1)
            .execution_options(synchronize_session=False)
        )
        if session.execute(stmt).rowcount == 0:
            self._seed_counter(session)
            return self._take_number(session)
        return session.execute(select(counter.value).where(counter.name == WORK_ORDER_COUNTER)).scalar_one()

    @_degrade()
    def get_next_work_order_number(self) -> Optional[int]:
        with self._session() as session:
            value = session.execute(
                select(models.Counter.value).where(models.Counter.name == WORK_ORDER_COUNTER)
            ).scalar()
            if value is None:
                value = session.execute(select(func.max(models.WorkOrder.numero))).scalar() or 0
            return int(value) + 1

    def create_work_order(self, data: WorkOrderCreate | Mapping[str, Any]) -> WorkOrder:
        order = build_record(WorkOrder, work_order_values(validated(WorkOrderCreate, data)))
        with self._writing("create work order") as session:
            order.numero = self._take_number(session)
            created = self._insert_row(session, order)
        logger.info("Work order #{} created ({})", created.numero, created.id)
        return created

    def update_work_order(self, work_order_id: str, changes: Changes) -> Optional[WorkOrder]:
        return self._update(WorkOrder, work_order_id, clean_changes(WorkOrder, changes))

    def delete_work_order(self, work_order_id: str) -> bool:
        return self._delete(WorkOrder, work_order_id)

    def get_work_order_items(self, work_order_id: str) -> list[WorkOrderItem]:
        return self._select(
            WorkOrderItem,
            models.WorkOrderItem.work_order_id == work_order_id,
            order_by=_inserted(models.WorkOrderItem),
        )

    def create_work_order_item(self, data: WorkOrderItemCreate | Mapping[str, Any]) -> WorkOrderItem:
        item = build_record(WorkOrderItem, validated(WorkOrderItemCreate, data).model_dump())
        return self._insert(item)

    def update_work_order_item(
        self, work_order_id: str, item_id: str, changes: Changes
    ) -> Optional[WorkOrderItem]:
        values = clean_changes(WorkOrderItem, changes)
        values.pop("work_order_id", None)
        with self._writing("update work order item") as session:
            row = session.get(models.WorkOrderItem, item_id)
            if row is None or row.work_order_id != work_order_id:
                return None
            check_work_order_line(WorkOrderItem.from_row(row), values)
            return self._update_row(session, WorkOrderItem, item_id, values)

    def delete_work_order_item(self, item_id: str) -> bool:
        return self._delete(WorkOrderItem, item_id)

    def delete_work_order_items_by_work_order(self, work_order_id: str) -> int:
        return self._delete_where(WorkOrderItem, "work_order_id", work_order_id)

    def _order_items(self, session: Session, work_order_id: str) -> list[WorkOrderItem]:
        stmt = (
            select(models.WorkOrderItem)
            .where(models.WorkOrderItem.work_order_id == work_order_id)
            .order_by(*_inserted(models.WorkOrderItem))
        )
        return [WorkOrderItem.from_row(row) for row in session.execute(stmt).scalars().all()]

    def recalculate_work_order_total(self, work_order_id: str) -> Optional[WorkOrder]:
        with self._writing("recalculate work order total") as session:
            total = items_total(self._order_items(session, work_order_id))
            return self._update_row(session, WorkOrder, work_order_id, {"total": total})

    def create_sale_from_work_order(
        self, work_order_id: str, data: SaleFromWorkOrder | Mapping[str, Any]
    ) -> Optional[Sale]:
        request = validated(SaleFromWorkOrder, data)
        with self._writing("create sale from work order") as session:
            row = session.get(models.WorkOrder, work_order_id)
            if row is None:
                return None
            order = WorkOrder.from_row(row)
            customer_row = session.get(models.Customer, order.customer_id)
            customer = Customer.from_row(customer_row) if customer_row else None
            header, lines = sale_from_work_order_values(
                order, self._order_items(session, work_order_id), customer, request
            )
            sale = self._insert_sale_rows(session, header, lines)
        logger.info("Sale {} created from work order #{}", sale.numero_factura, order.numero)
        return sale

    # -------------------------- inventory --------------------------
    def get_inventory_item(self, item_id: str) -> Optional[InventoryItem]:
        return self._get(InventoryItem, item_id)

    def get_inventory_items(self) -> list[InventoryItem]:
        return self._select(InventoryItem)

    def get_inventory_items_by_alert(self, estado: str) -> list[InventoryItem]:
        return self._select(InventoryItem, models.InventoryItem.estado_alerta == estado)

    def create_inventory_item(self, data: InventoryItemCreate | Mapping[str, Any]) -> InventoryItem:
        item = build_record(InventoryItem, inventory_values(validated(InventoryItemCreate, data)))
        return self._insert(item)

    def update_inventory_item(self, item_id: str, changes: Changes) -> Optional[InventoryItem]:
        return self._update(InventoryItem, item_id, clean_changes(InventoryItem, changes))

    def delete_inventory_item(self, item_id: str) -> bool:
        return self._delete(InventoryItem, item_id)

    def update_inventory_stock(self, item_id: str, new_stock: int) -> Optional[InventoryItem]:
        with self._writing("update inventory stock") as session:
            row = session.get(models.InventoryItem, item_id)
            if row is None:
                return None
            values = {
                "stock_actual": int(new_stock),
                "estado_alerta": alert_status(int(new_stock), row.stock_minimo),
            }
            return self._update_row(session, InventoryItem, item_id, values)

    # -------------------------- sales --------------------------
    def get_sale(self, sale_id: str) -> Optional[Sale]:
        return self._get(Sale, sale_id)

    def get_sales(self) -> list[Sale]:
        return self._select(Sale)

    def get_sales_by_date_range(self, start: datetime, end: datetime) -> list[Sale]:
        return self._select(Sale, models.Sale.fecha >= as_utc(start), models.Sale.fecha <= as_utc(end))

    def get_sales_by_customer(self, customer_id: str) -> list[Sale]:
        return self._select(Sale, models.Sale.customer_id == customer_id)

    def get_last_sale(self) -> Optional[Sale]:
        return self._first(Sale)

    def _insert_sale_rows(
        self, session: Session, header: Mapping[str, Any], lines: Iterable[Mapping[str, Any]]
    ) -> Sale:
        now = utcnow()
        sale = self._insert_row(session, build_record(Sale, header, now))
        for index, line in enumerate(lines, start=1):
            self._insert_row(session, build_record(SaleItem, {**line, "sale_id": sale.id}, staggered(now, index)))
        return sale

    def create_sale(self, data: SaleCreate | Mapping[str, Any]) -> Sale:
        return self._insert(build_record(Sale, sale_values(validated(SaleCreate, data))))

    def update_sale(self, sale_id: str, changes: Changes) -> Optional[Sale]:
        return self._update(Sale, sale_id, clean_changes(Sale, changes))

    def delete_sale(self, sale_id: str) -> bool:
        return self._delete(Sale, sale_id)

    def create_sale_with_items(self, data: SaleWithItems | Mapping[str, Any]) -> Sale:
        request = validated(SaleWithItems, data)
        with self._writing("create sale with items") as session:
            return self._insert_sale_rows(
                session, sale_values(request), [item.model_dump() for item in request.items]
            )

    def get_sale_items(self, sale_id: str) -> list[SaleItem]:
        return self._select(SaleItem, models.SaleItem.sale_id == sale_id, order_by=_inserted(models.SaleItem))

    def create_sale_item(self, data: SaleItemCreate | Mapping[str, Any]) -> SaleItem:
        return self._insert(build_record(SaleItem, validated(SaleItemCreate, data).model_dump()))

    def delete_sale_item(self, item_id: str) -> bool:
        return self._delete(SaleItem, item_id)

    def delete_sale_items_by_sale(self, sale_id: str) -> int:
        return self._delete_where(SaleItem, "sale_id", sale_id)
