"""
JSON-file persistence adapter.

Each collection is one document, ``<data_dir>/<collection>.json``, holding a
list of records; ``metadata.json`` holds the work-order counter. Documents
are read whole, changed in memory and rewritten whole through a temp file
and ``os.replace`` so a crash never leaves a half-written document.

Read-only operations log read failures and return empty results. Every
mutation runs inside ``_transaction()``: documents are read strictly, changes
are staged in memory and written together at the end; when one of the
writes fails the documents already replaced are restored from snapshots.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from contextlib import contextmanager, suppress
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Mapping, Optional

from loguru import logger

from carwash.core.config import get_settings
from carwash.core.utils import alert_status, as_utc, utcnow
from carwash.domain.records import (
    ALL_RECORDS,
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
    REFERENCES,
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

METADATA = "metadata"
NEXT_NUMBER_KEY = "next_work_order_number"
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _newest_first(records: list) -> list:
    # later insertions win ties on created_at
    return sorted(reversed(records), key=lambda r: r.created_at or _EPOCH, reverse=True)


def _by_name(records: list) -> list:
    return sorted(records, key=lambda r: (r.nombre or "").casefold())


class JsonFileStorage(IStorage):
    """Storage backed by one JSON document per collection."""

    def __init__(self, data_dir: Path | str | None = None) -> None:
        self.data_dir = Path(data_dir) if data_dir else get_settings().data_dir
        self._lock = threading.RLock()
        self._local = threading.local()

    # -------------------------- documents --------------------------
    def _path(self, name: str) -> Path:
        return self.data_dir / f"{name}.json"

    def initialize(self) -> None:
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"could not create data directory {self.data_dir}") from exc
        with self._lock:
            for record_cls in ALL_RECORDS:
                if not self._path(record_cls.collection).exists():
                    self._write(record_cls.collection, [])
            if not self._path(METADATA).exists():
                self._write(METADATA, {NEXT_NUMBER_KEY: 1})
        logger.info("JSON storage ready at {}", self.data_dir)

    def _read(self, name: str, *, strict: bool) -> Any:
        path = self._path(name)
        empty: Any = {} if name == METADATA else []
        try:
            if not path.exists():
                return empty
            with path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
            if not isinstance(data, type(empty)):
                raise ValueError(f"{path.name} does not hold a JSON {type(empty).__name__}")
            return data
        except (OSError, ValueError) as exc:
            if strict:
                logger.error("Reading {} for a write failed: {}", path.name, exc)
                raise StorageError(f"could not read {path.name}") from exc
            logger.error("Reading {} failed: {}", path.name, exc)
            return empty

    def _replace(self, path: Path, payload: bytes) -> None:
        try:
            fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(payload)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp, path)
            except BaseException:
                with suppress(OSError):
                    os.unlink(tmp)
                raise
        except OSError as exc:
            raise StorageError(f"could not write {path.name}") from exc

    def _write(self, name: str, data: Any) -> None:
        payload = json.dumps(data, ensure_ascii=False, indent=2).encode("utf-8")
        self._replace(self._path(name), payload)

    # -------------------------- transactions --------------------------
    def _staged(self) -> Optional[dict[str, Any]]:
        return getattr(self._local, "staged", None)

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        if self._staged() is not None:
            yield
            return
        with self._lock:
            self._local.staged = {}
            self._local.dirty = []
            try:
                yield
                staged, dirty = self._local.staged, list(self._local.dirty)
            finally:
                self._local.staged = None
                self._local.dirty = []
            self._commit(staged, dirty)

    def _commit(self, staged: dict[str, Any], dirty: list[str]) -> None:
        snapshots: dict[str, Optional[bytes]] = {}
        try:
            for name in dirty:
                path = self._path(name)
                try:
                    snapshots[name] = path.read_bytes() if path.exists() else None
                except OSError as exc:
                    raise StorageError(f"could not snapshot {path.name}") from exc
                self._write(name, staged[name])
        except StorageError:
            logger.exception("Writing {} failed; restoring previous documents", ", ".join(dirty))
            self._restore(snapshots)
            raise

    def _restore(self, snapshots: Mapping[str, Optional[bytes]]) -> None:
        for name, raw in snapshots.items():
            path = self._path(name)
            try:
                if raw is None:
                    path.unlink(missing_ok=True)
                else:
                    self._replace(path, raw)
            except (OSError, StorageError):
                logger.exception("Could not restore {}", path.name)

    def _load(self, name: str) -> Any:
        staged = self._staged()
        if staged is None:
            return self._read(name, strict=False)
        if name not in staged:
            staged[name] = self._read(name, strict=True)
        return staged[name]

    def _stage(self, name: str, data: Any) -> None:
        staged = self._staged()
        if staged is None:
            raise RuntimeError("document writes must run inside _transaction()")
        staged[name] = data
        if name not in self._local.dirty:
            self._local.dirty.append(name)

    # -------------------------- records --------------------------
    def _records(self, record_cls: type[Record]) -> list:
        rows = self._load(record_cls.collection)
        try:
            return [record_cls.from_dict(row) for row in rows]
        except (TypeError, ValueError) as exc:
            if self._staged() is not None:
                raise StorageError(f"malformed record in {record_cls.collection}.json") from exc
            logger.error("Malformed record in {}.json: {}", record_cls.collection, exc)
            return []

    def export_records(self, record_cls: type[Record]) -> list:
        """Every record of a collection in stored order; unreadable documents raise."""
        with self._transaction():
            return self._records(record_cls)

    def _store(self, record_cls: type[Record], records: Iterable[Record]) -> None:
        self._stage(record_cls.collection, [record.to_dict() for record in records])

    def _get(self, record_cls: type[Record], record_id: str):
        return next((r for r in self._records(record_cls) if r.id == record_id), None)

    def _find(self, record_cls: type[Record], predicate: Callable[[Any], bool]) -> list:
        return [r for r in self._records(record_cls) if predicate(r)]

    def _exists(self, record_cls: type[Record], record_id: str) -> bool:
        return any(row.get("id") == record_id for row in self._load(record_cls.collection))

    def _check_references(self, record: Record, columns: Iterable[str] | None = None) -> None:
        refs = REFERENCES.get(type(record), {})
        for column in columns if columns is not None else refs:
            parent_cls = refs.get(column)
            value = getattr(record, column, None)
            if parent_cls is None or not value:
                continue
            if not self._exists(parent_cls, value):
                raise ConstraintViolation(
                    f"{record.collection}.{column} references unknown {parent_cls.collection} {value}"
                )

    def _check_not_referenced(self, parent_cls: type[Record], record_id: str) -> None:
        for child_cls, refs in REFERENCES.items():
            for column, target in refs.items():
                if target is not parent_cls or OWNED_CHILDREN.get(parent_cls) == (child_cls, column):
                    continue
                for row in self._load(child_cls.collection):
                    if row.get(column) == record_id and row.get("id") != record_id:
                        raise ConstraintViolation(
                            f"{parent_cls.collection} {record_id} is still referenced by {child_cls.collection}"
                        )

    def _check_unique(self, record: Record, column: str, *, ignore_case: bool = False) -> None:
        def key(value: Any) -> Any:
            return value.lower() if ignore_case and isinstance(value, str) else value

        wanted = key(getattr(record, column))
        for other in self._records(type(record)):
            if other.id != record.id and key(getattr(other, column)) == wanted:
                raise ConstraintViolation(f"{record.collection}.{column} {getattr(record, column)!r} already exists")

    def _insert(self, record, *, unique: Iterable[str] = (), ignore_case: bool = False):
        with self._transaction():
            self._check_references(record)
            for column in unique:
                self._check_unique(record, column, ignore_case=ignore_case)
            records = self._records(type(record))
            records.append(record)
            self._store(type(record), records)
        return record

    def _update(
        self,
        record_cls: type[Record],
        record_id: str,
        values: Mapping[str, Any],
        *,
        unique: Iterable[str] = (),
        ignore_case: bool = False,
    ):
        with self._transaction():
            records = self._records(record_cls)
            record = next((r for r in records if r.id == record_id), None)
            if record is None:
                return None
            for key, value in values.items():
                setattr(record, key, value)
            record.updated_at = utcnow()
            self._check_references(record, values.keys())
            for column in unique:
                if column in values:
                    self._check_unique(record, column, ignore_case=ignore_case)
            self._store(record_cls, records)
        return record

    def _delete(self, record_cls: type[Record], record_id: str) -> bool:
        with self._transaction():
            records = self._records(record_cls)
            remaining = [r for r in records if r.id != record_id]
            if len(remaining) == len(records):
                return False
            owned = OWNED_CHILDREN.get(record_cls)
            if owned:
                self._delete_where(*owned, record_id)
            self._check_not_referenced(record_cls, record_id)
            self._store(record_cls, remaining)
        return True

    def _delete_where(self, record_cls: type[Record], column: str, value: str) -> int:
        with self._transaction():
            records = self._records(record_cls)
            remaining = [r for r in records if getattr(r, column) != value]
            removed = len(records) - len(remaining)
            if removed:
                for record in records:
                    if getattr(record, column) == value:
                        self._check_not_referenced(record_cls, record.id)
                self._store(record_cls, remaining)
        return removed

    # -------------------------- users --------------------------
    def get_user(self, user_id: str) -> Optional[User]:
        return self._get(User, user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        wanted = (username or "").lower()
        return next((u for u in self._records(User) if u.username.lower() == wanted), None)

    def get_user_by_email(self, email: str) -> Optional[User]:
        wanted = (email or "").lower()
        return next((u for u in self._records(User) if (u.email or "").lower() == wanted), None)

    def get_users(self) -> list[User]:
        return _newest_first(self._records(User))

    def get_active_users(self) -> list[User]:
        return _newest_first(self._find(User, lambda u: u.is_active and not u.is_blocked))

    def create_user(self, data: UserCreate | Mapping[str, Any]) -> User:
        user = build_record(User, new_user_values(validated(UserCreate, data)))
        return self._insert(user, unique=("username",), ignore_case=True)

    def update_user(self, user_id: str, changes: Changes) -> Optional[User]:
        return self._update(User, user_id, user_changes(changes), unique=("username",), ignore_case=True)

    def delete_user(self, user_id: str) -> bool:
        return self._delete(User, user_id)

    def increment_user_invoice_count(self, user_id: str) -> Optional[User]:
        with self._transaction():
            user = self._get(User, user_id)
            if user is None:
                return None
            return self._update(User, user_id, {"current_month_invoices": user.current_month_invoices + 1})

    # -------------------------- company config --------------------------
    def get_company_config(self) -> Optional[CompanyConfig]:
        records = self._records(CompanyConfig)
        return records[0] if records else None

    def create_company_config(self, data: CompanyConfigCreate | Mapping[str, Any]) -> CompanyConfig:
        return self._insert(build_record(CompanyConfig, validated(CompanyConfigCreate, data).model_dump()))

    def update_company_config(self, config_id: str, changes: Changes) -> Optional[CompanyConfig]:
        return self._update(CompanyConfig, config_id, clean_changes(CompanyConfig, changes))

    def delete_company_config(self, config_id: str) -> bool:
        return self._delete(CompanyConfig, config_id)

    # -------------------------- DNIT config --------------------------
    def get_dnit_config(self) -> Optional[DnitConfig]:
        records = self._records(DnitConfig)
        return open_dnit_secrets(records[0]) if records else None

    def create_dnit_config(self, data: DnitConfigCreate | Mapping[str, Any]) -> DnitConfig:
        values = seal_dnit_secrets(validated(DnitConfigCreate, data).model_dump())
        config = self._insert(build_record(DnitConfig, values))
        return open_dnit_secrets(replace(config))

    def update_dnit_config(self, config_id: str, changes: Changes) -> Optional[DnitConfig]:
        values = seal_dnit_secrets(clean_changes(DnitConfig, changes))
        config = self._update(DnitConfig, config_id, values)
        return open_dnit_secrets(replace(config)) if config else None

    def delete_dnit_config(self, config_id: str) -> bool:
        return self._delete(DnitConfig, config_id)

    # -------------------------- categories --------------------------
    def get_category(self, category_id: str) -> Optional[Category]:
        return self._get(Category, category_id)

    def get_categories(self) -> list[Category]:
        return _by_name(self._records(Category))

    def get_categories_by_type(self, tipo: str) -> list[Category]:
        return _by_name(self._find(Category, lambda c: c.tipo in (tipo, "ambos")))

    def get_active_categories(self) -> list[Category]:
        return _by_name(self._find(Category, lambda c: c.activa))

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
        return _newest_first(self._records(Customer))

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
        return _newest_first(self._records(Vehicle))

    def get_vehicles_by_customer(self, customer_id: str) -> list[Vehicle]:
        return _newest_first(self._find(Vehicle, lambda v: v.customer_id == customer_id))

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
        return _by_name(self._records(Service))

    def get_active_services(self) -> list[Service]:
        return _by_name(self._find(Service, lambda s: s.activo))

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
        return _by_name(self._records(ServiceCombo))

    def get_active_service_combos(self) -> list[ServiceCombo]:
        return _by_name(self._find(ServiceCombo, lambda c: c.activo))

    def create_service_combo(self, data: ServiceComboCreate | Mapping[str, Any]) -> ServiceCombo:
        return self._insert(build_record(ServiceCombo, validated(ServiceComboCreate, data).model_dump()))

    def update_service_combo(self, combo_id: str, changes: Changes) -> Optional[ServiceCombo]:
        return self._update(ServiceCombo, combo_id, clean_changes(ServiceCombo, changes))

    def delete_service_combo(self, combo_id: str) -> bool:
        return self._delete(ServiceCombo, combo_id)

    def get_service_combo_items(self, combo_id: str) -> list[ServiceComboItem]:
        return self._find(ServiceComboItem, lambda i: i.combo_id == combo_id)

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
        with self._transaction():
            if not self._exists(ServiceCombo, combo_id):
                raise ConstraintViolation(f"service_combos {combo_id} does not exist")
            self._delete_where(ServiceComboItem, "combo_id", combo_id)
            items = [
                self._insert(
                    build_record(
                        ServiceComboItem,
                        {"combo_id": combo_id, "service_id": service_id},
                        staggered(now, index),
                    )
                )
                for index, service_id in enumerate(service_ids)
            ]
        return items

    # -------------------------- work orders --------------------------
    def get_work_order(self, work_order_id: str) -> Optional[WorkOrder]:
        return self._get(WorkOrder, work_order_id)

    def get_work_orders(self) -> list[WorkOrder]:
        return _newest_first(self._records(WorkOrder))

    def get_work_orders_by_status(self, estado: str) -> list[WorkOrder]:
        return _newest_first(self._find(WorkOrder, lambda o: o.estado == estado))

    def get_work_orders_by_customer(self, customer_id: str) -> list[WorkOrder]:
        return _newest_first(self._find(WorkOrder, lambda o: o.customer_id == customer_id))

    def _next_number(self) -> int:
        meta = self._load(METADATA)
        try:
            counter = int(meta.get(NEXT_NUMBER_KEY, 1))
        except (TypeError, ValueError):
            logger.error("metadata.json holds an invalid {}: {!r}", NEXT_NUMBER_KEY, meta.get(NEXT_NUMBER_KEY))
            counter = 1
        highest = max((row.get("numero") or 0 for row in self._load(WorkOrder.collection)), default=0)
        return max(counter, int(highest) + 1)

    def get_next_work_order_number(self) -> int:
        return self._next_number()

    def create_work_order(self, data: WorkOrderCreate | Mapping[str, Any]) -> WorkOrder:
        order = build_record(WorkOrder, work_order_values(validated(WorkOrderCreate, data)))
        with self._transaction():
            order.numero = self._next_number()
            self._insert(order, unique=("numero",))
            meta = dict(self._load(METADATA))
            meta[NEXT_NUMBER_KEY] = order.numero + 1
            self._stage(METADATA, meta)
        logger.info("Work order #{} created ({})", order.numero, order.id)
        return order

    def update_work_order(self, work_order_id: str, changes: Changes) -> Optional[WorkOrder]:
        return self._update(WorkOrder, work_order_id, clean_changes(WorkOrder, changes))

    def delete_work_order(self, work_order_id: str) -> bool:
        return self._delete(WorkOrder, work_order_id)

    def get_work_order_items(self, work_order_id: str) -> list[WorkOrderItem]:
        return self._find(WorkOrderItem, lambda i: i.work_order_id == work_order_id)

    def create_work_order_item(self, data: WorkOrderItemCreate | Mapping[str, Any]) -> WorkOrderItem:
        item = build_record(WorkOrderItem, validated(WorkOrderItemCreate, data).model_dump())
        return self._insert(item)

    def update_work_order_item(
        self, work_order_id: str, item_id: str, changes: Changes
    ) -> Optional[WorkOrderItem]:
        values = clean_changes(WorkOrderItem, changes)
        values.pop("work_order_id", None)
        with self._transaction():
            item = self._get(WorkOrderItem, item_id)
            if item is None or item.work_order_id != work_order_id:
                return None
            check_work_order_line(item, values)
            return self._update(WorkOrderItem, item_id, values)

    def delete_work_order_item(self, item_id: str) -> bool:
        return self._delete(WorkOrderItem, item_id)

    def delete_work_order_items_by_work_order(self, work_order_id: str) -> int:
        return self._delete_where(WorkOrderItem, "work_order_id", work_order_id)

    def recalculate_work_order_total(self, work_order_id: str) -> Optional[WorkOrder]:
        with self._transaction():
            total = items_total(self.get_work_order_items(work_order_id))
            return self._update(WorkOrder, work_order_id, {"total": total})

    def create_sale_from_work_order(
        self, work_order_id: str, data: SaleFromWorkOrder | Mapping[str, Any]
    ) -> Optional[Sale]:
        request = validated(SaleFromWorkOrder, data)
        with self._transaction():
            order = self._get(WorkOrder, work_order_id)
            if order is None:
                return None
            items = self.get_work_order_items(work_order_id)
            customer = self._get(Customer, order.customer_id)
            header, lines = sale_from_work_order_values(order, items, customer, request)
            sale = self._insert_sale(header, lines)
        logger.info("Sale {} created from work order #{}", sale.numero_factura, order.numero)
        return sale

    # -------------------------- inventory --------------------------
    def get_inventory_item(self, item_id: str) -> Optional[InventoryItem]:
        return self._get(InventoryItem, item_id)

    def get_inventory_items(self) -> list[InventoryItem]:
        return _newest_first(self._records(InventoryItem))

    def get_inventory_items_by_alert(self, estado: str) -> list[InventoryItem]:
        return _newest_first(self._find(InventoryItem, lambda i: i.estado_alerta == estado))

    def create_inventory_item(self, data: InventoryItemCreate | Mapping[str, Any]) -> InventoryItem:
        item = build_record(InventoryItem, inventory_values(validated(InventoryItemCreate, data)))
        return self._insert(item)

    def update_inventory_item(self, item_id: str, changes: Changes) -> Optional[InventoryItem]:
        return self._update(InventoryItem, item_id, clean_changes(InventoryItem, changes))

    def delete_inventory_item(self, item_id: str) -> bool:
        return self._delete(InventoryItem, item_id)

    def update_inventory_stock(self, item_id: str, new_stock: int) -> Optional[InventoryItem]:
        with self._transaction():
            item = self._get(InventoryItem, item_id)
            if item is None:
                return None
            values = {
                "stock_actual": int(new_stock),
                "estado_alerta": alert_status(int(new_stock), item.stock_minimo),
            }
            return self._update(InventoryItem, item_id, values)

    # -------------------------- sales --------------------------
    def get_sale(self, sale_id: str) -> Optional[Sale]:
        return self._get(Sale, sale_id)

    def get_sales(self) -> list[Sale]:
        return _newest_first(self._records(Sale))

    def get_sales_by_date_range(self, start: datetime, end: datetime) -> list[Sale]:
        low, high = as_utc(start), as_utc(end)
        return _newest_first(self._find(Sale, lambda s: s.fecha is not None and low <= s.fecha <= high))

    def get_sales_by_customer(self, customer_id: str) -> list[Sale]:
        return _newest_first(self._find(Sale, lambda s: s.customer_id == customer_id))

    def get_last_sale(self) -> Optional[Sale]:
        sales = self.get_sales()
        return sales[0] if sales else None

    def _insert_sale(self, header: Mapping[str, Any], lines: Iterable[Mapping[str, Any]]) -> Sale:
        now = utcnow()
        with self._transaction():
            sale = self._insert(build_record(Sale, header, now), unique=("numero_factura",))
            for index, line in enumerate(lines, start=1):
                self._insert(build_record(SaleItem, {**line, "sale_id": sale.id}, staggered(now, index)))
        return sale

    def create_sale(self, data: SaleCreate | Mapping[str, Any]) -> Sale:
        return self._insert_sale(sale_values(validated(SaleCreate, data)), ())

    def update_sale(self, sale_id: str, changes: Changes) -> Optional[Sale]:
        return self._update(Sale, sale_id, clean_changes(Sale, changes), unique=("numero_factura",))

    def delete_sale(self, sale_id: str) -> bool:
        return self._delete(Sale, sale_id)

    def create_sale_with_items(self, data: SaleWithItems | Mapping[str, Any]) -> Sale:
        request = validated(SaleWithItems, data)
        return self._insert_sale(sale_values(request), [item.model_dump() for item in request.items])

    def get_sale_items(self, sale_id: str) -> list[SaleItem]:
        return self._find(SaleItem, lambda i: i.sale_id == sale_id)

    def create_sale_item(self, data: SaleItemCreate | Mapping[str, Any]) -> SaleItem:
        return self._insert(build_record(SaleItem, validated(SaleItemCreate, data).model_dump()))

    def delete_sale_item(self, item_id: str) -> bool:
        return self._delete(SaleItem, item_id)

    def delete_sale_items_by_sale(self, sale_id: str) -> int:
        return self._delete_where(SaleItem, "sale_id", sale_id)
