"""
Storage contract shared by the JSON-file and SQL back ends.

``IStorage`` lists every operation callers may use. Both implementations
return the record dataclasses from ``carwash.domain.records`` and follow the
same conventions:

* ``get_*`` returns the record or ``None``; ``delete_*`` returns ``True`` when
  a row was removed and ``False`` when the id was unknown.
* ``update_*`` accepts a pydantic update schema (only the fields the caller
  set are applied) or a plain mapping validated against that schema; ``id``,
  ``created_at``, ``updated_at`` and ``numero`` are never taken from the
  caller.
* Lists are newest first, except categories, services and combos (name
  order) and child item lists (insertion order).
* Write failures raise ``StorageError``; uniqueness and foreign-key
  failures raise ``ConstraintViolation``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import fields
from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping, Optional, TypeVar

from loguru import logger
from pydantic import BaseModel

from carwash.core.security import SecretDecryptionError, decrypt_secret, encrypt_secret, hash_password
from carwash.core.utils import alert_status, decimal_text, line_total, new_id, parse_datetime, sum_amounts, to_decimal, utcnow
from carwash.domain.records import (
    Category,
    CompanyConfig,
    Customer,
    DnitConfig,
    InventoryItem,
    PublicUser,
    Record,
    SafeDnitConfig,
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
    CategoryUpdate,
    CompanyConfigCreate,
    CompanyConfigUpdate,
    CustomerCreate,
    CustomerUpdate,
    DnitConfigCreate,
    DnitConfigUpdate,
    InventoryItemCreate,
    InventoryItemUpdate,
    SaleCreate,
    SaleFromWorkOrder,
    SaleItemCreate,
    SaleUpdate,
    SaleWithItems,
    Schema,
    ServiceComboCreate,
    ServiceComboItemCreate,
    ServiceComboUpdate,
    ServiceCreate,
    ServiceUpdate,
    UserCreate,
    UserUpdate,
    VehicleCreate,
    VehicleUpdate,
    WorkOrderCreate,
    WorkOrderItemCreate,
    WorkOrderItemInput,
    WorkOrderItemUpdate,
    WorkOrderUpdate,
)

R = TypeVar("R", bound=Record)
S = TypeVar("S", bound=BaseModel)

Changes = BaseModel | Mapping[str, Any]

PROTECTED_FIELDS = frozenset({"id", "created_at", "updated_at", "numero"})
DNIT_SECRET_FIELDS = ("auth_token", "certificate_password")
WORK_ORDER_COUNTER = "work_order"

# child record -> {column: parent record}
REFERENCES: dict[type[Record], dict[str, type[Record]]] = {
    User: {"created_by": User},
    Vehicle: {"customer_id": Customer},
    ServiceComboItem: {"combo_id": ServiceCombo, "service_id": Service},
    WorkOrder: {"customer_id": Customer, "vehicle_id": Vehicle},
    WorkOrderItem: {"work_order_id": WorkOrder, "service_id": Service, "combo_id": ServiceCombo},
    Sale: {"customer_id": Customer, "work_order_id": WorkOrder, "created_by": User},
    SaleItem: {
        "sale_id": Sale,
        "service_id": Service,
        "combo_id": ServiceCombo,
        "inventory_item_id": InventoryItem,
    },
}

# parent record -> (child record, column); children are removed with the parent
OWNED_CHILDREN: dict[type[Record], tuple[type[Record], str]] = {
    ServiceCombo: (ServiceComboItem, "combo_id"),
    WorkOrder: (WorkOrderItem, "work_order_id"),
    Sale: (SaleItem, "sale_id"),
}


# stored record -> schema every update payload is validated against
UPDATE_SCHEMAS: dict[type[Record], type[Schema]] = {
    User: UserUpdate,
    CompanyConfig: CompanyConfigUpdate,
    DnitConfig: DnitConfigUpdate,
    Category: CategoryUpdate,
    Customer: CustomerUpdate,
    Vehicle: VehicleUpdate,
    Service: ServiceUpdate,
    ServiceCombo: ServiceComboUpdate,
    WorkOrder: WorkOrderUpdate,
    WorkOrderItem: WorkOrderItemUpdate,
    InventoryItem: InventoryItemUpdate,
    Sale: SaleUpdate,
}


# -------------------------- payload helpers --------------------------
def validated(schema: type[S], data: S | Mapping[str, Any]) -> S:
    if isinstance(data, schema):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump()
    return schema.model_validate(data)


def _nullable(record_cls: type[Record]) -> set[str]:
    return {f.name for f in fields(record_cls) if "None" in str(f.type)}


def _sent_fields(record_cls: type[Record], changes: Changes) -> dict[str, Any]:
    schema = UPDATE_SCHEMAS[record_cls]
    if isinstance(changes, BaseModel) and not isinstance(changes, schema):
        changes = changes.model_dump(exclude_unset=True)
    if not isinstance(changes, BaseModel):
        changes = schema.model_validate(dict(changes or {}))
    return changes.changes()


def clean_changes(record_cls: type[Record], changes: Changes) -> dict[str, Any]:
    """Validate an update payload and reduce it to assignable fields of ``record_cls``.

    Mappings go through the record's update schema, so both back ends store
    the same normalized values; invalid payloads raise ``ValidationError``.
    """
    raw = _sent_fields(record_cls, changes)
    allowed = set(record_cls.field_names()) - PROTECTED_FIELDS
    nullable = _nullable(record_cls)
    stamps = record_cls.datetime_fields()
    values: dict[str, Any] = {}
    for key, value in raw.items():
        if key not in allowed:
            continue
        if value is None and key not in nullable:
            continue
        values[key] = parse_datetime(value) if key in stamps else value
    return values


def check_work_order_line(item: WorkOrderItem, values: Mapping[str, Any]) -> None:
    """Validate an edited line as a whole: a service or a combo, never both."""
    current = {name: getattr(item, name) for name in ("service_id", "combo_id", "nombre", "precio", "cantidad")}
    WorkOrderItemInput.model_validate({**current, **values})


def build_record(record_cls: type[R], values: Mapping[str, Any], now: datetime | None = None) -> R:
    """New record with a generated id and storage-assigned timestamps."""
    now = now or utcnow()
    allowed = set(record_cls.field_names()) - {"id", "created_at", "updated_at"}
    stamps = record_cls.datetime_fields()
    data = {
        key: (parse_datetime(value) if key in stamps else value)
        for key, value in values.items()
        if key in allowed
    }
    return record_cls(**data, id=new_id(), created_at=now, updated_at=now)


def new_user_values(data: UserCreate) -> dict[str, Any]:
    values = data.model_dump()
    values["password"] = hash_password(data.password)
    values["usage_reset_date"] = utcnow()
    values["current_month_invoices"] = 0
    values["failed_login_attempts"] = 0
    return values


def user_changes(changes: Changes) -> dict[str, Any]:
    values = clean_changes(User, changes)
    if "password" in values:
        values["password"] = hash_password(values["password"])
    return values


def seal_dnit_secrets(values: dict[str, Any]) -> dict[str, Any]:
    """Encrypt DNIT secrets in-place; an explicit ``None`` clears the certificate password."""
    if values.get("auth_token") is None:
        values.pop("auth_token", None)
    for key in DNIT_SECRET_FIELDS:
        if values.get(key) is not None:
            values[key] = encrypt_secret(values[key])
    return values


def open_dnit_secrets(config: DnitConfig | None) -> DnitConfig | None:
    if config is None:
        return None
    for key in DNIT_SECRET_FIELDS:
        token = getattr(config, key)
        if not token:
            continue
        try:
            setattr(config, key, decrypt_secret(token))
        except SecretDecryptionError:
            logger.error("DNIT config {}: stored {} could not be decrypted", config.id, key)
            setattr(config, key, None)
    return config


def connection_test_values(success: bool, error: str | None) -> dict[str, Any]:
    return {
        "last_connection_test": utcnow(),
        "last_connection_status": "success" if success else "error",
        "last_connection_error": None if success else (error or "unknown error"),
    }


def inventory_values(data: InventoryItemCreate) -> dict[str, Any]:
    values = data.model_dump()
    if values.get("estado_alerta") is None:
        values["estado_alerta"] = alert_status(data.stock_actual, data.stock_minimo)
    return values


def work_order_values(data: WorkOrderCreate) -> dict[str, Any]:
    values = data.model_dump()
    values["fecha_entrada"] = values.get("fecha_entrada") or utcnow()
    return values


def items_total(items: Iterable[WorkOrderItem]) -> str:
    return sum_amounts(line_total(item.precio, item.cantidad) for item in items)


def staggered(now: datetime, index: int) -> datetime:
    """Distinct timestamps for rows written in one batch, keeping their order."""
    return now + timedelta(microseconds=index)


def sale_from_work_order_values(
    order: WorkOrder,
    items: Iterable[WorkOrderItem],
    customer: Customer | None,
    data: SaleFromWorkOrder,
) -> tuple[dict[str, Any], list[dict[str, Any]]]:
    """Sale header and sale lines invoicing ``order``."""
    total = data.total if data.total is not None else decimal_text(to_decimal(order.total))
    subtotal = data.subtotal if data.subtotal is not None else total
    regimen = data.regimen_turismo
    if regimen is None:
        regimen = bool(customer and customer.regimen_turismo)
    sale = {
        "numero_factura": data.numero_factura,
        "customer_id": order.customer_id,
        "work_order_id": order.id,
        "fecha": data.fecha or utcnow(),
        "subtotal": subtotal,
        "impuestos": data.impuestos,
        "total": total,
        "medio_pago": data.medio_pago,
        "regimen_turismo": regimen,
        "timbrado_usado": data.timbrado_usado,
        "created_by": data.created_by,
    }
    lines = [
        {
            "service_id": item.service_id,
            "combo_id": item.combo_id,
            "inventory_item_id": None,
            "nombre": item.nombre,
            "cantidad": item.cantidad,
            "precio_unitario": item.precio,
            "subtotal": decimal_text(line_total(item.precio, item.cantidad)),
        }
        for item in items
    ]
    return sale, lines


def sale_values(data: SaleCreate) -> dict[str, Any]:
    values = data.model_dump(exclude={"items"})
    values["fecha"] = values.get("fecha") or utcnow()
    return values


# -------------------------- contract --------------------------
class IStorage(ABC):
    """Operations every storage back end provides."""

    # lifecycle
    @abstractmethod
    def initialize(self) -> None:
        """Create documents/tables when missing. Safe to call repeatedly."""

    def close(self) -> None:
        """Release resources held by the back end."""

    # -------------------------- users --------------------------
    @abstractmethod
    def get_user(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    def get_user_by_username(self, username: str) -> Optional[User]: ...

    @abstractmethod
    def get_user_by_email(self, email: str) -> Optional[User]: ...

    @abstractmethod
    def get_users(self) -> list[User]: ...

    @abstractmethod
    def get_active_users(self) -> list[User]: ...

    @abstractmethod
    def create_user(self, data: UserCreate | Mapping[str, Any]) -> User: ...

    @abstractmethod
    def update_user(self, user_id: str, changes: Changes) -> Optional[User]: ...

    @abstractmethod
    def delete_user(self, user_id: str) -> bool: ...

    @abstractmethod
    def increment_user_invoice_count(self, user_id: str) -> Optional[User]: ...

    def deactivate_user(self, user_id: str) -> Optional[User]:
        return self.update_user(user_id, {"is_active": False})

    def reset_monthly_usage(self, user_id: str) -> Optional[User]:
        return self.update_user(user_id, {"current_month_invoices": 0, "usage_reset_date": utcnow()})

    def get_public_user(self, user_id: str) -> Optional[PublicUser]:
        user = self.get_user(user_id)
        return PublicUser.from_user(user) if user else None

    def get_public_users(self) -> list[PublicUser]:
        return [PublicUser.from_user(user) for user in self.get_users()]

    # -------------------------- company config --------------------------
    @abstractmethod
    def get_company_config(self) -> Optional[CompanyConfig]: ...

    @abstractmethod
    def create_company_config(self, data: CompanyConfigCreate | Mapping[str, Any]) -> CompanyConfig: ...

    @abstractmethod
    def update_company_config(self, config_id: str, changes: Changes) -> Optional[CompanyConfig]: ...

    @abstractmethod
    def delete_company_config(self, config_id: str) -> bool: ...

    # -------------------------- DNIT config --------------------------
    @abstractmethod
    def get_dnit_config(self) -> Optional[DnitConfig]:
        """First configuration row with its secrets decrypted."""

    @abstractmethod
    def create_dnit_config(self, data: DnitConfigCreate | Mapping[str, Any]) -> DnitConfig: ...

    @abstractmethod
    def update_dnit_config(self, config_id: str, changes: Changes) -> Optional[DnitConfig]: ...

    @abstractmethod
    def delete_dnit_config(self, config_id: str) -> bool: ...

    def get_safe_dnit_config(self) -> Optional[SafeDnitConfig]:
        config = self.get_dnit_config()
        return SafeDnitConfig.from_config(config) if config else None

    def record_dnit_connection_test(
        self, config_id: str, success: bool, error: str | None = None
    ) -> Optional[DnitConfig]:
        return self.update_dnit_config(config_id, connection_test_values(success, error))

    # -------------------------- categories --------------------------
    @abstractmethod
    def get_category(self, category_id: str) -> Optional[Category]: ...

    @abstractmethod
    def get_categories(self) -> list[Category]: ...

    @abstractmethod
    def get_categories_by_type(self, tipo: str) -> list[Category]:
        """Categories of ``tipo`` plus those shared by both catalogs."""

    @abstractmethod
    def get_active_categories(self) -> list[Category]: ...

    @abstractmethod
    def create_category(self, data: CategoryCreate | Mapping[str, Any]) -> Category: ...

    @abstractmethod
    def update_category(self, category_id: str, changes: Changes) -> Optional[Category]: ...

    @abstractmethod
    def delete_category(self, category_id: str) -> bool: ...

    # -------------------------- customers --------------------------
    @abstractmethod
    def get_customer(self, customer_id: str) -> Optional[Customer]: ...

    @abstractmethod
    def get_customers(self) -> list[Customer]: ...

    @abstractmethod
    def create_customer(self, data: CustomerCreate | Mapping[str, Any]) -> Customer: ...

    @abstractmethod
    def update_customer(self, customer_id: str, changes: Changes) -> Optional[Customer]: ...

    @abstractmethod
    def delete_customer(self, customer_id: str) -> bool: ...

    # -------------------------- vehicles --------------------------
    @abstractmethod
    def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]: ...

    @abstractmethod
    def get_vehicles(self) -> list[Vehicle]: ...

    @abstractmethod
    def get_vehicles_by_customer(self, customer_id: str) -> list[Vehicle]: ...

    @abstractmethod
    def create_vehicle(self, data: VehicleCreate | Mapping[str, Any]) -> Vehicle: ...

    @abstractmethod
    def update_vehicle(self, vehicle_id: str, changes: Changes) -> Optional[Vehicle]: ...

    @abstractmethod
    def delete_vehicle(self, vehicle_id: str) -> bool: ...

    # -------------------------- services --------------------------
    @abstractmethod
    def get_service(self, service_id: str) -> Optional[Service]: ...

    @abstractmethod
    def get_services(self) -> list[Service]: ...

    @abstractmethod
    def get_active_services(self) -> list[Service]: ...

    @abstractmethod
    def create_service(self, data: ServiceCreate | Mapping[str, Any]) -> Service: ...

    @abstractmethod
    def update_service(self, service_id: str, changes: Changes) -> Optional[Service]: ...

    @abstractmethod
    def delete_service(self, service_id: str) -> bool: ...

    # -------------------------- combos --------------------------
    @abstractmethod
    def get_service_combo(self, combo_id: str) -> Optional[ServiceCombo]: ...

    @abstractmethod
    def get_service_combos(self) -> list[ServiceCombo]: ...

    @abstractmethod
    def get_active_service_combos(self) -> list[ServiceCombo]: ...

    @abstractmethod
    def create_service_combo(self, data: ServiceComboCreate | Mapping[str, Any]) -> ServiceCombo: ...

    @abstractmethod
    def update_service_combo(self, combo_id: str, changes: Changes) -> Optional[ServiceCombo]: ...

    @abstractmethod
    def delete_service_combo(self, combo_id: str) -> bool:
        """Delete the combo and its service links together."""

    @abstractmethod
    def get_service_combo_items(self, combo_id: str) -> list[ServiceComboItem]: ...

    @abstractmethod
    def create_service_combo_item(
        self, data: ServiceComboItemCreate | Mapping[str, Any]
    ) -> ServiceComboItem: ...

    @abstractmethod
    def delete_service_combo_item(self, item_id: str) -> bool: ...

    @abstractmethod
    def delete_service_combo_items_by_combo(self, combo_id: str) -> int: ...

    @abstractmethod
    def set_service_combo_items(self, combo_id: str, service_ids: Iterable[str]) -> list[ServiceComboItem]:
        """Replace the combo's services; nothing changes when any id is invalid."""

    # -------------------------- work orders --------------------------
    @abstractmethod
    def get_work_order(self, work_order_id: str) -> Optional[WorkOrder]: ...

    @abstractmethod
    def get_work_orders(self) -> list[WorkOrder]: ...

    @abstractmethod
    def get_work_orders_by_status(self, estado: str) -> list[WorkOrder]: ...

    @abstractmethod
    def get_work_orders_by_customer(self, customer_id: str) -> list[WorkOrder]: ...

    @abstractmethod
    def get_next_work_order_number(self) -> Optional[int]:
        """Number the next work order will get; ``None`` when the store cannot be read."""

    @abstractmethod
    def create_work_order(self, data: WorkOrderCreate | Mapping[str, Any]) -> WorkOrder: ...

    @abstractmethod
    def update_work_order(self, work_order_id: str, changes: Changes) -> Optional[WorkOrder]: ...

    @abstractmethod
    def delete_work_order(self, work_order_id: str) -> bool:
        """Delete the order and its line items together."""

    def update_work_order_status(self, work_order_id: str, estado: str) -> Optional[WorkOrder]:
        return self.update_work_order(work_order_id, {"estado": estado})

    @abstractmethod
    def get_work_order_items(self, work_order_id: str) -> list[WorkOrderItem]: ...

    @abstractmethod
    def create_work_order_item(self, data: WorkOrderItemCreate | Mapping[str, Any]) -> WorkOrderItem: ...

    @abstractmethod
    def update_work_order_item(
        self, work_order_id: str, item_id: str, changes: Changes
    ) -> Optional[WorkOrderItem]: ...

    @abstractmethod
    def delete_work_order_item(self, item_id: str) -> bool: ...

    @abstractmethod
    def delete_work_order_items_by_work_order(self, work_order_id: str) -> int: ...

    @abstractmethod
    def recalculate_work_order_total(self, work_order_id: str) -> Optional[WorkOrder]:
        """Store the sum of price x quantity over the order's lines as its total."""

    def add_work_order_item(
        self, work_order_id: str, item: WorkOrderItemInput | Mapping[str, Any]
    ) -> WorkOrderItem:
        line = validated(WorkOrderItemInput, item)
        return self.create_work_order_item(
            WorkOrderItemCreate(**line.model_dump(), work_order_id=work_order_id)
        )

    def remove_work_order_item(self, work_order_id: str, item_id: str) -> bool:
        if not any(item.id == item_id for item in self.get_work_order_items(work_order_id)):
            return False
        return self.delete_work_order_item(item_id)

    @abstractmethod
    def create_sale_from_work_order(
        self, work_order_id: str, data: SaleFromWorkOrder | Mapping[str, Any]
    ) -> Optional[Sale]:
        """Invoice a work order: the sale and one line per order item, all or nothing."""

    # -------------------------- inventory --------------------------
    @abstractmethod
    def get_inventory_item(self, item_id: str) -> Optional[InventoryItem]: ...

    @abstractmethod
    def get_inventory_items(self) -> list[InventoryItem]: ...

    @abstractmethod
    def get_inventory_items_by_alert(self, estado: str) -> list[InventoryItem]: ...

    @abstractmethod
    def create_inventory_item(self, data: InventoryItemCreate | Mapping[str, Any]) -> InventoryItem: ...

    @abstractmethod
    def update_inventory_item(self, item_id: str, changes: Changes) -> Optional[InventoryItem]: ...

    @abstractmethod
    def delete_inventory_item(self, item_id: str) -> bool: ...

    @abstractmethod
    def update_inventory_stock(self, item_id: str, new_stock: int) -> Optional[InventoryItem]:
        """Set the stock level and recompute the alert status from it."""

    # -------------------------- sales --------------------------
    @abstractmethod
    def get_sale(self, sale_id: str) -> Optional[Sale]: ...

    @abstractmethod
    def get_sales(self) -> list[Sale]: ...

    @abstractmethod
    def get_sales_by_date_range(self, start: datetime, end: datetime) -> list[Sale]: ...

    @abstractmethod
    def get_sales_by_customer(self, customer_id: str) -> list[Sale]: ...

    @abstractmethod
    def get_last_sale(self) -> Optional[Sale]: ...

    @abstractmethod
    def create_sale(self, data: SaleCreate | Mapping[str, Any]) -> Sale: ...

    @abstractmethod
    def update_sale(self, sale_id: str, changes: Changes) -> Optional[Sale]: ...

    @abstractmethod
    def delete_sale(self, sale_id: str) -> bool:
        """Delete the sale and its lines together."""

    @abstractmethod
    def create_sale_with_items(self, data: SaleWithItems | Mapping[str, Any]) -> Sale: ...

    @abstractmethod
    def get_sale_items(self, sale_id: str) -> list[SaleItem]: ...

    @abstractmethod
    def create_sale_item(self, data: SaleItemCreate | Mapping[str, Any]) -> SaleItem: ...

    @abstractmethod
    def delete_sale_item(self, item_id: str) -> bool: ...

    @abstractmethod
    def delete_sale_items_by_sale(self, sale_id: str) -> int: ...
