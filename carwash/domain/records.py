"""
Record shapes returned by every storage back end.

Records are plain dataclasses. Both the JSON-file store and the SQL store
build them through ``from_dict``/``from_row`` so callers see identical
shapes regardless of the configured back end. Money amounts are exact
decimal text; date-times are timezone-aware UTC.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, ClassVar, Mapping

from carwash.core.utils import as_utc, parse_datetime


@dataclass
class Record:
    collection: ClassVar[str] = ""

    @classmethod
    def field_names(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    @classmethod
    def datetime_fields(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls) if "datetime" in str(f.type))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]):
        stamps = cls.datetime_fields()
        values = {}
        for name in cls.field_names():
            if name not in data:
                continue
            value = data[name]
            values[name] = parse_datetime(value) if name in stamps else value
        return cls(**values)

    @classmethod
    def from_row(cls, row: Any):
        stamps = cls.datetime_fields()
        values = {}
        for name in cls.field_names():
            value = getattr(row, name)
            values[name] = as_utc(value) if name in stamps else value
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        out = {}
        for name in self.field_names():
            value = getattr(self, name)
            out[name] = value.isoformat() if isinstance(value, datetime) else value
        return out


@dataclass
class User(Record):
    collection: ClassVar[str] = "users"

    id: str = ""
    username: str = ""
    password: str = ""
    full_name: str | None = None
    email: str | None = None
    role: str = "user"
    subscription_type: str = "free"
    monthly_invoice_limit: int = 50
    expiration_date: datetime | None = None
    current_month_invoices: int = 0
    usage_reset_date: datetime | None = None
    is_active: bool = True
    is_blocked: bool = False
    last_login: datetime | None = None
    failed_login_attempts: int = 0
    last_failed_login: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str | None = None


@dataclass
class CompanyConfig(Record):
    collection: ClassVar[str] = "company_configs"

    id: str = ""
    ruc: str = ""
    razon_social: str = ""
    nombre_fantasia: str | None = None
    timbrado_numero: str = ""
    timbrado_desde: str = ""
    timbrado_hasta: str = ""
    establecimiento: str = "001"
    punto_expedicion: str = "001"
    direccion: str = ""
    ciudad: str = "Asunción"
    telefono: str | None = None
    email: str | None = None
    logo_path: str | None = None
    moneda: str = "GS"
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class DnitConfig(Record):
    collection: ClassVar[str] = "dnit_configs"

    id: str = ""
    endpoint_url: str = ""
    auth_token: str | None = None
    certificate_data: str | None = None
    certificate_password: str | None = None
    operation_mode: str = "testing"
    is_active: bool = False
    last_connection_test: datetime | None = None
    last_connection_status: str | None = None
    last_connection_error: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Category(Record):
    collection: ClassVar[str] = "categories"

    id: str = ""
    nombre: str = ""
    descripcion: str | None = None
    tipo: str = "ambos"
    color: str | None = None
    activa: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Customer(Record):
    collection: ClassVar[str] = "customers"

    id: str = ""
    nombre: str = ""
    doc_tipo: str = "CI"
    doc_numero: str = ""
    email: str | None = None
    telefono: str | None = None
    direccion: str | None = None
    regimen_turismo: bool = False
    pais: str | None = None
    pasaporte: str | None = None
    fecha_ingreso: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Vehicle(Record):
    collection: ClassVar[str] = "vehicles"

    id: str = ""
    customer_id: str = ""
    placa: str = ""
    marca: str = ""
    modelo: str = ""
    color: str = ""
    observaciones: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Service(Record):
    collection: ClassVar[str] = "services"

    id: str = ""
    nombre: str = ""
    descripcion: str | None = None
    precio: str = "0"
    duracion_min: int = 0
    categoria: str = ""
    activo: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class ServiceCombo(Record):
    collection: ClassVar[str] = "service_combos"

    id: str = ""
    nombre: str = ""
    descripcion: str | None = None
    precio_total: str = "0"
    activo: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class ServiceComboItem(Record):
    collection: ClassVar[str] = "service_combo_items"

    id: str = ""
    combo_id: str = ""
    service_id: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class WorkOrder(Record):
    collection: ClassVar[str] = "work_orders"

    id: str = ""
    numero: int = 0
    customer_id: str = ""
    vehicle_id: str = ""
    estado: str = "recibido"
    fecha_entrada: datetime | None = None
    fecha_inicio: datetime | None = None
    fecha_fin: datetime | None = None
    fecha_entrega: datetime | None = None
    observaciones: str | None = None
    total: str = "0"
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class WorkOrderItem(Record):
    collection: ClassVar[str] = "work_order_items"

    id: str = ""
    work_order_id: str = ""
    service_id: str | None = None
    combo_id: str | None = None
    nombre: str = ""
    precio: str = "0"
    cantidad: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class InventoryItem(Record):
    collection: ClassVar[str] = "inventory_items"

    id: str = ""
    nombre: str = ""
    descripcion: str | None = None
    precio: str = "0"
    stock_actual: int = 0
    stock_minimo: int = 0
    unidad_medida: str = "unidad"
    categoria: str = ""
    proveedor: str | None = None
    ultimo_pedido: str | None = None
    estado_alerta: str = "normal"
    activo: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Sale(Record):
    collection: ClassVar[str] = "sales"

    id: str = ""
    numero_factura: str = ""
    customer_id: str | None = None
    work_order_id: str | None = None
    fecha: datetime | None = None
    subtotal: str = "0"
    impuestos: str = "0"
    total: str = "0"
    medio_pago: str = "efectivo"
    regimen_turismo: bool = False
    timbrado_usado: str = ""
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class SaleItem(Record):
    collection: ClassVar[str] = "sale_items"

    id: str = ""
    sale_id: str = ""
    service_id: str | None = None
    combo_id: str | None = None
    inventory_item_id: str | None = None
    nombre: str = ""
    cantidad: int = 1
    precio_unitario: str = "0"
    subtotal: str = "0"
    created_at: datetime | None = None
    updated_at: datetime | None = None


ALL_RECORDS: tuple[type[Record], ...] = (
    User,
    CompanyConfig,
    DnitConfig,
    Category,
    Customer,
    Vehicle,
    Service,
    ServiceCombo,
    ServiceComboItem,
    WorkOrder,
    WorkOrderItem,
    InventoryItem,
    Sale,
    SaleItem,
)


# -------------------------- safe projections --------------------------
@dataclass
class PublicUser:
    """User as shown outside the storage layer: no password material."""

    id: str
    username: str
    full_name: str | None
    email: str | None
    role: str
    subscription_type: str
    monthly_invoice_limit: int
    expiration_date: datetime | None
    current_month_invoices: int
    usage_reset_date: datetime | None
    is_active: bool
    is_blocked: bool
    last_login: datetime | None
    created_at: datetime | None
    updated_at: datetime | None
    created_by: str | None

    @classmethod
    def from_user(cls, user: User) -> "PublicUser":
        return cls(**{f.name: getattr(user, f.name) for f in fields(cls)})


@dataclass
class SafeDnitConfig:
    """DNIT configuration with secrets replaced by presence flags."""

    id: str
    endpoint_url: str
    operation_mode: str
    is_active: bool
    last_connection_test: datetime | None
    last_connection_status: str | None
    last_connection_error: str | None
    created_at: datetime | None
    updated_at: datetime | None
    has_auth_token: bool
    has_certificate_password: bool

    @classmethod
    def from_config(cls, config: DnitConfig) -> "SafeDnitConfig":
        return cls(
            id=config.id,
            endpoint_url=config.endpoint_url,
            operation_mode=config.operation_mode,
            is_active=config.is_active,
            last_connection_test=config.last_connection_test,
            last_connection_status=config.last_connection_status,
            last_connection_error=config.last_connection_error,
            created_at=config.created_at,
            updated_at=config.updated_at,
            has_auth_token=bool(config.auth_token),
            has_certificate_password=bool(config.certificate_password),
        )
