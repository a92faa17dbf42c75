"""
Input validation schemas.

Request payloads are validated here before they reach a storage back end;
storage does not re-validate business rules. Payloads may use snake_case
field names or the camelCase names the front end sends.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Annotated, Any, Literal, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

Role = Literal["admin", "user", "readonly"]
SubscriptionType = Literal["free", "basic", "premium", "enterprise"]
OperationMode = Literal["testing", "production"]
CategoryType = Literal["servicios", "productos", "ambos"]
DocType = Literal["CI", "Pasaporte", "RUC", "Extranjero"]
WorkOrderStatus = Literal["recibido", "en_proceso", "terminado", "entregado", "cancelado"]
AlertStatus = Literal["normal", "bajo", "critico"]
PaymentMethod = Literal["efectivo", "tarjeta_credito", "tarjeta_debito", "transferencia", "cheque"]

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
HEX_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"


def _decimal_text(value: Any) -> str:
    """Keep money amounts as the exact text the caller sent."""
    if isinstance(value, bool):
        raise ValueError("amount must be a number")
    if isinstance(value, float):
        value = repr(value)
    elif isinstance(value, (int, Decimal)):
        value = str(value)
    if not isinstance(value, str):
        raise ValueError("amount must be a number")
    text = value.strip()
    try:
        amount = Decimal(text)
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"invalid amount: {value!r}")
    return text


DecimalText = Annotated[str, BeforeValidator(_decimal_text)]
Email = Annotated[str, Field(pattern=EMAIL_PATTERN, max_length=255)]
PositiveInt = Annotated[int, Field(gt=0)]
NonNegativeInt = Annotated[int, Field(ge=0)]
RequiredText = Annotated[str, Field(min_length=1)]


class Schema(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def changes(self) -> dict[str, Any]:
        """Fields the caller actually sent, for partial updates."""
        return self.model_dump(exclude_unset=True)


# -------------------------- users --------------------------
class UserCreate(Schema):
    username: Annotated[str, Field(min_length=3, max_length=255)]
    password: Annotated[str, Field(min_length=6)]
    full_name: Optional[str] = None
    email: Optional[Email] = None
    role: Role = "user"
    subscription_type: SubscriptionType = "free"
    monthly_invoice_limit: PositiveInt = 50
    expiration_date: Optional[datetime] = None
    is_active: bool = True
    is_blocked: bool = False
    created_by: Optional[str] = None


class UserUpdate(Schema):
    username: Optional[Annotated[str, Field(min_length=3, max_length=255)]] = None
    password: Optional[Annotated[str, Field(min_length=6)]] = None
    full_name: Optional[str] = None
    email: Optional[Email] = None
    role: Optional[Role] = None
    subscription_type: Optional[SubscriptionType] = None
    monthly_invoice_limit: Optional[PositiveInt] = None
    expiration_date: Optional[datetime] = None
    is_active: Optional[bool] = None
    is_blocked: Optional[bool] = None
    # account state kept by login and monthly usage resets
    current_month_invoices: Optional[NonNegativeInt] = None
    usage_reset_date: Optional[datetime] = None
    last_login: Optional[datetime] = None
    failed_login_attempts: Optional[NonNegativeInt] = None
    last_failed_login: Optional[datetime] = None


class LoginRequest(Schema):
    username: RequiredText
    password: RequiredText


class ChangePasswordRequest(Schema):
    current_password: RequiredText
    new_password: Annotated[str, Field(min_length=6)]


# -------------------------- configuration --------------------------
class CompanyConfigCreate(Schema):
    ruc: RequiredText
    razon_social: RequiredText
    nombre_fantasia: Optional[str] = None
    timbrado_numero: RequiredText
    timbrado_desde: RequiredText
    timbrado_hasta: RequiredText
    establecimiento: str = "001"
    punto_expedicion: str = "001"
    direccion: RequiredText
    ciudad: str = "Asunción"
    telefono: Optional[str] = None
    email: Optional[Email] = None
    logo_path: Optional[str] = None
    moneda: str = "GS"


class CompanyConfigUpdate(Schema):
    ruc: Optional[RequiredText] = None
    razon_social: Optional[RequiredText] = None
    nombre_fantasia: Optional[str] = None
    timbrado_numero: Optional[RequiredText] = None
    timbrado_desde: Optional[RequiredText] = None
    timbrado_hasta: Optional[RequiredText] = None
    establecimiento: Optional[str] = None
    punto_expedicion: Optional[str] = None
    direccion: Optional[RequiredText] = None
    ciudad: Optional[str] = None
    telefono: Optional[str] = None
    email: Optional[Email] = None
    logo_path: Optional[str] = None
    moneda: Optional[str] = None


def _check_endpoint(value: str | None) -> str | None:
    if value is None:
        return value
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("invalid URL format")
    return value


class DnitConfigCreate(Schema):
    endpoint_url: RequiredText
    auth_token: RequiredText
    certificate_data: Optional[str] = None
    certificate_password: Optional[str] = None
    operation_mode: OperationMode = "testing"
    is_active: bool = False

    @field_validator("endpoint_url")
    @classmethod
    def check_endpoint(cls, value: str | None) -> str | None:
        return _check_endpoint(value)


class DnitConfigUpdate(Schema):
    endpoint_url: Optional[RequiredText] = None
    auth_token: Optional[RequiredText] = None
    certificate_data: Optional[str] = None
    certificate_password: Optional[str] = None
    operation_mode: Optional[OperationMode] = None
    is_active: Optional[bool] = None
    last_connection_test: Optional[datetime] = None
    last_connection_status: Optional[str] = None
    last_connection_error: Optional[str] = None

    @field_validator("endpoint_url")
    @classmethod
    def check_endpoint(cls, value: str | None) -> str | None:
        return _check_endpoint(value)


# -------------------------- catalog --------------------------
class CategoryCreate(Schema):
    nombre: RequiredText
    descripcion: Optional[str] = None
    tipo: CategoryType = "ambos"
    color: Optional[Annotated[str, Field(pattern=HEX_COLOR_PATTERN)]] = None
    activa: bool = True


class CategoryUpdate(Schema):
    nombre: Optional[RequiredText] = None
    descripcion: Optional[str] = None
    tipo: Optional[CategoryType] = None
    color: Optional[Annotated[str, Field(pattern=HEX_COLOR_PATTERN)]] = None
    activa: Optional[bool] = None


class ServiceCreate(Schema):
    nombre: RequiredText
    descripcion: Optional[str] = None
    precio: DecimalText
    duracion_min: PositiveInt
    categoria: RequiredText
    activo: bool = True


class ServiceUpdate(Schema):
    nombre: Optional[RequiredText] = None
    descripcion: Optional[str] = None
    precio: Optional[DecimalText] = None
    duracion_min: Optional[PositiveInt] = None
    categoria: Optional[RequiredText] = None
    activo: Optional[bool] = None


class ServiceComboCreate(Schema):
    nombre: RequiredText
    descripcion: Optional[str] = None
    precio_total: DecimalText
    activo: bool = True


class ServiceComboUpdate(Schema):
    nombre: Optional[RequiredText] = None
    descripcion: Optional[str] = None
    precio_total: Optional[DecimalText] = None
    activo: Optional[bool] = None


class ServiceComboItemCreate(Schema):
    combo_id: RequiredText
    service_id: RequiredText


# -------------------------- customers & vehicles --------------------------
class CustomerCreate(Schema):
    nombre: RequiredText
    doc_tipo: DocType = "CI"
    doc_numero: RequiredText
    email: Optional[Email] = None
    telefono: Optional[str] = None
    direccion: Optional[str] = None
    regimen_turismo: bool = False
    pais: Optional[str] = None
    pasaporte: Optional[str] = None
    fecha_ingreso: Optional[str] = None


class CustomerUpdate(Schema):
    nombre: Optional[RequiredText] = None
    doc_tipo: Optional[DocType] = None
    doc_numero: Optional[RequiredText] = None
    email: Optional[Email] = None
    telefono: Optional[str] = None
    direccion: Optional[str] = None
    regimen_turismo: Optional[bool] = None
    pais: Optional[str] = None
    pasaporte: Optional[str] = None
    fecha_ingreso: Optional[str] = None


class VehicleCreate(Schema):
    customer_id: RequiredText
    placa: Annotated[str, Field(min_length=1, max_length=20)]
    marca: Annotated[str, Field(min_length=1, max_length=50)]
    modelo: Annotated[str, Field(min_length=1, max_length=50)]
    color: Annotated[str, Field(min_length=1, max_length=30)]
    observaciones: Optional[str] = None


class VehicleUpdate(Schema):
    customer_id: Optional[RequiredText] = None
    placa: Optional[Annotated[str, Field(min_length=1, max_length=20)]] = None
    marca: Optional[Annotated[str, Field(min_length=1, max_length=50)]] = None
    modelo: Optional[Annotated[str, Field(min_length=1, max_length=50)]] = None
    color: Optional[Annotated[str, Field(min_length=1, max_length=30)]] = None
    observaciones: Optional[str] = None


# -------------------------- work orders --------------------------
class WorkOrderCreate(Schema):
    customer_id: RequiredText
    vehicle_id: RequiredText
    estado: WorkOrderStatus = "recibido"
    fecha_entrada: Optional[datetime] = None
    fecha_inicio: Optional[datetime] = None
    fecha_fin: Optional[datetime] = None
    fecha_entrega: Optional[datetime] = None
    observaciones: Optional[str] = None
    total: DecimalText = "0"


class WorkOrderUpdate(Schema):
    customer_id: Optional[RequiredText] = None
    vehicle_id: Optional[RequiredText] = None
    estado: Optional[WorkOrderStatus] = None
    fecha_entrada: Optional[datetime] = None
    fecha_inicio: Optional[datetime] = None
    fecha_fin: Optional[datetime] = None
    fecha_entrega: Optional[datetime] = None
    observaciones: Optional[str] = None
    total: Optional[DecimalText] = None


class WorkOrderItemInput(Schema):
    service_id: Optional[str] = None
    combo_id: Optional[str] = None
    nombre: RequiredText
    precio: DecimalText
    cantidad: PositiveInt = 1

    @model_validator(mode="after")
    def check_single_source(self):
        if self.service_id and self.combo_id:
            raise ValueError("a work order line references a service or a combo, not both")
        return self


class WorkOrderItemCreate(WorkOrderItemInput):
    work_order_id: RequiredText


class WorkOrderItemUpdate(Schema):
    service_id: Optional[str] = None
    combo_id: Optional[str] = None
    nombre: Optional[RequiredText] = None
    precio: Optional[DecimalText] = None
    cantidad: Optional[PositiveInt] = None


# -------------------------- inventory --------------------------
class InventoryItemCreate(Schema):
    nombre: RequiredText
    descripcion: Optional[str] = None
    precio: DecimalText
    stock_actual: NonNegativeInt
    stock_minimo: NonNegativeInt
    unidad_medida: str = "unidad"
    categoria: RequiredText
    proveedor: Optional[str] = None
    ultimo_pedido: Optional[str] = None
    estado_alerta: Optional[AlertStatus] = None
    activo: bool = True


class InventoryItemUpdate(Schema):
    nombre: Optional[RequiredText] = None
    descripcion: Optional[str] = None
    precio: Optional[DecimalText] = None
    stock_actual: Optional[NonNegativeInt] = None
    stock_minimo: Optional[NonNegativeInt] = None
    unidad_medida: Optional[str] = None
    categoria: Optional[RequiredText] = None
    proveedor: Optional[str] = None
    ultimo_pedido: Optional[str] = None
    estado_alerta: Optional[AlertStatus] = None
    activo: Optional[bool] = None


# -------------------------- sales --------------------------
class SaleCreate(Schema):
    numero_factura: RequiredText
    customer_id: Optional[str] = None
    work_order_id: Optional[str] = None
    fecha: Optional[datetime] = None
    subtotal: DecimalText
    impuestos: DecimalText = "0"
    total: DecimalText
    medio_pago: PaymentMethod
    regimen_turismo: bool = False
    timbrado_usado: RequiredText
    created_by: Optional[str] = None


class SaleUpdate(Schema):
    numero_factura: Optional[RequiredText] = None
    customer_id: Optional[str] = None
    work_order_id: Optional[str] = None
    fecha: Optional[datetime] = None
    subtotal: Optional[DecimalText] = None
    impuestos: Optional[DecimalText] = None
    total: Optional[DecimalText] = None
    medio_pago: Optional[PaymentMethod] = None
    regimen_turismo: Optional[bool] = None
    timbrado_usado: Optional[RequiredText] = None


class SaleItemInput(Schema):
    service_id: Optional[str] = None
    combo_id: Optional[str] = None
    inventory_item_id: Optional[str] = None
    nombre: RequiredText
    cantidad: PositiveInt = 1
    precio_unitario: DecimalText
    subtotal: DecimalText


class SaleItemCreate(SaleItemInput):
    sale_id: RequiredText


class SaleWithItems(SaleCreate):
    items: Annotated[list[SaleItemInput], Field(min_length=1)]


class SaleFromWorkOrder(Schema):
    """Invoice data for a work order; amounts default to the order total."""

    numero_factura: RequiredText
    timbrado_usado: RequiredText
    medio_pago: PaymentMethod = "efectivo"
    fecha: Optional[datetime] = None
    subtotal: Optional[DecimalText] = None
    impuestos: DecimalText = "0"
    total: Optional[DecimalText] = None
    regimen_turismo: Optional[bool] = None
    created_by: Optional[str] = None
