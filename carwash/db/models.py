"""SQLAlchemy models mirroring the JSON document collections."""
from __future__ import annotations

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)

from .session import Base


def _one_of(column: str, values: tuple[str, ...], name: str) -> CheckConstraint:
    allowed = ", ".join(f"'{value}'" for value in values)
    return CheckConstraint(f"{column} IN ({allowed})", name=name)


ROLES = ("admin", "user", "readonly")
SUBSCRIPTIONS = ("free", "basic", "premium", "enterprise")
OPERATION_MODES = ("testing", "production")
CATEGORY_TYPES = ("servicios", "productos", "ambos")
DOC_TYPES = ("CI", "Pasaporte", "RUC", "Extranjero")
WORK_ORDER_STATES = ("recibido", "en_proceso", "terminado", "entregado", "cancelado")
ALERT_STATES = ("normal", "bajo", "critico")
PAYMENT_METHODS = ("efectivo", "tarjeta_credito", "tarjeta_debito", "transferencia", "cheque")


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        _one_of("role", ROLES, "role_check"),
        _one_of("subscription_type", SUBSCRIPTIONS, "subscription_type_check"),
    )

    id = Column(String(36), primary_key=True)
    username = Column(String(255), unique=True, nullable=False)
    password = Column(Text, nullable=False)
    full_name = Column(Text, nullable=True)
    email = Column(String(255), nullable=True)
    role = Column(String(16), nullable=False, default="user")
    subscription_type = Column(String(16), nullable=False, default="free")
    monthly_invoice_limit = Column(Integer, nullable=False, default=50)
    expiration_date = Column(DateTime(timezone=True), nullable=True)
    current_month_invoices = Column(Integer, nullable=False, default=0)
    usage_reset_date = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    is_blocked = Column(Boolean, nullable=False, default=False)
    last_login = Column(DateTime(timezone=True), nullable=True)
    failed_login_attempts = Column(Integer, nullable=False, default=0)
    last_failed_login = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    created_by = Column(String(36), ForeignKey("users.id"), nullable=True)


Index("uq_users_username_lower", func.lower(User.username), unique=True)


class CompanyConfig(Base):
    __tablename__ = "company_configs"

    id = Column(String(36), primary_key=True)
    ruc = Column(String(50), nullable=False)
    razon_social = Column(Text, nullable=False)
    nombre_fantasia = Column(Text, nullable=True)
    timbrado_numero = Column(String(50), nullable=False)
    timbrado_desde = Column(String(10), nullable=False)
    timbrado_hasta = Column(String(10), nullable=False)
    establecimiento = Column(String(10), nullable=False, default="001")
    punto_expedicion = Column(String(10), nullable=False, default="001")
    direccion = Column(Text, nullable=False)
    ciudad = Column(String(255), nullable=False, default="Asunción")
    telefono = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    logo_path = Column(Text, nullable=True)
    moneda = Column(String(10), nullable=False, default="GS")
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class DnitConfig(Base):
    __tablename__ = "dnit_configs"
    __table_args__ = (_one_of("operation_mode", OPERATION_MODES, "operation_mode_check"),)

    id = Column(String(36), primary_key=True)
    endpoint_url = Column(Text, nullable=False)
    auth_token = Column(Text, nullable=False)
    certificate_data = Column(Text, nullable=True)
    certificate_password = Column(Text, nullable=True)
    operation_mode = Column(String(16), nullable=False, default="testing")
    is_active = Column(Boolean, nullable=False, default=False)
    last_connection_test = Column(DateTime(timezone=True), nullable=True)
    last_connection_status = Column(Text, nullable=True)
    last_connection_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class Category(Base):
    __tablename__ = "categories"
    __table_args__ = (_one_of("tipo", CATEGORY_TYPES, "tipo_check"),)

    id = Column(String(36), primary_key=True)
    nombre = Column(String(255), nullable=False)
    descripcion = Column(Text, nullable=True)
    tipo = Column(String(16), nullable=False, default="ambos")
    color = Column(String(7), nullable=True)
    activa = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class Customer(Base):
    __tablename__ = "customers"
    __table_args__ = (_one_of("doc_tipo", DOC_TYPES, "doc_tipo_check"),)

    id = Column(String(36), primary_key=True)
    nombre = Column(String(255), nullable=False)
    doc_tipo = Column(String(16), nullable=False, default="CI")
    doc_numero = Column(String(50), nullable=False)
    email = Column(String(255), nullable=True)
    telefono = Column(String(50), nullable=True)
    direccion = Column(Text, nullable=True)
    regimen_turismo = Column(Boolean, nullable=False, default=False)
    pais = Column(String(100), nullable=True)
    pasaporte = Column(String(50), nullable=True)
    fecha_ingreso = Column(String(10), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(String(36), primary_key=True)
    customer_id = Column(String(36), ForeignKey("customers.id"), nullable=False, index=True)
    placa = Column(String(20), nullable=False)
    marca = Column(String(50), nullable=False)
    modelo = Column(String(50), nullable=False)
    color = Column(String(30), nullable=False)
    observaciones = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class Service(Base):
    __tablename__ = "services"

    id = Column(String(36), primary_key=True)
    nombre = Column(String(255), nullable=False)
    descripcion = Column(Text, nullable=True)
    precio = Column(Text, nullable=False)
    duracion_min = Column(Integer, nullable=False)
    categoria = Column(String(255), nullable=False)
    activo = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class ServiceCombo(Base):
    __tablename__ = "service_combos"

    id = Column(String(36), primary_key=True)
    nombre = Column(String(255), nullable=False)
    descripcion = Column(Text, nullable=True)
    precio_total = Column(Text, nullable=False)
    activo = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class ServiceComboItem(Base):
    __tablename__ = "service_combo_items"

    id = Column(String(36), primary_key=True)
    combo_id = Column(String(36), ForeignKey("service_combos.id"), nullable=False, index=True)
    service_id = Column(String(36), ForeignKey("services.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class WorkOrder(Base):
    __tablename__ = "work_orders"
    __table_args__ = (_one_of("estado", WORK_ORDER_STATES, "estado_check"),)

    id = Column(String(36), primary_key=True)
    numero = Column(Integer, unique=True, nullable=False)
    customer_id = Column(String(36), ForeignKey("customers.id"), nullable=False, index=True)
    vehicle_id = Column(String(36), ForeignKey("vehicles.id"), nullable=False)
    estado = Column(String(16), nullable=False, default="recibido", index=True)
    fecha_entrada = Column(DateTime(timezone=True), nullable=False)
    fecha_inicio = Column(DateTime(timezone=True), nullable=True)
    fecha_fin = Column(DateTime(timezone=True), nullable=True)
    fecha_entrega = Column(DateTime(timezone=True), nullable=True)
    observaciones = Column(Text, nullable=True)
    total = Column(Text, nullable=False, default="0")
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class WorkOrderItem(Base):
    __tablename__ = "work_order_items"

    id = Column(String(36), primary_key=True)
    work_order_id = Column(String(36), ForeignKey("work_orders.id"), nullable=False, index=True)
    service_id = Column(String(36), ForeignKey("services.id"), nullable=True)
    combo_id = Column(String(36), ForeignKey("service_combos.id"), nullable=True)
    nombre = Column(String(255), nullable=False)
    precio = Column(Text, nullable=False)
    cantidad = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class InventoryItem(Base):
    __tablename__ = "inventory_items"
    __table_args__ = (_one_of("estado_alerta", ALERT_STATES, "estado_alerta_check"),)

    id = Column(String(36), primary_key=True)
    nombre = Column(String(255), nullable=False)
    descripcion = Column(Text, nullable=True)
    precio = Column(Text, nullable=False)
    stock_actual = Column(Integer, nullable=False, default=0)
    stock_minimo = Column(Integer, nullable=False, default=0)
    unidad_medida = Column(String(50), nullable=False, default="unidad")
    categoria = Column(String(255), nullable=False)
    proveedor = Column(String(255), nullable=True)
    ultimo_pedido = Column(String(255), nullable=True)
    estado_alerta = Column(String(16), nullable=False, default="normal")
    activo = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class Sale(Base):
    __tablename__ = "sales"
    __table_args__ = (_one_of("medio_pago", PAYMENT_METHODS, "medio_pago_check"),)

    id = Column(String(36), primary_key=True)
    numero_factura = Column(String(50), unique=True, nullable=False)
    customer_id = Column(String(36), ForeignKey("customers.id"), nullable=True, index=True)
    work_order_id = Column(String(36), ForeignKey("work_orders.id"), nullable=True)
    fecha = Column(DateTime(timezone=True), nullable=False)
    subtotal = Column(Text, nullable=False)
    impuestos = Column(Text, nullable=False, default="0")
    total = Column(Text, nullable=False)
    medio_pago = Column(String(32), nullable=False)
    regimen_turismo = Column(Boolean, nullable=False, default=False)
    timbrado_usado = Column(String(50), nullable=False)
    created_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class SaleItem(Base):
    __tablename__ = "sale_items"

    id = Column(String(36), primary_key=True)
    sale_id = Column(String(36), ForeignKey("sales.id"), nullable=False, index=True)
    service_id = Column(String(36), ForeignKey("services.id"), nullable=True)
    combo_id = Column(String(36), ForeignKey("service_combos.id"), nullable=True)
    inventory_item_id = Column(String(36), ForeignKey("inventory_items.id"), nullable=True)
    nombre = Column(String(255), nullable=False)
    cantidad = Column(Integer, nullable=False, default=1)
    precio_unitario = Column(Text, nullable=False)
    subtotal = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class Counter(Base):
    """Single-row sequences (work order numbering)."""

    __tablename__ = "counters"

    name = Column(String(64), primary_key=True)
    value = Column(Integer, nullable=False, default=0)
