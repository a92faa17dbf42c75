"""
Behaviour every storage back end must share (runs once per back end).
"""
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError
from sqlalchemy import select

from carwash.core.security import decrypt_secret, verify_password
from carwash.db import models
from carwash.db.session import get_session
from carwash.domain.records import PublicUser, SafeDnitConfig
from carwash.domain.schemas import CustomerUpdate, SaleFromWorkOrder, ServiceCreate, WorkOrderItemInput
from carwash.repositories import ConstraintViolation, JsonFileStorage


def _service(storage, nombre="Lavado completo", precio="123.45", **extra):
    return storage.create_service(
        {"nombre": nombre, "precio": precio, "duracion_min": 30, "categoria": "Lavado", **extra}
    )


def _sale(numero="001-001-0000001", **extra):
    return {
        "numero_factura": numero,
        "subtotal": "100",
        "total": "100",
        "medio_pago": "efectivo",
        "timbrado_usado": "12345678",
        **extra,
    }


def _raw_auth_token(storage) -> str:
    if isinstance(storage, JsonFileStorage):
        rows = json.loads((storage.data_dir / "dnit_configs.json").read_text(encoding="utf-8"))
        return rows[0]["auth_token"]
    with get_session(storage.database_url) as session:
        return session.execute(select(models.DnitConfig.auth_token)).scalar_one()


# -------------------------- identity & timestamps --------------------------
def test_created_ids_are_unique_and_storage_assigned(storage):
    created = [
        storage.create_customer({"nombre": f"Cliente {n}", "doc_numero": str(n), "id": "client-id"})
        for n in range(3)
    ]
    ids = [c.id for c in created]
    assert all(ids)
    assert "client-id" not in ids
    assert len(set(ids)) == 3
    for record in created:
        assert record.created_at is not None
        assert record.created_at.tzinfo is not None
        assert record.created_at == record.updated_at


def test_update_refreshes_updated_at_and_ignores_protected_keys(storage, customer):
    updated = storage.update_customer(
        customer.id, {"id": "other", "created_at": "2000-01-01T00:00:00+00:00", "nombre": "Juan P."}
    )
    assert updated.id == customer.id
    assert updated.nombre == "Juan P."
    assert updated.created_at == customer.created_at
    assert updated.updated_at >= customer.updated_at
    assert storage.get_customer(customer.id).nombre == "Juan P."


def test_update_with_schema_applies_only_fields_sent(storage, customer):
    updated = storage.update_customer(customer.id, CustomerUpdate(telefono="0981 123456"))
    assert updated.telefono == "0981 123456"
    assert updated.nombre == "Juan Pérez"
    assert updated.doc_numero == "1234567"


def test_missing_ids_are_absent_not_errors(storage):
    assert storage.get_customer("missing") is None
    assert storage.update_customer("missing", {"nombre": "x"}) is None
    assert storage.delete_customer("missing") is False
    assert storage.update_inventory_stock("missing", 3) is None


def test_delete_is_idempotent(storage):
    service = _service(storage)
    assert storage.delete_service(service.id) is True
    assert storage.delete_service(service.id) is False
    assert storage.get_service(service.id) is None


# -------------------------- decimals --------------------------
def test_service_price_round_trips_as_exact_text(storage):
    service = _service(storage, precio="123.45")
    fetched = storage.get_service(service.id)
    assert fetched.precio == "123.45"
    assert isinstance(fetched.precio, str)

    zeros = _service(storage, nombre="Encerado", precio="10.50")
    assert storage.get_service(zeros.id).precio == "10.50"


def test_schema_instances_are_accepted(storage):
    service = storage.create_service(
        ServiceCreate(nombre="Aspirado", precio="35000", duracion_min=15, categoria="Interior")
    )
    assert storage.get_service(service.id).precio == "35000"


# -------------------------- ordering --------------------------
def test_catalog_lists_are_sorted_by_name(storage):
    for nombre in ("cera", "Aspirado", "Brillo"):
        _service(storage, nombre=nombre)
        storage.create_category({"nombre": nombre})
        storage.create_service_combo({"nombre": nombre, "precio_total": "1"})
    assert [s.nombre for s in storage.get_services()] == ["Aspirado", "Brillo", "cera"]
    assert [c.nombre for c in storage.get_categories()] == ["Aspirado", "Brillo", "cera"]
    assert [c.nombre for c in storage.get_service_combos()] == ["Aspirado", "Brillo", "cera"]


def test_other_lists_are_newest_first(storage):
    first = storage.create_customer({"nombre": "Primero", "doc_numero": "1"})
    second = storage.create_customer({"nombre": "Segundo", "doc_numero": "2"})
    assert [c.id for c in storage.get_customers()] == [second.id, first.id]


def test_active_filters(storage):
    _service(storage, nombre="Activo")
    _service(storage, nombre="Inactivo", activo=False)
    assert [s.nombre for s in storage.get_active_services()] == ["Activo"]

    storage.create_category({"nombre": "Vieja", "activa": False})
    storage.create_category({"nombre": "Nueva"})
    assert [c.nombre for c in storage.get_active_categories()] == ["Nueva"]


def test_categories_by_type_include_shared(storage):
    storage.create_category({"nombre": "Servicios", "tipo": "servicios"})
    storage.create_category({"nombre": "Productos", "tipo": "productos"})
    storage.create_category({"nombre": "General", "tipo": "ambos"})
    names = [c.nombre for c in storage.get_categories_by_type("servicios")]
    assert names == ["General", "Servicios"]


# -------------------------- users --------------------------
def test_password_is_hashed_and_verifiable(storage):
    user = storage.create_user({"username": "cajero", "password": "secret123"})
    stored = storage.get_user(user.id)
    assert "secret123" not in stored.password
    assert verify_password("secret123", stored.password)
    assert not verify_password("secret124", stored.password)


def test_update_user_rehashes_password(storage):
    user = storage.create_user({"username": "cajero", "password": "secret123"})
    storage.update_user(user.id, {"password": "otro-secreto"})
    stored = storage.get_user(user.id)
    assert verify_password("otro-secreto", stored.password)
    assert not verify_password("secret123", stored.password)


def test_username_is_unique_case_insensitively(storage):
    storage.create_user({"username": "Alice", "password": "secret123"})
    with pytest.raises(ConstraintViolation):
        storage.create_user({"username": "alice", "password": "secret123"})
    assert storage.get_user_by_username("ALICE").username == "Alice"


def test_public_projection_hides_password_material(storage):
    user = storage.create_user({"username": "cajero", "password": "secret123", "email": "caja@example.com"})
    public = storage.get_public_user(user.id)
    assert isinstance(public, PublicUser)
    assert not hasattr(public, "password")
    assert not hasattr(public, "failed_login_attempts")
    assert public.username == "cajero"
    assert [u.id for u in storage.get_public_users()] == [user.id]
    assert storage.get_user_by_email("CAJA@example.com").id == user.id


def test_active_users_exclude_blocked_and_inactive(storage):
    active = storage.create_user({"username": "activo", "password": "secret123"})
    storage.create_user({"username": "bloqueado", "password": "secret123", "is_blocked": True})
    inactive = storage.create_user({"username": "inactivo", "password": "secret123"})
    storage.deactivate_user(inactive.id)
    assert [u.id for u in storage.get_active_users()] == [active.id]


def test_invoice_usage_counters(storage):
    user = storage.create_user({"username": "cajero", "password": "secret123"})
    assert storage.increment_user_invoice_count(user.id).current_month_invoices == 1
    assert storage.increment_user_invoice_count(user.id).current_month_invoices == 2
    reset = storage.reset_monthly_usage(user.id)
    assert reset.current_month_invoices == 0
    assert reset.usage_reset_date >= user.usage_reset_date
    assert storage.increment_user_invoice_count("missing") is None


# -------------------------- configuration --------------------------
def test_company_config_reads_first_row(storage):
    payload = {
        "ruc": "80012345-6",
        "razon_social": "Lavadero SA",
        "timbrado_numero": "12345678",
        "timbrado_desde": "2024-01-01",
        "timbrado_hasta": "2024-12-31",
        "direccion": "Av. España 123",
    }
    first = storage.create_company_config(payload)
    storage.create_company_config({**payload, "razon_social": "Otra SA"})
    config = storage.get_company_config()
    assert config.id == first.id
    assert config.ciudad == "Asunción"
    assert storage.update_company_config(first.id, {"moneda": "USD"}).moneda == "USD"


def test_dnit_secrets_are_encrypted_at_rest(storage):
    storage.create_dnit_config({"endpoint_url": "https://sifen.example.com/api", "auth_token": "tok-abc"})
    raw = _raw_auth_token(storage)
    assert raw != "tok-abc"
    assert "tok-abc" not in raw
    assert decrypt_secret(raw) == "tok-abc"
    assert storage.get_dnit_config().auth_token == "tok-abc"


def test_safe_dnit_projection_reports_presence_only(storage):
    config = storage.create_dnit_config(
        {"endpoint_url": "https://sifen.example.com/api", "auth_token": "tok-abc"}
    )
    safe = storage.get_safe_dnit_config()
    assert isinstance(safe, SafeDnitConfig)
    assert safe.has_auth_token is True
    assert safe.has_certificate_password is False
    assert not hasattr(safe, "auth_token")

    storage.update_dnit_config(config.id, {"certificate_password": "pfx-pass"})
    assert storage.get_dnit_config().certificate_password == "pfx-pass"
    assert storage.get_safe_dnit_config().has_certificate_password is True

    storage.update_dnit_config(config.id, {"certificate_password": None})
    assert storage.get_dnit_config().certificate_password is None
    assert storage.get_dnit_config().auth_token == "tok-abc"


def test_record_dnit_connection_test(storage):
    config = storage.create_dnit_config({"endpoint_url": "https://sifen.example.com", "auth_token": "tok"})
    failed = storage.record_dnit_connection_test(config.id, False, "timeout")
    assert failed.last_connection_status == "error"
    assert failed.last_connection_error == "timeout"
    ok = storage.record_dnit_connection_test(config.id, True)
    assert ok.last_connection_status == "success"
    assert ok.last_connection_error is None
    assert ok.last_connection_test is not None


# -------------------------- references --------------------------
def test_foreign_keys_are_enforced_on_create(storage):
    with pytest.raises(ConstraintViolation):
        storage.create_vehicle(
            {"customer_id": "missing", "placa": "XYZ987", "marca": "Kia", "modelo": "Rio", "color": "Rojo"}
        )
    assert storage.get_vehicles() == []


def test_referenced_parent_cannot_be_deleted(storage, customer, vehicle):
    with pytest.raises(ConstraintViolation):
        storage.delete_customer(customer.id)
    assert storage.get_customer(customer.id) is not None
    assert storage.delete_vehicle(vehicle.id) is True
    assert storage.delete_customer(customer.id) is True


def test_vehicles_by_customer(storage, customer, vehicle):
    other = storage.create_customer({"nombre": "Otro", "doc_numero": "999"})
    storage.create_vehicle(
        {"customer_id": other.id, "placa": "OTR001", "marca": "Kia", "modelo": "Rio", "color": "Azul"}
    )
    assert [v.id for v in storage.get_vehicles_by_customer(customer.id)] == [vehicle.id]
    assert len(storage.get_vehicles()) == 2


# -------------------------- work orders --------------------------
def test_work_order_numbers_are_sequential(storage, customer, vehicle):
    assert storage.get_next_work_order_number() == 1
    numbers = [
        storage.create_work_order({"customer_id": customer.id, "vehicle_id": vehicle.id}).numero
        for _ in range(3)
    ]
    assert numbers == [1, 2, 3]
    assert storage.get_next_work_order_number() == 4


def test_work_order_numbers_are_not_reused_after_delete(storage, customer, vehicle):
    first = storage.create_work_order({"customer_id": customer.id, "vehicle_id": vehicle.id})
    second = storage.create_work_order({"customer_id": customer.id, "vehicle_id": vehicle.id})
    storage.delete_work_order(second.id)
    third = storage.create_work_order({"customer_id": customer.id, "vehicle_id": vehicle.id})
    assert (first.numero, third.numero) == (1, 3)


def test_work_order_scenario(storage, customer, vehicle):
    order = storage.create_work_order({"customer_id": customer.id, "vehicle_id": vehicle.id})
    other = storage.create_work_order({"customer_id": customer.id, "vehicle_id": vehicle.id})
    assert order.estado == "recibido"
    assert order.fecha_entrada is not None

    storage.add_work_order_item(order.id, {"nombre": "Lavado", "precio": "15000", "cantidad": 2})
    storage.add_work_order_item(order.id, WorkOrderItemInput(nombre="Cera", precio="25000.50"))
    recalculated = storage.recalculate_work_order_total(order.id)
    assert recalculated.total == "55000.50"

    fetched = storage.get_work_order(order.id)
    assert fetched.total == "55000.50"
    items = storage.get_work_order_items(order.id)
    assert [i.nombre for i in items] == ["Lavado", "Cera"]

    storage.update_work_order_status(order.id, "entregado")
    delivered = storage.get_work_orders_by_status("entregado")
    assert [o.id for o in delivered] == [order.id]
    assert other.id not in [o.id for o in delivered]
    assert {o.id for o in storage.get_work_orders_by_customer(customer.id)} == {order.id, other.id}


def test_update_mappings_are_validated_like_creates(storage, work_order):
    service = _service(storage)

    assert storage.update_service(service.id, {"precio": 99.9}).precio == "99.9"
    assert storage.get_service(service.id).precio == "99.9"

    with pytest.raises(ValidationError):
        storage.update_work_order(work_order.id, {"estado": "bogus"})
    with pytest.raises(ValidationError):
        storage.update_work_order(work_order.id, {"fecha_fin": "not-a-date"})
    assert storage.get_work_order(work_order.id).estado == "recibido"
    assert storage.get_work_order(work_order.id).fecha_fin is None

    updated = storage.update_work_order(work_order.id, {"fechaFin": "2024-05-01T10:00:00-03:00"})
    assert updated.fecha_fin == datetime(2024, 5, 1, 13, 0, tzinfo=timezone.utc)


def test_edited_work_order_line_keeps_a_single_source(storage, work_order):
    service = _service(storage)
    combo = storage.create_service_combo({"nombre": "Full", "precio_total": "150000"})
    item = storage.add_work_order_item(
        work_order.id, {"service_id": service.id, "nombre": "Lavado", "precio": "100"}
    )

    with pytest.raises(ValidationError):
        storage.update_work_order_item(work_order.id, item.id, {"combo_id": combo.id})
    stored = storage.get_work_order_items(work_order.id)[0]
    assert (stored.service_id, stored.combo_id) == (service.id, None)

    switched = storage.update_work_order_item(
        work_order.id, item.id, {"service_id": None, "combo_id": combo.id}
    )
    assert (switched.service_id, switched.combo_id) == (None, combo.id)


def test_work_order_item_edits_are_scoped_to_their_order(storage, customer, vehicle, work_order):
    other = storage.create_work_order({"customer_id": customer.id, "vehicle_id": vehicle.id})
    item = storage.add_work_order_item(work_order.id, {"nombre": "Lavado", "precio": "100"})

    assert storage.update_work_order_item(other.id, item.id, {"cantidad": 3}) is None
    updated = storage.update_work_order_item(work_order.id, item.id, {"cantidad": 3})
    assert updated.cantidad == 3
    assert updated.work_order_id == work_order.id

    assert storage.remove_work_order_item(other.id, item.id) is False
    assert storage.remove_work_order_item(work_order.id, item.id) is True
    assert storage.get_work_order_items(work_order.id) == []


def test_deleting_work_order_removes_its_items(storage, work_order):
    storage.add_work_order_item(work_order.id, {"nombre": "Lavado", "precio": "100"})
    storage.add_work_order_item(work_order.id, {"nombre": "Cera", "precio": "50"})
    assert storage.delete_work_order(work_order.id) is True
    assert storage.get_work_order_items(work_order.id) == []


def test_sale_from_work_order(storage, customer, work_order):
    storage.add_work_order_item(work_order.id, {"nombre": "Lavado", "precio": "15000", "cantidad": 2})
    storage.add_work_order_item(work_order.id, {"nombre": "Cera", "precio": "25000.50"})
    storage.recalculate_work_order_total(work_order.id)

    sale = storage.create_sale_from_work_order(
        work_order.id, SaleFromWorkOrder(numero_factura="001-001-0000010", timbrado_usado="12345678")
    )
    assert sale.customer_id == customer.id
    assert sale.work_order_id == work_order.id
    assert sale.total == "55000.50"
    assert sale.subtotal == "55000.50"
    assert sale.medio_pago == "efectivo"

    lines = storage.get_sale_items(sale.id)
    assert [(line.nombre, line.cantidad, line.precio_unitario, line.subtotal) for line in lines] == [
        ("Lavado", 2, "15000", "30000"),
        ("Cera", 1, "25000.50", "25000.50"),
    ]


def test_sale_from_unknown_work_order_is_absent(storage):
    assert storage.create_sale_from_work_order(
        "missing", {"numero_factura": "001-001-0000010", "timbrado_usado": "12345678"}
    ) is None
    assert storage.get_sales() == []


def test_sale_from_work_order_is_all_or_nothing(storage, work_order):
    storage.add_work_order_item(work_order.id, {"nombre": "Lavado", "precio": "100"})
    existing = storage.create_sale(_sale("001-001-0000010"))
    with pytest.raises(ConstraintViolation):
        storage.create_sale_from_work_order(
            work_order.id, {"numero_factura": "001-001-0000010", "timbrado_usado": "12345678"}
        )
    assert [s.id for s in storage.get_sales()] == [existing.id]
    assert storage.get_sale_items(existing.id) == []


# -------------------------- combos --------------------------
def test_combo_items_replace_and_cascade(storage):
    lavado = _service(storage, nombre="Lavado")
    cera = _service(storage, nombre="Cera")
    combo = storage.create_service_combo({"nombre": "Full", "precio_total": "150000"})

    items = storage.set_service_combo_items(combo.id, [lavado.id, cera.id])
    assert [i.service_id for i in items] == [lavado.id, cera.id]
    assert [i.service_id for i in storage.get_service_combo_items(combo.id)] == [lavado.id, cera.id]

    storage.set_service_combo_items(combo.id, [cera.id])
    assert [i.service_id for i in storage.get_service_combo_items(combo.id)] == [cera.id]

    assert storage.delete_service_combo(combo.id) is True
    assert storage.get_service_combo_items(combo.id) == []
    assert storage.delete_service(cera.id) is True


def test_combo_item_replacement_is_atomic(storage):
    lavado = _service(storage, nombre="Lavado")
    combo = storage.create_service_combo({"nombre": "Full", "precio_total": "150000"})
    storage.set_service_combo_items(combo.id, [lavado.id])
    with pytest.raises(ConstraintViolation):
        storage.set_service_combo_items(combo.id, [lavado.id, "missing-service"])
    assert [i.service_id for i in storage.get_service_combo_items(combo.id)] == [lavado.id]


def test_service_used_by_combo_cannot_be_deleted(storage):
    lavado = _service(storage, nombre="Lavado")
    combo = storage.create_service_combo({"nombre": "Full", "precio_total": "1"})
    item = storage.create_service_combo_item({"combo_id": combo.id, "service_id": lavado.id})
    with pytest.raises(ConstraintViolation):
        storage.delete_service(lavado.id)
    assert storage.delete_service_combo_item(item.id) is True
    assert storage.delete_service_combo_items_by_combo(combo.id) == 0
    assert storage.delete_service(lavado.id) is True


# -------------------------- inventory --------------------------
def test_inventory_alert_follows_stock_updates(storage):
    item = storage.create_inventory_item(
        {"nombre": "Shampoo", "precio": "45000", "stock_actual": 10, "stock_minimo": 5, "categoria": "Insumos"}
    )
    assert item.estado_alerta == "normal"
    assert storage.update_inventory_stock(item.id, 3).estado_alerta == "bajo"
    assert storage.update_inventory_stock(item.id, 0).estado_alerta == "critico"
    restocked = storage.update_inventory_stock(item.id, 6)
    assert (restocked.stock_actual, restocked.estado_alerta) == (6, "normal")
    assert [i.id for i in storage.get_inventory_items_by_alert("normal")] == [item.id]


def test_inventory_alert_is_derived_on_create(storage):
    low = storage.create_inventory_item(
        {"nombre": "Cera", "precio": "1", "stock_actual": 2, "stock_minimo": 5, "categoria": "Insumos"}
    )
    empty = storage.create_inventory_item(
        {"nombre": "Paños", "precio": "1", "stock_actual": 0, "stock_minimo": 5, "categoria": "Insumos"}
    )
    assert low.estado_alerta == "bajo"
    assert empty.estado_alerta == "critico"
    assert [i.id for i in storage.get_inventory_items_by_alert("critico")] == [empty.id]


# -------------------------- sales --------------------------
def test_invoice_number_is_unique(storage):
    storage.create_sale(_sale("001-001-0000001"))
    with pytest.raises(ConstraintViolation):
        storage.create_sale(_sale("001-001-0000001"))
    assert len(storage.get_sales()) == 1


def test_sale_with_items_keeps_line_order(storage, customer):
    sale = storage.create_sale_with_items(
        {
            **_sale(customer_id=customer.id),
            "items": [
                {"nombre": f"Linea {n}", "precio_unitario": "10", "subtotal": "10"} for n in range(4)
            ],
        }
    )
    assert [line.nombre for line in storage.get_sale_items(sale.id)] == [f"Linea {n}" for n in range(4)]
    assert [s.id for s in storage.get_sales_by_customer(customer.id)] == [sale.id]
    assert storage.delete_sale(sale.id) is True
    assert storage.get_sale_items(sale.id) == []


def test_sale_items_can_be_managed_individually(storage):
    sale = storage.create_sale(_sale())
    line = storage.create_sale_item({"sale_id": sale.id, "nombre": "Extra", "precio_unitario": "5", "subtotal": "5"})
    storage.create_sale_item({"sale_id": sale.id, "nombre": "Otra", "precio_unitario": "5", "subtotal": "5"})
    assert storage.delete_sale_item(line.id) is True
    assert storage.delete_sale_items_by_sale(sale.id) == 1
    assert storage.get_sale_items(sale.id) == []


def test_sales_by_date_range_is_inclusive(storage):
    base = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    early = storage.create_sale(_sale("F-1", fecha=base))
    middle = storage.create_sale(_sale("F-2", fecha=base + timedelta(days=1)))
    storage.create_sale(_sale("F-3", fecha=base + timedelta(days=5)))

    found = storage.get_sales_by_date_range(base, base + timedelta(days=1))
    assert {s.id for s in found} == {early.id, middle.id}

    local = timezone(timedelta(hours=-3))
    found_local = storage.get_sales_by_date_range(base.astimezone(local), base.astimezone(local))
    assert [s.id for s in found_local] == [early.id]


def test_last_sale_is_the_newest(storage):
    assert storage.get_last_sale() is None
    storage.create_sale(_sale("F-1"))
    newest = storage.create_sale(_sale("F-2"))
    assert storage.get_last_sale().id == newest.id
    assert storage.update_sale(newest.id, {"medio_pago": "cheque"}).medio_pago == "cheque"
