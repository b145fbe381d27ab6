"""Declarative registry of named ERP operations.

Each :class:`OperationSpec` maps a short operation name (``stock-list``,
``account-create``, ...) to an ERP endpoint, an HTTP method and the fields
the caller may pass. :func:`build_request` turns an operation plus
caller-supplied arguments into an :class:`ApiRequest` that the
:class:`~tokenbroker.client.dispatcher.RequestDispatcher` can execute.

Listing operations send every argument as a query parameter. Create
operations send a JSON record built from ``body_defaults``, the caller's
arguments and ``body_fallbacks``, plus fixed ``query_defaults``
(``KayitTipi=1`` marks a new record).

The ERP's own field names (``StokKodu``, ``CariAdi``, ...) are kept as-is
because they go on the wire unchanged.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from tokenbroker.exceptions import InvalidUsageError

HttpMethod = Literal["GET", "POST"]

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


class ApiRequest(BaseModel):
    """One ERP API call, independent of any credential."""

    endpoint: str = Field(description="Path under the ERP base URL, e.g. /api/Stok")
    method: HttpMethod = Field(default="GET", description="HTTP method")
    params: dict[str, Any] = Field(default_factory=dict, description="Query parameters")
    body: Optional[Any] = Field(default=None, description="JSON body (POST only)")


class FieldSpec(BaseModel):
    """A caller-facing field of an operation."""

    name: str
    description: str = ""
    kind: Literal["string", "boolean"] = "string"


class OperationSpec(BaseModel):
    """A named ERP operation.

    Attributes:
        name: CLI-facing operation name.
        alias: The ERP tool name this operation is also reachable by.
        endpoint: Path under the ERP base URL.
        method: ``GET`` for listings, ``POST`` for record creation.
        description: One-line summary shown by ``tokenbroker operations``.
        fields: Documented fields; unknown fields are passed through.
        required: Fields that must be present and non-empty.
        query_defaults: Query parameters always sent (POST only).
        body_defaults: Record values used when the caller omits a field.
        body_fallbacks: ``target -> source`` copies applied when ``target``
            is still empty after defaults and arguments are merged.
    """

    name: str
    alias: Optional[str] = None
    endpoint: str
    method: HttpMethod = "GET"
    description: str
    fields: list[FieldSpec] = Field(default_factory=list)
    required: list[str] = Field(default_factory=list)
    query_defaults: dict[str, Any] = Field(default_factory=dict)
    body_defaults: dict[str, Any] = Field(default_factory=dict)
    body_fallbacks: dict[str, str] = Field(default_factory=dict)

    def field_kind(self, name: str) -> str:
        for field in self.fields:
            if field.name == name:
                return field.kind
        return "string"


def _fields(*specs: tuple[str, str]) -> list[FieldSpec]:
    return [FieldSpec(name=name, description=description) for name, description in specs]


_PAGING = (
    ("Sayfa", "Page number"),
    ("SayfaSatirSayisi", "Rows per page"),
)
_DATE_RANGE = (
    ("TarihBas", "Start date (YYYY-MM-DD)"),
    ("TarihBit", "End date (YYYY-MM-DD)"),
)

_REGISTRY: list[OperationSpec] = [
    OperationSpec(
        name="stock-list",
        alias="erp_stok_listele",
        endpoint="/api/Stok",
        description="List stock cards",
        fields=_fields(
            ("EsnekAramaKisiti", "Search in stock code and name"),
            ("StokID", "Stock id"),
            ("SirketID", "Company id"),
            ("SubeID", "Branch id"),
            *_PAGING,
        ),
    ),
    OperationSpec(
        name="account-list",
        alias="erp_cari_listele",
        endpoint="/api/Cari/",
        description="List customer/supplier accounts",
        fields=_fields(
            ("EsnekAramaKisiti", "Search in account code and name"),
            ("CariID", "Account id"),
            ("CariKodu", "Account code"),
            ("VergiNo", "Tax number"),
            *_PAGING,
        ),
    ),
    OperationSpec(
        name="warehouse-list",
        alias="erp_depo_listele",
        endpoint="/api/Depo",
        description="List warehouses",
        fields=_fields(
            ("EsnekAramaKisiti", "Search in warehouse code and name"),
            ("DepoID", "Warehouse id"),
        ),
    ),
    OperationSpec(
        name="lot-list",
        alias="erp_seri_lot_listele",
        endpoint="/api/SeriLot",
        description="List serial numbers and lots",
        fields=_fields(("StokID", "Stock id"), ("SeriLotKodu", "Serial/lot code")),
    ),
    OperationSpec(
        name="barcode-list",
        alias="erp_barkod_listele",
        endpoint="/api/StokBarkod",
        description="List stock barcodes",
        fields=_fields(("StokID", "Stock id"), ("BarkodNo", "Barcode")),
    ),
    OperationSpec(
        name="currency-list",
        alias="erp_doviz_listele",
        endpoint="/api/Doviz",
        description="List currencies",
        fields=_fields(("DovizID", "Currency id")),
    ),
    OperationSpec(
        name="cash-list",
        alias="erp_kasa_listele",
        endpoint="/api/Kasa/GetKayit",
        description="List cash registers",
        fields=_fields(("KasaID", "Cash register id")),
    ),
    OperationSpec(
        name="bank-list",
        alias="erp_banka_listele",
        endpoint="/api/Banka/GetKayit",
        description="List bank accounts",
        fields=_fields(("BankaID", "Bank id")),
    ),
    OperationSpec(
        name="staff-list",
        alias="erp_personel_listele",
        endpoint="/api/Personel/Get",
        description="List staff",
        fields=_fields(("PersonelID", "Staff id")),
    ),
    OperationSpec(
        name="order-list",
        alias="erp_siparis_listele",
        endpoint="/api/SipStokHareketleri",
        description="List order movements",
        fields=_fields(
            ("EsnekArama", "Free-text search"),
            ("TipID", "Order type (10013: received order)"),
            ("CariID", "Account id"),
            ("StokID", "Stock id"),
            *_DATE_RANGE,
            *_PAGING,
        ),
    ),
    OperationSpec(
        name="invoice-list",
        alias="erp_fatura_listele",
        endpoint="/api/StokHareketleri",
        description="List invoice movements",
        fields=_fields(
            ("EsnekArama", "Free-text search"),
            ("TipID", "Invoice type (10005: sales, 10006: purchase)"),
            ("CariID", "Account id"),
            ("StokID", "Stock id"),
            *_DATE_RANGE,
            ("BelgeNo", "Document number"),
            *_PAGING,
        ),
    ),
    OperationSpec(
        name="stock-movement-list",
        alias="erp_stok_hareketleri_listele",
        endpoint="/api/StokHareketleri",
        description="List stock movements",
        fields=_fields(
            ("EsnekArama", "Free-text search"),
            ("StokID", "Stock id"),
            ("TipID", "Movement type"),
            ("CariID", "Account id"),
            ("DepoID", "Warehouse id"),
            *_DATE_RANGE,
            *_PAGING,
        ),
    ),
    OperationSpec(
        name="voucher-list",
        alias="erp_dekont_listele",
        endpoint="/api/Dekont/Basliklar",
        description="List voucher headers",
        fields=_fields(
            ("BelgeNo", "Document number"),
            ("TipID", "Voucher type"),
            *_DATE_RANGE,
            *_PAGING,
        ),
    ),
    OperationSpec(
        name="stock-create",
        alias="erp_stok_olustur",
        endpoint="/api/Stok",
        method="POST",
        description="Create a stock card",
        fields=[
            FieldSpec(name="StokKodu", description="Stock code"),
            FieldSpec(name="StokAdi", description="Stock name"),
            FieldSpec(name="StokKisaKodu", description="Short code (default: StokKodu)"),
            FieldSpec(name="StokKisaAdi", description="Short name (default: StokAdi)"),
            FieldSpec(name="TipID", description="Stock type (default: 105001)"),
            FieldSpec(name="SubeID", description="Branch id (default: 1)"),
            FieldSpec(name="SirketID", description="Company id (default: 1)"),
            FieldSpec(name="Brm1ID", description="Unit id (default: 1, piece)"),
            FieldSpec(name="StokMuhasebeID", description="Accounting id (default: 201)"),
            FieldSpec(name="Durum", description="Active flag (default: true)", kind="boolean"),
        ],
        required=["StokKodu", "StokAdi"],
        query_defaults={"KayitTipi": "1"},
        body_defaults={
            "StokID": -1,
            "TipID": "105001",
            "SubeID": "1",
            "SirketID": "1",
            "Brm1ID": "1",
            "StokMuhasebeID": "201",
            "Durum": True,
        },
        body_fallbacks={"StokKisaKodu": "StokKodu", "StokKisaAdi": "StokAdi"},
    ),
    OperationSpec(
        name="account-create",
        alias="erp_cari_olustur",
        endpoint="/api/Cari",
        method="POST",
        description="Create a customer/supplier account",
        fields=[
            FieldSpec(name="CariKodu", description="Account code"),
            FieldSpec(name="CariAdi", description="Account name"),
            FieldSpec(name="VergiNo", description="Tax number"),
            FieldSpec(name="VergiDairesiID", description="Tax office id"),
            FieldSpec(name="TipID", description="Account type (default: 2001)"),
            FieldSpec(name="SubeID", description="Branch id (default: 1)"),
            FieldSpec(name="SirketID", description="Company id (default: 1)"),
            FieldSpec(name="Durum", description="Active flag (default: true)", kind="boolean"),
        ],
        required=["CariKodu", "CariAdi"],
        query_defaults={"KayitTipi": "1"},
        body_defaults={
            "CariID": -1,
            "VergiNo": "",
            "VergiDairesiID": None,
            "TipID": "2001",
            "SubeID": "1",
            "SirketID": "1",
            "Durum": True,
        },
    ),
]

OPERATIONS: dict[str, OperationSpec] = {op.name: op for op in _REGISTRY}
_ALIASES: dict[str, str] = {op.alias: op.name for op in _REGISTRY if op.alias}


def list_operations() -> list[OperationSpec]:
    """Return all registered operations in registration order."""
    return list(_REGISTRY)


def get_operation(name: str) -> OperationSpec:
    """Look up an operation by name or alias.

    Raises:
        InvalidUsageError: If *name* is not registered.
    """
    key = _ALIASES.get(name, name)
    try:
        return OPERATIONS[key]
    except KeyError:
        known = ", ".join(sorted(OPERATIONS))
        raise InvalidUsageError(f"Unknown operation '{name}'. Known operations: {known}") from None


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def _coerce(op: OperationSpec, name: str, value: Any) -> Any:
    if op.field_kind(name) != "boolean" or not isinstance(value, str):
        return value
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise InvalidUsageError(f"Field '{name}' of '{op.name}' expects true or false, got {value!r}")


def build_request(op: OperationSpec, args: dict[str, Any]) -> ApiRequest:
    """Validate *args* against *op* and build the :class:`ApiRequest`.

    Args:
        op: The operation to call.
        args: Caller-supplied field values. Unknown fields are passed through.

    Returns:
        The request to dispatch.

    Raises:
        InvalidUsageError: If a required field is missing or empty, or a
            boolean field has an unrecognised value.
    """
    missing = [name for name in op.required if _is_empty(args.get(name))]
    if missing:
        raise InvalidUsageError(
            f"Operation '{op.name}' requires: {', '.join(missing)}"
        )

    values = {name: _coerce(op, name, value) for name, value in args.items()}

    if op.method == "GET":
        params = {name: value for name, value in values.items() if not _is_empty(value)}
        return ApiRequest(endpoint=op.endpoint, method="GET", params=params)

    body: dict[str, Any] = dict(op.body_defaults)
    for name, value in values.items():
        if _is_empty(value) and name in op.body_defaults:
            continue
        body[name] = value
    for target, source in op.body_fallbacks.items():
        if _is_empty(body.get(target)):
            body[target] = body.get(source)

    return ApiRequest(
        endpoint=op.endpoint,
        method=op.method,
        params=dict(op.query_defaults),
        body=body,
    )
