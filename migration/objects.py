"""Built-in migration objects: Business Partner and GL Balance.

Both ship with deterministic mock payloads so the full ETLV lifecycle can
run without a source system.
"""

from typing import Any, Dict, List, Optional

from core.observability.logging import get_logger
from migration.extractors import ExtractorRegistry, StaticExtractor, get_extractor_registry
from migration.lifecycle import Loader, MigrationObject, Records


logger = get_logger(__name__)

_CITIES = ["New York", "Chicago", "Los Angeles", "Houston", "Phoenix"]
_NO_VALUE = ("", None, "0000000000")


# =============================================================================
# Business Partner
# =============================================================================

BUSINESS_PARTNER_MAPPINGS: List[Dict[str, Any]] = [
    # General data
    {"source": "PARTNER", "target": "BusinessPartner", "convert": "padLeft10"},
    {"source": "TYPE", "target": "BusinessPartnerCategory",
     "valueMap": {"1": "1", "2": "2", "ORG": "2", "PERSON": "1"}, "default": "2"},
    {"source": "NAME1", "target": "BusinessPartnerFullName"},
    {"source": "NAME2", "target": "OrganizationBPName2"},
    {"source": "SORTL", "target": "SearchTerm1", "convert": "toUpperCase"},
    {"source": "STCEG", "target": "TaxNumber1"},
    {"source": "BRSCH", "target": "IndustrySector"},
    {"source": "KTOKD", "target": "BusinessPartnerGrouping"},
    {"source": "LOEVM", "target": "IsMarkedForDeletion", "convert": "boolYN"},
    {"source": "SPERR", "target": "IsBlocked", "convert": "boolYN"},
    {"source": "SPRAS", "target": "Language", "convert": "toUpperCase"},
    {"source": "ERDAT", "target": "CreationDate", "convert": "toDate"},
    {"source": "KUNNR", "target": "Customer", "convert": "padLeft10"},
    {"source": "LIFNR", "target": "Supplier", "convert": "padLeft10"},
    # Address
    {"source": "STRAS", "target": "StreetName"},
    {"source": "ORT01", "target": "CityName"},
    {"source": "PSTLZ", "target": "PostalCode"},
    {"source": "LAND1", "target": "Country", "convert": "toUpperCase"},
    {"source": "SMTP_ADDR", "target": "EmailAddress"},
    # Bank
    {"source": "BANKS", "target": "BankCountry", "convert": "toUpperCase"},
    {"source": "BANKN", "target": "BankAccount"},
    {"source": "SWIFT", "target": "SWIFTCode"},
    # Roles
    {"source": "ZTERM", "target": "PaymentTerms"},
    {"source": "WAERS", "target": "Currency"},
    {"source": "EKORG", "target": "PurchasingOrganization"},
    {"source": "MINBW", "target": "MinimumOrderValue", "convert": "toDecimal"},
    # Migration metadata
    {"target": "SourceSystem", "default": "ECC"},
    {"target": "MigrationObjectId", "default": "BUSINESS_PARTNER"},
]

BUSINESS_PARTNER_CHECKS: Dict[str, Any] = {
    "required": ["BusinessPartner", "BusinessPartnerFullName", "Country"],
    "exactDuplicate": {"keys": ["TaxNumber1"]},
    "fuzzyDuplicate": {"keys": ["BusinessPartnerFullName", "StreetName"], "threshold": 0.85},
    "format": [{"field": "EmailAddress", "pattern": r"^[^@\s]+@[^@\s]+\.[a-z]{2,}$", "description": "e-mail"}],
}


def merge_partner_roles(records: Records) -> Records:
    """Merge customer and vendor records of the same entity into one partner.

    Records match on upper-cased full name and city. The first record wins;
    blank fields are filled from later matches. ``_roles`` lists FLCU01
    (customer) and FLVN01 (vendor).
    """
    by_key: Dict[str, Dict[str, Any]] = {}
    merged: Records = []
    for record in records:
        key = f"{(record.get('BusinessPartnerFullName') or '').upper()}|{(record.get('CityName') or '').upper()}"
        existing = by_key.get(key)
        if existing is None:
            existing = dict(record)
            existing["_roles"] = []
            by_key[key] = existing
            merged.append(existing)
        else:
            for name, value in record.items():
                if existing.get(name) in _NO_VALUE and value not in _NO_VALUE:
                    existing[name] = value
        if record.get("Customer") not in _NO_VALUE and "FLCU01" not in existing["_roles"]:
            existing["_roles"].append("FLCU01")
        if record.get("Supplier") not in _NO_VALUE and "FLVN01" not in existing["_roles"]:
            existing["_roles"].append("FLVN01")
    return merged


def _partner_record(number: int, name: str, street: str, city: str, tax_id: str,
                    customer: str = "", vendor: str = "") -> Dict[str, Any]:
    return {
        "PARTNER": str(number),
        "TYPE": "ORG",
        "NAME1": name,
        "NAME2": "",
        "SORTL": name.split()[0][:4] + str(number)[-3:],
        "STCEG": tax_id,
        "BRSCH": "MANU" if customer else "RETL",
        "KTOKD": "D" if customer else "K",
        "LOEVM": "",
        "SPERR": "",
        "SPRAS": "en",
        "ERDAT": "20200115",
        "KUNNR": customer,
        "LIFNR": vendor,
        "STRAS": street,
        "ORT01": city,
        "PSTLZ": f"1{str(number)[-4:]}",
        "LAND1": "us",
        "SMTP_ADDR": f"contact{number}@partner{number}.com",
        "BANKS": "us",
        "BANKN": str(400000000 + number),
        "SWIFT": "CHASUS33",
        "ZTERM": "0030",
        "WAERS": "USD",
        "EKORG": "" if customer else "1000",
        "MINBW": "" if customer else "250.00",
    }


def business_partner_payload(customers: int = 50, vendors: int = 30) -> Dict[str, Records]:
    """Mock KNA1/LFA1 extract. Customer 1 is also vendor 1 (role merge)."""
    customer_rows = [
        _partner_record(100000 + i, f"Customer Corp {i}", f"{100 + i} Main Street", _CITIES[(i - 1) % 5],
                        f"US{100000000 + i}", customer=str(100000 + i))
        for i in range(1, customers + 1)
    ]
    vendor_rows = [
        _partner_record(200000 + i, f"Vendor Supplies {i}", f"{200 + i} Supply Ave", _CITIES[(i - 1) % 5],
                        f"US{500000000 + i}", vendor=str(200000 + i))
        for i in range(1, vendors + 1)
    ]
    if customers and vendors:
        # Same legal entity as customer 1, supplying to us
        vendor_rows[0].update({"NAME1": "Customer Corp 1", "ORT01": _CITIES[0], "STCEG": "US100000001"})
    return {"customers": customer_rows, "vendors": vendor_rows}


def build_business_partner(extractor: Optional[StaticExtractor] = None,
                           loader: Optional[Loader] = None, **options) -> MigrationObject:
    extractor = extractor or StaticExtractor(
        "SD_CUSTOMERS", "Customer and vendor master", business_partner_payload(),
        tables=[
            {"table": "KNA1", "description": "Customer master (general)", "critical": True},
            {"table": "LFA1", "description": "Vendor master (general)", "critical": True},
        ],
    )
    return MigrationObject(
        object_id="BUSINESS_PARTNER",
        name="Business Partner",
        description="Customer and vendor masters into unified business partners",
        field_mappings=BUSINESS_PARTNER_MAPPINGS,
        quality_checks=BUSINESS_PARTNER_CHECKS,
        extractor=extractor,
        loader=loader,
        post_transform=merge_partner_roles,
        **options,
    )


# =============================================================================
# GL Balance
# =============================================================================

GL_BALANCE_MAPPINGS: List[Dict[str, Any]] = [
    {"source": "BUKRS", "target": "CompanyCode"},
    {"source": "HKONT", "target": "GLAccount", "convert": "padLeft10"},
    {"source": "GJAHR", "target": "FiscalYear", "convert": "toInteger"},
    {"source": "MONAT", "target": "FiscalPeriod", "convert": "toInteger"},
    {"source": "WAERS", "target": "Currency", "convert": "toUpperCase"},
    {"source": "DMBTR", "target": "AmountInCompanyCodeCurrency", "convert": "toDecimal"},
    {"source": "SHKZG", "target": "DebitCreditCode", "valueMap": {"S": "D", "H": "C"}, "default": "D"},
    {"source": "BUDAT", "target": "PostingDate", "convert": "toDate"},
    {"sources": ["BUKRS", "HKONT", "GJAHR"], "target": "BalanceKey", "separator": "-"},
    {"target": "SourceSystem", "default": "ECC"},
]

COMPANY_CODES = ["1000", "2000"]

GL_BALANCE_CHECKS: Dict[str, Any] = {
    "required": ["CompanyCode", "GLAccount", "FiscalYear", "Currency"],
    "exactDuplicate": {"keys": ["CompanyCode", "GLAccount", "FiscalYear", "FiscalPeriod", "Currency"]},
    "referential": [{"field": "CompanyCode", "validSet": COMPANY_CODES}],
    "format": [{"field": "GLAccount", "pattern": r"^\d{10}$", "description": "10-digit account"}],
    "range": [{"field": "FiscalPeriod", "min": 1, "max": 16}],
}


def gl_balance_payload(accounts: int = 20) -> Dict[str, Records]:
    """Mock period balances for two company codes."""
    rows = []
    for i in range(accounts):
        account = str(100000 + i * 100)
        for company in COMPANY_CODES:
            rows.append({
                "BUKRS": company,
                "HKONT": account,
                "GJAHR": "2024",
                "MONAT": "12",
                "WAERS": "usd" if company == "1000" else "eur",
                "DMBTR": f"{(i + 1) * 1250.5:.2f}",
                "SHKZG": "S" if i % 2 == 0 else "H",
                "BUDAT": "20241231",
            })
    return {"balances": rows}


def build_gl_balance(extractor: Optional[StaticExtractor] = None,
                     loader: Optional[Loader] = None, **options) -> MigrationObject:
    extractor = extractor or StaticExtractor(
        "FI_TRANSACTIONS", "GL period balances", gl_balance_payload(),
        tables=[
            {"table": "GLT0", "description": "GL account totals", "critical": True},
            {"table": "SKA1", "description": "GL account master", "critical": False},
        ],
    )
    return MigrationObject(
        object_id="GL_BALANCE",
        name="GL Balance",
        description="General ledger period balances",
        field_mappings=GL_BALANCE_MAPPINGS,
        quality_checks=GL_BALANCE_CHECKS,
        extractor=extractor,
        loader=loader,
        entity="balances",
        **options,
    )


# =============================================================================
# Catalogue
# =============================================================================

BUILTIN_OBJECTS = {
    "BUSINESS_PARTNER": build_business_partner,
    "GL_BALANCE": build_gl_balance,
}


def build_migration_objects(**options) -> Dict[str, MigrationObject]:
    return {object_id: build(**options) for object_id, build in BUILTIN_OBJECTS.items()}


def register_default_extractors(registry: Optional[ExtractorRegistry] = None) -> ExtractorRegistry:
    """Register the extractors behind the built-in objects. Safe to call twice."""
    registry = registry or get_extractor_registry()
    for migration_object in build_migration_objects().values():
        registry.register(migration_object.runner.extractor)
    logger.info(f"Registered {len(registry)} extractors", extra_fields={"ids": registry.list_ids()})
    return registry
