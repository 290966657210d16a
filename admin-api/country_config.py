"""
Regional configuration module.

Reads COUNTRY_CODE from the environment and exports the currency symbol
used in tariff labels and the display timezone used by report exports.

Supported countries:
  IN  - India (INR, IST)
"""

import os
from dataclasses import dataclass
from datetime import timedelta, timezone
from typing import Dict, Optional


@dataclass(frozen=True)
class CountryConfig:
    code: str                           # ISO 3166-1 alpha-2
    name: str
    currency: str                       # ISO 4217
    currency_symbol: str                # display prefix in tariff labels
    dial_code: str                      # international dialing prefix
    timezone: str                       # IANA timezone (e.g. Asia/Kolkata)
    utc_offset_minutes: int             # fixed offset for report timestamps
    energy_unit: str = "kWh"


INDIA = CountryConfig(
    code="IN",
    name="India",
    currency="INR",
    currency_symbol="₹",
    dial_code="91",
    timezone="Asia/Kolkata",
    utc_offset_minutes=330,
)

_REGISTRY: Dict[str, CountryConfig] = {
    "IN": INDIA,
}


def get_country(code: Optional[str] = None) -> CountryConfig:
    """Return the active country config.

    Reads COUNTRY_CODE env var if *code* is not passed explicitly.
    Defaults to 'IN'.
    """
    code = (code or os.environ.get("COUNTRY_CODE", "IN")).upper()
    cfg = _REGISTRY.get(code)
    if cfg is None:
        raise ValueError(f"Unknown COUNTRY_CODE '{code}'. Valid: {sorted(_REGISTRY)}")
    return cfg


COUNTRY: CountryConfig = get_country()
CURRENCY_SYMBOL: str = COUNTRY.currency_symbol
ENERGY_UNIT: str = COUNTRY.energy_unit
LOCAL_TZ = timezone(timedelta(minutes=COUNTRY.utc_offset_minutes))
