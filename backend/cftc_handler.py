import logging
from typing import Dict, List

from http_client import get_json

logger = logging.getLogger("providers.cftc")

PROVIDER = 'cftc'

# CFTC contract market codes for the tracked metals
COMMODITY_CODES: Dict[str, str] = {
    '084691': 'SILVER',
    '088691': 'GOLD',
}


class CFTCHandler:
    """Commitments of Traders (disaggregated futures) from the CFTC Socrata API."""

    BASE_URL = "https://publicreporting.cftc.gov/resource/72hh-3qpy.json"

    def latest_reports(self, codes=None, limit: int = 50) -> List[dict]:
        codes = list(codes or COMMODITY_CODES)
        quoted = ','.join(f"'{c}'" for c in codes)
        params = {
            '$where': f"cftc_contract_market_code in ({quoted})",
            '$order': 'report_date_as_yyyy_mm_dd DESC',
            '$limit': limit,
        }
        return get_json(self.BASE_URL, provider=PROVIDER, params=params) or []
