import logging
import os
from dataclasses import dataclass, asdict
from datetime import datetime, timezone

import requests

logger = logging.getLogger(__name__)

UNKNOWN = 'Unknown'
UNAVAILABLE = 'Unavailable'
UNKNOWN_COUNTRY_CODE = 'XX'


@dataclass
class VisitorLocation:
    ip: str
    country: str
    country_code: str
    region: str
    city: str
    timezone: str
    org: str
    timestamp: str
    error: bool = False

    @classmethod
    def unavailable(cls):
        """Placeholder record used when the lookup fails."""
        return cls(
            ip=UNAVAILABLE,
            country=UNKNOWN,
            country_code=UNKNOWN_COUNTRY_CODE,
            region=UNAVAILABLE,
            city=UNAVAILABLE,
            timezone=UNAVAILABLE,
            org=UNAVAILABLE,
            timestamp=datetime.now(timezone.utc).isoformat(),
            error=True,
        )

    @classmethod
    def from_dict(cls, data):
        return cls(**{k: data[k] for k in cls.__dataclass_fields__ if k in data})

    @property
    def has_country(self):
        return self.country_code != UNKNOWN_COUNTRY_CODE and self.country != UNKNOWN

    def to_payload(self):
        """Body for POST /api/visit. The IP is taken from the connection, not sent."""
        return {
            'country': self.country,
            'countryCode': self.country_code,
            'region': self.region,
            'city': self.city,
            'timezone': self.timezone,
            'org': self.org,
        }

    def to_dict(self):
        return asdict(self)


class GeolocationService:
    def __init__(self, url=None, timeout=None, session=None):
        self.url = url or os.getenv('GEOLOCATION_URL', 'https://ipapi.co/json/')
        self.timeout = timeout if timeout is not None else float(os.getenv('COUNTER_TIMEOUT', 10))
        self.session = session or requests.Session()

    def _get(self):
        try:
            r = self.session.get(self.url, headers={'Accept': 'application/json'}, timeout=self.timeout)
            if r.status_code != 200:
                logger.warning("Geolocation lookup failed: %s", r.status_code)
                return None
            data = r.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("Geolocation lookup error: %s", e)
            return None

        if not isinstance(data, dict):
            logger.warning("Geolocation lookup returned %s", type(data).__name__)
            return None
        if data.get('error'):
            logger.warning("Geolocation API error: %s", data.get('reason') or 'unknown reason')
            return None
        return data

    def lookup(self):
        """Resolve the caller's location. Never raises; failures give placeholder data."""
        data = self._get()
        if data is None:
            return VisitorLocation.unavailable()

        return VisitorLocation(
            ip=data.get('ip') or UNKNOWN,
            country=data.get('country_name') or UNKNOWN,
            country_code=(data.get('country_code') or UNKNOWN_COUNTRY_CODE).upper(),
            region=data.get('region') or UNKNOWN,
            city=data.get('city') or UNKNOWN,
            timezone=data.get('timezone') or UNKNOWN,
            org=data.get('org') or UNKNOWN,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
