import logging
import os

import requests

logger = logging.getLogger(__name__)


class StatsApiClient:
    """Calls the counter backend. Every method returns None on failure."""

    def __init__(self, base_url=None, timeout=None, session=None):
        self.base_url = (base_url or os.getenv('COUNTER_BACKEND_URL', 'http://localhost:5000')).rstrip('/')
        self.timeout = timeout if timeout is not None else float(os.getenv('COUNTER_TIMEOUT', 10))
        self.session = session or requests.Session()

    def _request(self, method, path, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            r = self.session.request(method, url, timeout=self.timeout, **kwargs)
            if r.status_code != 200:
                logger.warning("%s %s failed: %s %s", method, path, r.status_code, r.text[:200])
                return None
            data = r.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("%s %s error: %s", method, path, e)
            return None

        if not isinstance(data, dict) or not data.get('success'):
            logger.warning("%s %s returned an unsuccessful response", method, path)
            return None
        return data

    def register_visit(self, payload):
        """POST /api/visit. Returns the response body, totals included."""
        return self._request('POST', '/api/visit', json=payload)

    def get_stats(self):
        """GET /api/stats. Returns the `data` object."""
        data = self._request('GET', '/api/stats')
        return data.get('data') if data else None
