from flask import request
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
import hashlib
import hmac
from geolocation_service import UNKNOWN, UNKNOWN_COUNTRY_CODE
from models import db, utcnow, isoformat, Visitor, CountryStat, GlobalStat, GLOBAL_STATS_ID

LOCATION_FIELDS = {
    # payload key: (column, max length)
    'country': ('country', 100),
    'countryCode': ('country_code', 2),
    'region': ('region', 100),
    'city': ('city', 100),
    'timezone': ('timezone', 100),
    'org': ('org', 500),
}


def clean_location(payload):
    """Turn an untrusted request body into column values."""
    payload = payload if isinstance(payload, dict) else {}
    location = {}
    for key, (column, max_len) in LOCATION_FIELDS.items():
        value = payload.get(key)
        location[column] = str(value).strip()[:max_len] if value is not None else None
    if location['country_code']:
        location['country_code'] = location['country_code'].upper()
    return location


def has_known_country(location):
    code = location.get('country_code')
    name = location.get('country')
    return bool(code and name) and code != UNKNOWN_COUNTRY_CODE and name != UNKNOWN


class VisitTracker:
    def __init__(self, app=None):
        self.app = app
        self.ip_salt = ''
        self.top_countries = 10
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.ip_salt = app.config.get('VISITOR_IP_SALT', '')
        self.top_countries = app.config.get('TOP_COUNTRIES_LIMIT', 10)
        app.extensions['visit_tracker'] = self

    def get_real_ip(self):
        if request.headers.get('X-Forwarded-For'):
            return request.headers.get('X-Forwarded-For').split(',')[0].strip()
        elif request.headers.get('X-Real-IP'):
            return request.headers.get('X-Real-IP').strip()
        return request.remote_addr or 'unknown'

    def visitor_key(self, ip):
        """Value stored in visitors.ip_address: the raw IP, or its HMAC when a salt is configured."""
        if not self.ip_salt:
            return ip[:64]
        return hmac.new(self.ip_salt.encode(), ip.encode(), hashlib.sha256).hexdigest()

    def register_visit(self, ip, payload, user_agent=''):
        """Record one visit and return (visitor, is_new_visitor).

        Everything happens in a single transaction. If a concurrent request
        inserted the same visitor or country first, the unique constraint
        rejects our insert; we roll back and apply the visit once more
        against the row that won.
        """
        location = clean_location(payload)
        key = self.visitor_key(ip)

        try:
            result = self._apply_visit(key, location, user_agent)
            db.session.commit()
            return result
        except IntegrityError:
            db.session.rollback()
        except SQLAlchemyError:
            db.session.rollback()
            raise

        try:
            result = self._apply_visit(key, location, user_agent)
            db.session.commit()
            return result
        except SQLAlchemyError:
            db.session.rollback()
            raise

    def _apply_visit(self, key, location, user_agent):
        now = utcnow()
        GlobalStat.ensure()

        visitor = Visitor.query.filter_by(ip_address=key).first()
        is_new = visitor is None

        if visitor:
            visitor.last_visit = now
            visitor.visit_count = Visitor.visit_count + 1
            visitor.apply_location(location)
        else:
            visitor = Visitor(
                ip_address=key,
                user_agent=(user_agent or '')[:500],
                first_visit=now,
                last_visit=now,
                visit_count=1
            )
            visitor.apply_location(location)
            db.session.add(visitor)
            db.session.flush()
            self._bump_global(GlobalStat.total_visitors, now)

        # Repeat visitors never touch the country totals
        if is_new and has_known_country(location):
            country = CountryStat.query.filter_by(country_code=location['country_code']).first()
            if country:
                country.total_visitors = CountryStat.total_visitors + 1
                country.country = location['country']
                country.last_update = now
            else:
                db.session.add(CountryStat(
                    country_code=location['country_code'],
                    country=location['country'],
                    total_visitors=1,
                    last_update=now
                ))
                db.session.flush()
                self._bump_global(GlobalStat.total_countries, now)

        db.session.flush()
        return visitor, is_new

    def _bump_global(self, column, now):
        GlobalStat.query.filter_by(id=GLOBAL_STATS_ID).update(
            {column: column + 1, GlobalStat.last_update: now},
            synchronize_session=False
        )

    def get_stats(self, limit=None):
        limit = limit or self.top_countries

        global_stats = db.session.get(GlobalStat, GLOBAL_STATS_ID)

        top_countries = CountryStat.query.order_by(
            CountryStat.total_visitors.desc(),
            CountryStat.country.asc(),
            CountryStat.country_code.asc()
        ).limit(limit).all()

        total_visits = db.session.query(
            func.coalesce(func.sum(Visitor.visit_count), 0)
        ).scalar()

        return {
            'totalVisitors': global_stats.total_visitors if global_stats else 0,
            'totalCountries': global_stats.total_countries if global_stats else 0,
            'totalVisits': int(total_visits or 0),
            'countryStats': [c.to_dict() for c in top_countries],
            'lastUpdate': isoformat(global_stats.last_update) if global_stats else None,
        }

    def reset_stats(self):
        try:
            Visitor.query.delete()
            CountryStat.query.delete()
            global_stats = GlobalStat.ensure()
            global_stats.total_visitors = 0
            global_stats.total_countries = 0
            global_stats.last_update = utcnow()
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
