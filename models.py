from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timezone

db = SQLAlchemy()

GLOBAL_STATS_ID = 1


def utcnow():
    """Naive UTC timestamp, matching what SQLite hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value):
    return value.isoformat() if value else None


class Visitor(db.Model):
    __tablename__ = 'visitors'

    id = db.Column(db.Integer, primary_key=True)
    ip_address = db.Column(db.String(64), unique=True, nullable=False)
    country = db.Column(db.String(100))
    country_code = db.Column(db.String(2))
    region = db.Column(db.String(100))
    city = db.Column(db.String(100))
    timezone = db.Column(db.String(100))
    org = db.Column(db.Text)
    user_agent = db.Column(db.Text)
    first_visit = db.Column(db.DateTime, default=utcnow, nullable=False)
    last_visit = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
    visit_count = db.Column(db.Integer, default=1, nullable=False)

    def apply_location(self, location):
        self.country = location['country']
        self.country_code = location['country_code']
        self.region = location['region']
        self.city = location['city']
        self.timezone = location['timezone']
        self.org = location['org']

    def to_dict(self):
        return {
            'ip': self.ip_address,
            'country': self.country,
            'countryCode': self.country_code,
            'region': self.region,
            'city': self.city,
            'timezone': self.timezone,
            'org': self.org,
            'userAgent': self.user_agent,
            'firstVisit': isoformat(self.first_visit),
            'lastVisit': isoformat(self.last_visit),
            'visitCount': self.visit_count,
        }

    def __repr__(self):
        return f'<Visitor {self.ip_address} visits={self.visit_count}>'


class CountryStat(db.Model):
    __tablename__ = 'country_stats'

    id = db.Column(db.Integer, primary_key=True)
    country_code = db.Column(db.String(2), unique=True, nullable=False)
    country = db.Column(db.String(100), nullable=False)
    total_visitors = db.Column(db.Integer, default=0, nullable=False)
    last_update = db.Column(db.DateTime, default=utcnow, nullable=False)

    def to_dict(self):
        return {
            'country': self.country,
            'countryCode': self.country_code,
            'totalVisitors': self.total_visitors,
            'lastUpdate': isoformat(self.last_update),
        }

    def __repr__(self):
        return f'<CountryStat {self.country_code} total={self.total_visitors}>'


class GlobalStat(db.Model):
    """Singleton row holding the running totals."""
    __tablename__ = 'global_stats'

    id = db.Column(db.Integer, primary_key=True)
    total_visitors = db.Column(db.Integer, default=0, nullable=False)
    total_countries = db.Column(db.Integer, default=0, nullable=False)
    last_update = db.Column(db.DateTime, default=utcnow, nullable=False)

    @classmethod
    def ensure(cls):
        """Return the singleton row, adding it to the session if missing."""
        stats = db.session.get(cls, GLOBAL_STATS_ID)
        if stats is None:
            stats = cls(id=GLOBAL_STATS_ID, total_visitors=0, total_countries=0)
            db.session.add(stats)
            db.session.flush()
        return stats

    def __repr__(self):
        return f'<GlobalStat visitors={self.total_visitors} countries={self.total_countries}>'
