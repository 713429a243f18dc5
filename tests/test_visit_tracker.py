import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from app import tracker
from models import db, Visitor, CountryStat, GlobalStat
from visit_tracker import clean_location


def test_new_visitor_counts_once(register):
    visitor, is_new = register('1.2.3.4')

    assert is_new
    assert visitor.visit_count == 1
    assert Visitor.query.count() == 1

    stats = tracker.get_stats()
    assert stats['totalVisitors'] == 1
    assert stats['totalCountries'] == 1
    assert stats['totalVisits'] == 1
    assert stats['countryStats'][0]['country'] == 'France'
    assert stats['countryStats'][0]['countryCode'] == 'FR'
    assert stats['countryStats'][0]['totalVisitors'] == 1


def test_repeat_visitor_only_bumps_visit_count(register):
    register('1.2.3.4')
    visitor, is_new = register('1.2.3.4')

    assert not is_new
    assert visitor.visit_count == 2

    stats = tracker.get_stats()
    assert stats['totalVisitors'] == 1
    assert stats['totalVisits'] == 2
    assert stats['countryStats'][0]['totalVisitors'] == 1


def test_second_ip_same_country(register):
    register('1.2.3.4')
    register('1.2.3.4')
    register('5.6.7.8')

    stats = tracker.get_stats()
    assert stats['totalVisitors'] == 2
    assert stats['totalCountries'] == 1
    assert stats['totalVisits'] == 3
    assert stats['countryStats'] == [
        {
            'country': 'France',
            'countryCode': 'FR',
            'totalVisitors': 2,
            'lastUpdate': stats['countryStats'][0]['lastUpdate'],
        }
    ]


def test_repeat_visit_from_new_country_does_not_count_country(register, location):
    register('1.2.3.4')
    visitor, _ = register('1.2.3.4', location(country='Germany', countryCode='DE', city='Berlin'))

    # location follows the latest report
    assert visitor.country == 'Germany'
    assert visitor.city == 'Berlin'

    stats = tracker.get_stats()
    assert stats['totalCountries'] == 1
    assert [c['countryCode'] for c in stats['countryStats']] == ['FR']
    assert CountryStat.query.filter_by(country_code='DE').first() is None


def test_unknown_country_is_not_aggregated(register, location):
    register('1.2.3.4', location(country='Unknown', countryCode='XX'))
    register('5.6.7.8', location(country=None, countryCode=None))

    stats = tracker.get_stats()
    assert stats['totalVisitors'] == 2
    assert stats['totalCountries'] == 0
    assert stats['countryStats'] == []


def test_country_keyed_by_code_keeps_latest_name(register, location):
    register('1.2.3.4', location(country='France'))
    register('5.6.7.8', location(country='République française', countryCode='fr'))

    country = CountryStat.query.one()
    assert country.country_code == 'FR'
    assert country.country == 'République française'
    assert country.total_visitors == 2


def test_top_countries_order_and_limit(register, location):
    register('10.0.0.1', location(country='Spain', countryCode='ES'))
    register('10.0.0.2', location(country='Argentina', countryCode='AR'))
    register('10.0.0.3', location(country='Mexico', countryCode='MX'))
    register('10.0.0.4', location(country='Mexico', countryCode='MX'))

    names = [c['country'] for c in tracker.get_stats()['countryStats']]
    # Mexico leads, the tie between Argentina and Spain is broken by name
    assert names == ['Mexico', 'Argentina', 'Spain']

    for i in range(12):
        register(f'10.1.0.{i}', location(country=f'Country {i:02d}', countryCode=f'Q{chr(65 + i)}'))

    stats = tracker.get_stats()
    assert stats['totalCountries'] == CountryStat.query.count() == 15
    assert len(stats['countryStats']) == 10
    assert stats['countryStats'][0]['country'] == 'Mexico'
    tied = [c['country'] for c in stats['countryStats'][1:]]
    assert tied == sorted(tied)


def test_global_totals_match_tables(register, location):
    for i in range(5):
        register(f'192.168.0.{i}', location(countryCode='FR'))
        register(f'192.168.0.{i}', location(countryCode='FR'))
    register('172.16.0.1', location(country='Japan', countryCode='JP'))

    global_stats = db.session.get(GlobalStat, 1)
    assert global_stats.total_visitors == Visitor.query.count() == 6
    assert global_stats.total_countries == CountryStat.query.count() == 2
    assert tracker.get_stats()['totalVisits'] == 11


def test_reset_clears_everything(register):
    register('1.2.3.4')
    register('5.6.7.8')

    tracker.reset_stats()

    assert Visitor.query.count() == 0
    assert CountryStat.query.count() == 0
    stats = tracker.get_stats()
    assert stats['totalVisitors'] == 0
    assert stats['totalCountries'] == 0
    assert stats['totalVisits'] == 0

    visitor, is_new = register('1.2.3.4')
    assert is_new
    assert tracker.get_stats()['totalVisitors'] == 1


def test_missing_global_row_is_recreated(register):
    GlobalStat.query.delete()
    db.session.commit()

    register('1.2.3.4')
    assert tracker.get_stats()['totalVisitors'] == 1


def test_failed_write_rolls_back(register, monkeypatch):
    register('1.2.3.4')

    def broken_bump(column, now):
        raise OperationalError('UPDATE global_stats', {}, Exception('disk I/O error'))

    monkeypatch.setattr(tracker, '_bump_global', broken_bump)
    with pytest.raises(OperationalError):
        register('5.6.7.8')

    assert Visitor.query.filter_by(ip_address='5.6.7.8').first() is None
    assert tracker.get_stats()['totalVisitors'] == 1


def test_salted_ip_is_not_stored_raw(register, monkeypatch):
    monkeypatch.setattr(tracker, 'ip_salt', 'pepper')
    register('1.2.3.4')
    register('1.2.3.4')

    visitor = Visitor.query.one()
    assert visitor.ip_address != '1.2.3.4'
    assert len(visitor.ip_address) == 64
    assert visitor.visit_count == 2


def test_clean_location_truncates_and_coerces():
    location = clean_location({'country': 'x' * 300, 'countryCode': 'fra', 'city': 42})

    assert len(location['country']) == 100
    assert location['country_code'] == 'FR'
    assert location['city'] == '42'
    assert location['region'] is None
    assert clean_location(['not', 'a', 'dict'])['country'] is None


class MissingRow:
    """Query stand-in that never finds a row, like a read taken before a concurrent commit."""

    def filter_by(self, **kwargs):
        return self

    def first(self):
        return None


def stale_first_attempt(monkeypatch, model):
    """Make the first _apply_visit miss rows of `model`; record what each attempt raised."""
    original = tracker._apply_visit
    attempts = []

    def racing_apply(key, location, user_agent):
        if attempts:
            attempts.append(None)
            return original(key, location, user_agent)
        with monkeypatch.context() as m:
            m.setattr(model, 'query', MissingRow())
            try:
                return original(key, location, user_agent)
            except IntegrityError as e:
                attempts.append(e)
                raise

    monkeypatch.setattr(tracker, '_apply_visit', racing_apply)
    return attempts


def test_concurrent_first_visit_counts_as_repeat(register, monkeypatch):
    register('1.2.3.4')
    attempts = stale_first_attempt(monkeypatch, Visitor)

    visitor, is_new = register('1.2.3.4')

    assert len(attempts) == 2
    assert isinstance(attempts[0], IntegrityError)
    assert not is_new
    assert visitor.visit_count == 2
    assert Visitor.query.count() == 1

    stats = tracker.get_stats()
    assert stats['totalVisitors'] == 1
    assert stats['totalVisits'] == 2
    assert stats['countryStats'][0]['totalVisitors'] == 1


def test_concurrent_first_sighting_of_country(register, monkeypatch):
    register('1.2.3.4')
    attempts = stale_first_attempt(monkeypatch, CountryStat)

    visitor, is_new = register('5.6.7.8')

    assert len(attempts) == 2
    assert isinstance(attempts[0], IntegrityError)
    assert is_new
    assert visitor.visit_count == 1
    assert Visitor.query.count() == 2

    stats = tracker.get_stats()
    assert stats['totalVisitors'] == 2
    assert stats['totalCountries'] == CountryStat.query.count() == 1
    assert stats['countryStats'][0]['totalVisitors'] == 2
