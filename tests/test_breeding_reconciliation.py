from datetime import date

from dairytrack.models import BreedingRecord, PregnancyRecord, BreedingEvent
from dairytrack.breeding import (
    map_pregnancy_status, map_pregnancy_result, normalize_pregnancy_result,
    latest_pregnancy_check, resolve_pregnancy_status, reconcile_breeding_history,
)


def make_record(record_id=1, breeding_date=date(2025, 1, 10)):
    return BreedingRecord(id=record_id, animal_id=7, farm_id=1, breeding_date=breeding_date,
                          breeding_type='artificial_insemination', sire_name='BULL-9', auto_generated=False)


def make_pregnancy(record_id=1, status='suspected', **kwargs):
    return PregnancyRecord(breeding_record_id=record_id, animal_id=7, farm_id=1,
                           pregnancy_status=status, **kwargs)


def make_check(event_id, event_date, result, **kwargs):
    return BreedingEvent(id=event_id, animal_id=7, farm_id=1, event_type='pregnancy_check',
                         event_date=event_date, pregnancy_result=result, **kwargs)


def test_stored_status_table():
    assert map_pregnancy_status('suspected') == 'pending'
    assert map_pregnancy_status('confirmed') == 'confirmed'
    assert map_pregnancy_status('false') == 'negative'
    assert map_pregnancy_status('aborted') == 'aborted'
    assert map_pregnancy_status('completed') == 'completed'
    assert map_pregnancy_status(None) == 'pending'
    assert map_pregnancy_status('something-else') == 'pending'


def test_check_result_table():
    assert map_pregnancy_result('pregnant') == 'confirmed'
    assert map_pregnancy_result('not_pregnant') == 'negative'
    assert map_pregnancy_result('uncertain') == 'uncertain'
    assert map_pregnancy_result(None) == 'pending'
    assert map_pregnancy_result('positive') == 'pending'


def test_result_aliases_are_normalized():
    assert normalize_pregnancy_result('positive') == 'pregnant'
    assert normalize_pregnancy_result('Negative') == 'not_pregnant'
    assert normalize_pregnancy_result('inconclusive') == 'uncertain'
    assert normalize_pregnancy_result('maybe') is None


def test_no_pregnancy_record_and_no_checks_is_pending():
    views = reconcile_breeding_history([make_record()], [], [])
    assert views[0]['pregnancy_status'] == 'pending'
    assert views[0]['pregnancy_confirmed'] is False
    assert views[0]['gestation_period'] == 280


def test_later_check_overrides_stored_status():
    record = make_record()
    pregnancy = make_pregnancy(status='confirmed')
    check = make_check(1, date(2025, 3, 1), 'not_pregnant')

    views = reconcile_breeding_history([record], [pregnancy], [check])
    assert views[0]['pregnancy_status'] == 'negative'


def test_earlier_check_does_not_override_stored_status():
    record = make_record(breeding_date=date(2025, 4, 1))
    pregnancy = make_pregnancy(status='confirmed')
    check = make_check(1, date(2025, 3, 1), 'not_pregnant')

    views = reconcile_breeding_history([record], [pregnancy], [check])
    assert views[0]['pregnancy_status'] == 'confirmed'
    assert views[0]['pregnancy_confirmed'] is True


def test_check_on_breeding_day_counts():
    record = make_record(breeding_date=date(2025, 2, 1))
    check = make_check(1, date(2025, 2, 1), 'uncertain')
    assert resolve_pregnancy_status(record, None, check) == 'uncertain'


def test_only_the_most_recent_check_is_used():
    events = [
        make_check(1, date(2025, 2, 20), 'pregnant'),
        make_check(2, date(2025, 3, 20), 'not_pregnant'),
        BreedingEvent(id=3, animal_id=7, farm_id=1, event_type='heat_detection', event_date=date(2025, 4, 1)),
    ]
    latest = latest_pregnancy_check(events)
    assert latest.id == 2

    views = reconcile_breeding_history([make_record()], [make_pregnancy(status='confirmed')], events)
    assert views[0]['pregnancy_status'] == 'negative'


def test_latest_check_applies_per_breeding_date():
    old = make_record(record_id=1, breeding_date=date(2024, 6, 1))
    new = make_record(record_id=2, breeding_date=date(2025, 6, 1))
    pregnancies = [make_pregnancy(1, status='completed'), make_pregnancy(2, status='suspected')]
    check = make_check(1, date(2025, 2, 1), 'pregnant')

    views = reconcile_breeding_history([new, old], pregnancies, [check])
    assert [v['id'] for v in views] == [2, 1]
    assert views[0]['pregnancy_status'] == 'pending'
    assert views[1]['pregnancy_status'] == 'confirmed'


def test_dates_prefer_pregnancy_record_and_fall_back_to_check():
    record = make_record()
    check = make_check(1, date(2025, 3, 1), 'pregnant', estimated_due_date=date(2025, 10, 17))

    without_pregnancy = reconcile_breeding_history([record], [], [check])[0]
    assert without_pregnancy['expected_calving_date'] == '2025-10-17'
    assert without_pregnancy['pregnancy_check_date'] == '2025-03-01'

    pregnancy = make_pregnancy(status='confirmed', expected_calving_date=date(2025, 10, 20),
                               confirmed_date=date(2025, 2, 28), gestation_length=283)
    with_pregnancy = reconcile_breeding_history([record], [pregnancy], [check])[0]
    assert with_pregnancy['expected_calving_date'] == '2025-10-20'
    assert with_pregnancy['pregnancy_check_date'] == '2025-02-28'
    assert with_pregnancy['gestation_period'] == 283


def test_stale_check_dates_are_not_merged():
    record = make_record(breeding_date=date(2025, 5, 1))
    check = make_check(1, date(2025, 3, 1), 'pregnant', estimated_due_date=date(2025, 12, 1))

    view = reconcile_breeding_history([record], [], [check])[0]
    assert view['expected_calving_date'] is None
    assert view['pregnancy_check_date'] is None


def test_view_renames_record_fields():
    view = reconcile_breeding_history([make_record()], [], [])[0]
    assert view['breeding_method'] == 'artificial_insemination'
    assert view['sire_tag'] == 'BULL-9'
    assert view['breeding_date'] == '2025-01-10'
    assert view['auto_generated'] is False
