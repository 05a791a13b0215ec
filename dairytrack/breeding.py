"""
Breeding history and pregnancy tracking.

Three tables describe an animal's reproductive history: BreedingRecord (one row
per service), PregnancyRecord (its confirmation/outcome row) and the generic
BreedingEvent log. The read side merges them into one timeline per animal; the
write side keeps them in step. Writers only stage rows on db.session, so a
handler commits or rolls back the whole operation at once.
"""
from datetime import date, timedelta

from . import db
from .models import Animal, BreedingRecord, PregnancyRecord, BreedingEvent
from .utils import parse_date, parse_float

DEFAULT_GESTATION_DAYS = 280

EVENT_TYPES = ('heat_detection', 'insemination', 'pregnancy_check', 'calving')
BREEDING_METHODS = ('artificial_insemination', 'natural_breeding')
PREGNANCY_RESULTS = ('pregnant', 'not_pregnant', 'uncertain')
CALVING_OUTCOMES = ('normal', 'assisted', 'difficult', 'caesarean')

# Stored pregnancy_records.pregnancy_status -> status shown on the timeline.
PREGNANCY_STATUS_MAP = {
    'suspected': 'pending',
    'confirmed': 'confirmed',
    'false': 'negative',
    'aborted': 'aborted',
    'completed': 'completed',
}

# breeding_events.pregnancy_result -> status shown on the timeline.
PREGNANCY_RESULT_MAP = {
    'pregnant': 'confirmed',
    'not_pregnant': 'negative',
    'uncertain': 'uncertain',
}

# Older clients post positive/negative/inconclusive.
PREGNANCY_RESULT_ALIASES = {
    'positive': 'pregnant',
    'negative': 'not_pregnant',
    'inconclusive': 'uncertain',
}

# pregnancy_result -> stored pregnancy_status after a check.
RESULT_TO_STORED_STATUS = {
    'pregnant': 'confirmed',
    'not_pregnant': 'false',
    'uncertain': 'suspected',
}

SETTLED_PREGNANCY_STATUSES = ('confirmed', 'false', 'aborted', 'completed')


class BreedingError(ValueError):
    """A breeding write was refused because of the data it was given."""


# --- Reconciliation (pure) ---

def map_pregnancy_status(db_status):
    return PREGNANCY_STATUS_MAP.get(db_status, 'pending')


def map_pregnancy_result(result):
    return PREGNANCY_RESULT_MAP.get(result, 'pending')


def normalize_pregnancy_result(result):
    """Returns one of PREGNANCY_RESULTS, or None if the value is unknown."""
    if not result:
        return None
    result = str(result).strip().lower()
    result = PREGNANCY_RESULT_ALIASES.get(result, result)
    return result if result in PREGNANCY_RESULTS else None


def latest_pregnancy_check(events):
    """Most recent pregnancy_check event in the list, or None."""
    checks = [e for e in events if e.event_type == 'pregnancy_check' and e.event_date]
    if not checks:
        return None
    return sorted(checks, key=lambda e: (e.event_date, e.id or 0), reverse=True)[0]


def check_applies_to(check_event, breeding_record):
    """A check only speaks for a breeding if it happened on or after it."""
    return check_event is not None and check_event.event_date >= breeding_record.breeding_date


def resolve_pregnancy_status(breeding_record, pregnancy_record, check_event):
    """
    Current pregnancy status of one breeding. The latest pregnancy check wins
    over the stored pregnancy record when it is dated on/after the breeding.
    """
    if check_applies_to(check_event, breeding_record):
        return map_pregnancy_result(check_event.pregnancy_result)
    return map_pregnancy_status(pregnancy_record.pregnancy_status if pregnancy_record else None)


def build_breeding_view(breeding_record, pregnancy_record, check_event):
    """Flattens a breeding record and its pregnancy data into the timeline shape."""
    status = resolve_pregnancy_status(breeding_record, pregnancy_record, check_event)
    authoritative_check = check_event if check_applies_to(check_event, breeding_record) else None

    expected_calving = pregnancy_record.expected_calving_date if pregnancy_record else None
    if expected_calving is None and authoritative_check:
        expected_calving = authoritative_check.estimated_due_date

    check_date = pregnancy_record.confirmed_date if pregnancy_record else None
    if check_date is None and authoritative_check:
        check_date = authoritative_check.event_date

    actual_calving = pregnancy_record.actual_calving_date if pregnancy_record else None
    gestation = pregnancy_record.gestation_length if pregnancy_record else None

    return {
        'id': breeding_record.id,
        'animal_id': breeding_record.animal_id,
        'breeding_date': breeding_record.breeding_date.isoformat(),
        'breeding_method': breeding_record.breeding_type,
        'sire_tag': breeding_record.sire_name,
        'sire_breed': breeding_record.sire_breed,
        'expected_calving_date': expected_calving.isoformat() if expected_calving else None,
        'actual_calving_date': actual_calving.isoformat() if actual_calving else None,
        'pregnancy_confirmed': status == 'confirmed',
        'pregnancy_check_date': check_date.isoformat() if check_date else None,
        'pregnancy_status': status,
        'gestation_period': gestation or DEFAULT_GESTATION_DAYS,
        'breeding_notes': breeding_record.notes,
        'veterinarian': breeding_record.technician_name,
        'breeding_cost': breeding_record.cost,
        'created_at': breeding_record.created_at.isoformat() if breeding_record.created_at else None,
        'updated_at': breeding_record.updated_at.isoformat() if breeding_record.updated_at else None,
        'auto_generated': bool(breeding_record.auto_generated),
    }


def reconcile_breeding_history(breeding_records, pregnancy_records, events):
    """Builds one view per breeding record, in the order the records were given."""
    pregnancy_by_record = {p.breeding_record_id: p for p in pregnancy_records}
    check_event = latest_pregnancy_check(events)
    return [
        build_breeding_view(record, pregnancy_by_record.get(record.id), check_event)
        for record in breeding_records
    ]


def split_events(events):
    """Groups serialized events by type for the timeline response."""
    serialized = [e.to_dict() for e in events]
    return {
        'pregnancyChecks': [e for e in serialized if e['event_type'] == 'pregnancy_check'],
        'heatEvents': [e for e in serialized if e['event_type'] == 'heat_detection'],
        'inseminationEvents': [e for e in serialized if e['event_type'] == 'insemination'],
        'calvingEvents': [e for e in serialized if e['event_type'] == 'calving'],
        'allEvents': serialized,
    }


def get_unified_breeding_history(animal_id, include_events=True):
    """
    Loads the three breeding sources of one animal and merges them.
    Events always take part in status resolution; include_events only decides
    whether the raw event lists are returned too.
    """
    records = BreedingRecord.query.filter_by(animal_id=animal_id) \
        .order_by(BreedingRecord.breeding_date.desc(), BreedingRecord.id.desc()).all()
    events = BreedingEvent.query.filter_by(animal_id=animal_id) \
        .order_by(BreedingEvent.event_date.desc(), BreedingEvent.id.desc()).all()
    pregnancies = PregnancyRecord.query.filter_by(animal_id=animal_id) \
        .order_by(PregnancyRecord.created_at.desc()).all()

    history = {'breedingRecords': reconcile_breeding_history(records, pregnancies, events)}
    history.update(split_events(events if include_events else []))
    return history


# --- Writers ---

def _stage_breeding_record(animal, breeding_date, data, auto_generated, gestation_days):
    """Adds a BreedingRecord plus its 'suspected' PregnancyRecord."""
    method = data.get('breeding_method') or 'artificial_insemination'
    if method not in BREEDING_METHODS:
        raise BreedingError(f"Invalid breeding_method '{method}'.")
    try:
        cost = parse_float(data.get('breeding_cost'))
    except (TypeError, ValueError):
        raise BreedingError('Invalid breeding_cost.')

    record = BreedingRecord(
        animal_id=animal.id,
        farm_id=animal.farm_id,
        breeding_date=breeding_date,
        breeding_type=method,
        sire_name=data.get('sire_tag'),
        sire_breed=data.get('sire_breed'),
        technician_name=data.get('veterinarian'),
        cost=cost,
        notes=data.get('breeding_notes'),
        auto_generated=bool(auto_generated),
    )
    db.session.add(record)
    db.session.flush()  # need record.id for the pregnancy row

    db.session.add(PregnancyRecord(
        breeding_record_id=record.id,
        animal_id=animal.id,
        farm_id=animal.farm_id,
        pregnancy_status='suspected',
        expected_calving_date=breeding_date + timedelta(days=gestation_days),
        gestation_length=gestation_days,
    ))
    return record


def create_unified_breeding_record(animal, data, user_id, gestation_days=DEFAULT_GESTATION_DAYS):
    """
    Stages a new service for an animal: the breeding record, its pregnancy
    record, the matching insemination event and the animal's move to 'served'.
    Nothing is committed here.
    """
    try:
        breeding_date = parse_date(data.get('breeding_date'))
    except ValueError:
        raise BreedingError('Invalid breeding_date. Please use YYYY-MM-DD.')
    if not breeding_date:
        raise BreedingError("The 'breeding_date' field is required.")

    record = _stage_breeding_record(animal, breeding_date, data, data.get('auto_generated'), gestation_days)
    db.session.add(BreedingEvent(
        farm_id=animal.farm_id,
        animal_id=animal.id,
        event_type='insemination',
        event_date=breeding_date,
        insemination_method=record.breeding_type,
        semen_bull_code=record.sire_name,
        technician_name=record.technician_name,
        notes=record.notes,
        created_by=user_id,
    ))

    animal.production_status = 'served'
    animal.expected_calving_date = breeding_date + timedelta(days=gestation_days)
    return record


def _get_or_stage_pregnancy(breeding_record):
    pregnancy = breeding_record.pregnancy
    if pregnancy is None:
        pregnancy = PregnancyRecord(
            breeding_record_id=breeding_record.id,
            animal_id=breeding_record.animal_id,
            farm_id=breeding_record.farm_id,
            pregnancy_status='suspected',
        )
        db.session.add(pregnancy)
        breeding_record.pregnancy = pregnancy
    return pregnancy


def record_pregnancy_check(breeding_record, data, user_id):
    """
    Applies one pregnancy check to a breeding: updates (or creates) the
    pregnancy record, moves the animal to pregnant/open on a definite result and
    appends a pregnancy_check event.
    """
    result = normalize_pregnancy_result(data.get('result'))
    if not result:
        raise BreedingError("The 'result' field must be one of: pregnant, not_pregnant, uncertain.")
    try:
        check_date = parse_date(data.get('check_date'))
        due_date = parse_date(data.get('estimated_due_date'))
    except ValueError:
        raise BreedingError('Invalid date format. Please use YYYY-MM-DD.')
    if not check_date:
        raise BreedingError("The 'check_date' field is required.")

    pregnancy = _get_or_stage_pregnancy(breeding_record)
    pregnancy.pregnancy_status = RESULT_TO_STORED_STATUS[result]
    pregnancy.confirmed_date = check_date
    pregnancy.confirmation_method = data.get('check_method')
    pregnancy.veterinarian = data.get('checked_by')
    pregnancy.pregnancy_notes = data.get('notes') or pregnancy.pregnancy_notes
    if due_date:
        pregnancy.expected_calving_date = due_date

    animal = breeding_record.animal
    if result == 'pregnant':
        animal.production_status = 'pregnant'
        animal.expected_calving_date = pregnancy.expected_calving_date
    elif result == 'not_pregnant':
        animal.production_status = 'open'
        animal.expected_calving_date = None

    db.session.add(BreedingEvent(
        farm_id=breeding_record.farm_id,
        animal_id=breeding_record.animal_id,
        event_type='pregnancy_check',
        event_date=check_date,
        pregnancy_result=result,
        examination_method=data.get('check_method'),
        veterinarian_name=data.get('checked_by'),
        estimated_due_date=due_date,
        notes=data.get('notes'),
        created_by=user_id,
    ))
    return pregnancy


def update_pregnancy_status_unified(breeding_record, animal_id, data, user_id):
    """Sets a definite pregnancy status (confirmed, false or aborted) on a breeding."""
    if breeding_record.animal_id != animal_id:
        raise BreedingError('Animal ID does not match breeding record')

    status = data.get('pregnancy_status')
    if status not in ('confirmed', 'false', 'aborted'):
        raise BreedingError("The 'pregnancy_status' field must be one of: confirmed, false, aborted.")
    try:
        check_date = parse_date(data.get('check_date'))
        due_date = parse_date(data.get('estimated_due_date'))
    except ValueError:
        raise BreedingError('Invalid date format. Please use YYYY-MM-DD.')
    if not check_date:
        raise BreedingError("The 'check_date' field is required.")

    pregnancy = _get_or_stage_pregnancy(breeding_record)
    pregnancy.pregnancy_status = status
    pregnancy.confirmed_date = check_date
    pregnancy.confirmation_method = data.get('check_method')
    pregnancy.veterinarian = data.get('checked_by')
    pregnancy.pregnancy_notes = data.get('notes')
    if due_date:
        pregnancy.expected_calving_date = due_date

    # An abortion is not a check result; a not_pregnant event would show as 'negative'.
    if status != 'aborted':
        db.session.add(BreedingEvent(
            farm_id=breeding_record.farm_id,
            animal_id=breeding_record.animal_id,
            event_type='pregnancy_check',
            event_date=check_date,
            pregnancy_result='pregnant' if status == 'confirmed' else 'not_pregnant',
            examination_method=data.get('check_method'),
            veterinarian_name=data.get('checked_by'),
            estimated_due_date=due_date,
            notes=data.get('notes'),
            created_by=user_id,
        ))

    animal = breeding_record.animal
    if status == 'confirmed':
        animal.production_status = 'pregnant'
        animal.expected_calving_date = pregnancy.expected_calving_date
    else:
        animal.production_status = 'open'
        animal.expected_calving_date = None
    return pregnancy


def _stage_calf(mother, calving_date, tag, gender=None, weight=None, health=None):
    if Animal.query.filter_by(farm_id=mother.farm_id, tag_number=tag).first():
        raise BreedingError(f"An animal with tag '{tag}' already exists on this farm.")
    calf = Animal(
        farm_id=mother.farm_id,
        tag_number=tag,
        name=f'Calf {tag}',
        gender=gender or 'female',
        birth_date=calving_date,
        weight=weight,
        status='active',
        production_status='calf',
        animal_source='born',
        mother_id=mother.id,
        notes=f"Born from {mother.tag_number}. Health: {health or 'Good'}",
    )
    db.session.add(calf)
    return calf


def record_calving_unified(breeding_record, data, user_id):
    """
    Closes a pregnancy with a calving: completes the pregnancy record, appends
    a calving event, optionally registers the calf and starts the mother's new
    lactation. Returns the staged calf or None.
    """
    outcome = data.get('calving_outcome') or 'normal'
    if outcome not in CALVING_OUTCOMES:
        raise BreedingError(f"Invalid calving_outcome '{outcome}'.")
    try:
        calving_date = parse_date(data.get('calving_date'))
        calf_weight = parse_float(data.get('calf_weight'))
    except (TypeError, ValueError):
        raise BreedingError('Invalid calving_date or calf_weight.')
    if not calving_date:
        raise BreedingError("The 'calving_date' field is required.")
    if calving_date < breeding_record.breeding_date:
        raise BreedingError('Calving date cannot be before the breeding date.')

    pregnancy = _get_or_stage_pregnancy(breeding_record)
    pregnancy.pregnancy_status = 'completed'
    pregnancy.actual_calving_date = calving_date

    db.session.add(BreedingEvent(
        farm_id=breeding_record.farm_id,
        animal_id=breeding_record.animal_id,
        event_type='calving',
        event_date=calving_date,
        calving_outcome=outcome,
        calf_gender=data.get('calf_gender'),
        calf_weight=calf_weight,
        calf_tag_number=data.get('calf_tag'),
        calf_health_status=data.get('calf_health'),
        notes=data.get('notes'),
        created_by=user_id,
    ))

    mother = breeding_record.animal
    calf = None
    if data.get('create_calf') and data.get('calf_tag'):
        calf = _stage_calf(mother, calving_date, data['calf_tag'], data.get('calf_gender'),
                           calf_weight, data.get('calf_health'))

    mother.production_status = 'lactating'
    mother.lactation_number = (mother.lactation_number or 0) + 1
    mother.days_in_milk = 0
    mother.expected_calving_date = None
    return calf


def stage_breeding_event(animal, event_data, user_id, create_calf=False):
    """
    Validates and appends a typed breeding event for an animal.
    Returns (event, calf); calf is only set for calving events with create_calf.
    """
    event_type = event_data.get('event_type')
    if event_type not in EVENT_TYPES:
        raise BreedingError(f"Invalid event_type '{event_type}'.")
    try:
        event_date = parse_date(event_data.get('event_date'))
        estimated_due_date = parse_date(event_data.get('estimated_due_date'))
        calf_weight = parse_float(event_data.get('calf_weight'))
    except (TypeError, ValueError):
        raise BreedingError('Invalid date or number in event data.')
    if not event_date:
        raise BreedingError("The 'event_date' field is required.")

    event = BreedingEvent(
        farm_id=animal.farm_id,
        animal_id=animal.id,
        event_type=event_type,
        event_date=event_date,
        notes=event_data.get('notes'),
        created_by=user_id,
    )

    if event_type == 'heat_detection':
        signs = event_data.get('heat_signs')
        if not isinstance(signs, list) or not signs:
            raise BreedingError('heat_signs must be a non-empty list.')
        event.heat_signs = signs
        event.heat_action_taken = event_data.get('heat_action_taken')
    elif event_type == 'insemination':
        method = event_data.get('insemination_method')
        if method not in BREEDING_METHODS:
            raise BreedingError(f"Invalid insemination_method '{method}'.")
        event.insemination_method = method
        event.semen_bull_code = event_data.get('semen_bull_code')
        event.technician_name = event_data.get('technician_name')
    elif event_type == 'pregnancy_check':
        result = normalize_pregnancy_result(event_data.get('pregnancy_result'))
        if not result:
            raise BreedingError('pregnancy_result must be one of: pregnant, not_pregnant, uncertain.')
        event.pregnancy_result = result
        event.examination_method = event_data.get('examination_method')
        event.veterinarian_name = event_data.get('veterinarian_name')
        event.estimated_due_date = estimated_due_date
    else:
        outcome = event_data.get('calving_outcome')
        if outcome not in CALVING_OUTCOMES:
            raise BreedingError(f"Invalid calving_outcome '{outcome}'.")
        event.calving_outcome = outcome
        event.calf_gender = event_data.get('calf_gender')
        event.calf_weight = calf_weight
        event.calf_tag_number = event_data.get('calf_tag_number')
        event.calf_health_status = event_data.get('calf_health_status')

    db.session.add(event)

    calf = None
    if event_type == 'calving' and create_calf:
        if not event.calf_tag_number:
            raise BreedingError('Calf tag number is required')
        calf = _stage_calf(animal, event_date, event.calf_tag_number, event.calf_gender,
                           calf_weight, event.calf_health_status)
    return event, calf


def sync_events_to_records(farm_id, gestation_days=DEFAULT_GESTATION_DAYS):
    """
    Back-fills breeding records for insemination events logged without one
    (same animal, same date). Returns (synced_count, errors).
    """
    events = BreedingEvent.query.filter_by(farm_id=farm_id, event_type='insemination') \
        .order_by(BreedingEvent.event_date).all()
    synced = 0
    errors = []
    seen = set()

    for event in events:
        key = (event.animal_id, event.event_date)
        if key in seen:
            continue
        seen.add(key)

        existing = BreedingRecord.query.filter_by(animal_id=event.animal_id,
                                                  breeding_date=event.event_date).first()
        if existing:
            continue

        data = {
            'breeding_method': event.insemination_method or 'artificial_insemination',
            'sire_tag': event.semen_bull_code,
            'veterinarian': event.technician_name,
            'breeding_notes': event.notes,
        }
        try:
            _stage_breeding_record(event.animal, event.event_date, data, True, gestation_days)
            synced += 1
        except BreedingError as e:
            errors.append(f'Failed to sync event {event.id}: {e}')

    return synced, errors


def pending_breedings(farm_id, window_days=90, today=None):
    """Recent breedings whose pregnancy outcome is still open."""
    today = today or date.today()
    since = today - timedelta(days=window_days)
    records = BreedingRecord.query.filter(
        BreedingRecord.farm_id == farm_id,
        BreedingRecord.breeding_date >= since,
    ).order_by(BreedingRecord.breeding_date.desc()).all()

    results = []
    for record in records:
        stored = record.pregnancy.pregnancy_status if record.pregnancy else None
        if stored in SETTLED_PREGNANCY_STATUSES:
            continue
        item = record.to_dict()
        item['pregnancy_status'] = stored
        item['animal'] = {
            'id': record.animal.id,
            'name': record.animal.name,
            'tag_number': record.animal.tag_number,
        }
        results.append(item)
    return results


def pregnant_animals(farm_id, due_soon_days=7, today=None):
    """Confirmed, not yet calved pregnancies, nearest due date first."""
    today = today or date.today()
    pregnancies = PregnancyRecord.query.filter(
        PregnancyRecord.farm_id == farm_id,
        PregnancyRecord.pregnancy_status == 'confirmed',
        PregnancyRecord.actual_calving_date.is_(None),
    ).order_by(PregnancyRecord.expected_calving_date.is_(None),
               PregnancyRecord.expected_calving_date).all()

    results = []
    for pregnancy in pregnancies:
        breeding_date = pregnancy.breeding_record.breeding_date
        due = pregnancy.expected_calving_date
        days_until_due = (due - today).days if due else 999

        status = 'normal'
        if days_until_due < 0:
            status = 'overdue'
        elif days_until_due <= due_soon_days:
            status = 'due_soon'

        results.append({
            'id': pregnancy.id,
            'animal_id': pregnancy.animal_id,
            'tag_number': pregnancy.animal.tag_number,
            'name': pregnancy.animal.name,
            'estimated_due_date': due.isoformat() if due else '',
            'days_pregnant': (today - breeding_date).days,
            'days_until_due': days_until_due,
            'conception_date': breeding_date.isoformat(),
            'status': status,
            'pregnancy_status': pregnancy.pregnancy_status,
        })
    return results
