from datetime import datetime, date
import pandas as pd

from . import db
from .models import Animal

ANIMAL_IMPORT_COLUMNS = [
    'tag_number', 'name', 'breed', 'gender', 'birth_date',
    'production_status', 'health_status', 'weight', 'notes',
]

PRODUCTION_STATUSES = ('calf', 'heifer', 'served', 'pregnant', 'open', 'lactating', 'dry', 'bull')


def parse_date(value):
    """
    Converts a 'YYYY-MM-DD' string (or a date) into a datetime.date.
    Empty values give None; anything unparseable raises ValueError.
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value).strip()[:10], '%Y-%m-%d').date()


def parse_float(value):
    """Converts an optional numeric field; empty values give None."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return float(value)


def find_farm_animal(farm_id, animal_id):
    """Returns the animal only if it lives on the given farm."""
    return Animal.query.filter_by(id=animal_id, farm_id=farm_id).first()


def read_animals_csv(file_obj):
    """
    Loads an animal import CSV into a DataFrame.
    Headers are matched case-insensitively and every cell is read as text, so
    tags like '007' keep their leading zeros. Missing optional columns are added empty.
    """
    df = pd.read_csv(file_obj, dtype=str, keep_default_na=False)
    df.columns = [str(c).strip().lower() for c in df.columns]
    if 'tag_number' not in df.columns:
        raise ValueError("The CSV file is missing the required 'tag_number' column.")
    for column in ANIMAL_IMPORT_COLUMNS:
        if column not in df.columns:
            df[column] = ''
    return df[ANIMAL_IMPORT_COLUMNS]


def stage_animal_rows(farm_id, df):
    """
    Adds one Animal per usable CSV row to the session (the caller commits).
    Rows without a tag, with a tag already on the farm, or with bad values are
    skipped and reported.
    """
    existing_tags = {tag for (tag,) in db.session.query(Animal.tag_number).filter_by(farm_id=farm_id)}
    results = {'imported': 0, 'skipped': 0, 'errors': [], 'animals': []}

    for index, row in df.iterrows():
        row_num = index + 2  # header is line 1
        tag = row['tag_number'].strip()
        if not tag:
            results['skipped'] += 1
            results['errors'].append(f"Row {row_num}: missing tag_number.")
            continue
        if tag in existing_tags:
            results['skipped'] += 1
            results['errors'].append(f"Row {row_num}: tag '{tag}' already exists on this farm.")
            continue

        production_status = row['production_status'].strip().lower() or None
        if production_status and production_status not in PRODUCTION_STATUSES:
            results['skipped'] += 1
            results['errors'].append(f"Row {row_num}: unknown production_status '{production_status}'.")
            continue

        try:
            animal = Animal(
                farm_id=farm_id,
                tag_number=tag,
                name=row['name'].strip() or None,
                breed=row['breed'].strip() or None,
                gender=row['gender'].strip().lower() or 'female',
                birth_date=parse_date(row['birth_date'].strip()),
                production_status=production_status,
                health_status=row['health_status'].strip().lower() or 'healthy',
                weight=parse_float(row['weight']),
                notes=row['notes'].strip() or None,
                animal_source='purchased',
            )
        except (ValueError, TypeError) as e:
            results['skipped'] += 1
            results['errors'].append(f"Row {row_num}: {e}")
            continue

        db.session.add(animal)
        existing_tags.add(tag)
        results['imported'] += 1
        results['animals'].append(animal)

    return results
