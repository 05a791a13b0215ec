import sys
import os
import argparse
import pandas as pd

# --- GPS Block ---
script_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.join(script_dir, '..')
sys.path.insert(0, project_root)

from dairytrack import create_app, db
from dairytrack.models import Farm, Animal
from dairytrack.breeding import BreedingError, create_unified_breeding_record

# Adjust these column names to EXACTLY match the headers in your CSV
CSV_COLUMN_MAP = {
    'tag_col': 'tag_number',
    'date_col': 'breeding_date',
    'method_col': 'breeding_method',
    'sire_col': 'sire_tag',
    'sire_breed_col': 'sire_breed',
    'vet_col': 'veterinarian',
    'cost_col': 'breeding_cost',
    'notes_col': 'notes',
}


def seed_breeding_database(farm, csv_path):
    print(f"Reading breeding CSV data from {csv_path}...")
    try:
        df = pd.read_csv(csv_path, dtype=str, keep_default_na=False)
        print(f"Found {len(df)} rows in CSV.")
    except FileNotFoundError:
        print(f"Error: {csv_path} not found. Aborting.")
        return

    animal_cache = {}
    staged = 0
    print("Staging breeding records...")

    for index, row in df.iterrows():
        tag = row.get(CSV_COLUMN_MAP['tag_col'], '').strip()
        if tag not in animal_cache:
            animal_cache[tag] = Animal.query.filter_by(farm_id=farm.id, tag_number=tag).first()
        animal = animal_cache[tag]
        if not animal:
            print(f"  > WARNING: Animal '{tag}' not found on {farm.name}. Skipping row {index+1}.")
            continue

        data = {
            'breeding_date': row.get(CSV_COLUMN_MAP['date_col']),
            'breeding_method': row.get(CSV_COLUMN_MAP['method_col']) or None,
            'sire_tag': row.get(CSV_COLUMN_MAP['sire_col']) or None,
            'sire_breed': row.get(CSV_COLUMN_MAP['sire_breed_col']) or None,
            'veterinarian': row.get(CSV_COLUMN_MAP['vet_col']) or None,
            'breeding_cost': row.get(CSV_COLUMN_MAP['cost_col']) or None,
            'breeding_notes': row.get(CSV_COLUMN_MAP['notes_col']) or None,
            'auto_generated': True,
        }
        try:
            create_unified_breeding_record(animal, data, user_id=None)
            staged += 1
        except BreedingError as e:
            print(f"  > ERROR processing row {index+1}: {e}")
            print("  > Skipping this row.")

    print(f"\nCommitting {staged} staged breeding records to the database...")
    db.session.commit()
    print("Breeding seeding complete!")


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Seed breeding records for a farm from a CSV file.')
    parser.add_argument('farm_name')
    parser.add_argument('csv_path')
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        farm = Farm.query.filter_by(name=args.farm_name).first()
        if not farm:
            print(f"Error: farm '{args.farm_name}' not found. Aborting.")
            sys.exit(1)
        seed_breeding_database(farm, args.csv_path)
