import sys
import os
import argparse

# --- GPS Block ---
script_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.join(script_dir, '..')
sys.path.insert(0, project_root)

from dairytrack import create_app, db
from dairytrack.models import Farm
from dairytrack.utils import read_animals_csv, stage_animal_rows


def seed_animals_database(farm, csv_path):
    print(f"Reading animal CSV data from {csv_path}...")
    try:
        with open(csv_path, mode='r', encoding='utf-8') as infile:
            df = read_animals_csv(infile)
        print(f"Found {len(df)} rows in CSV.")
    except FileNotFoundError:
        print(f"Error: {csv_path} not found. Aborting.")
        return

    results = stage_animal_rows(farm.id, df)
    for message in results['errors']:
        print(f"  > WARNING: {message}")

    print(f"\nCommitting {results['imported']} animals ({results['skipped']} skipped)...")
    db.session.commit()
    print("Animal seeding complete!")


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Seed animals for a farm from a CSV file.')
    parser.add_argument('farm_name')
    parser.add_argument('csv_path')
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        farm = Farm.query.filter_by(name=args.farm_name).first()
        if not farm:
            print(f"Error: farm '{args.farm_name}' not found. Aborting.")
            sys.exit(1)
        seed_animals_database(farm, args.csv_path)
