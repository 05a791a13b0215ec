from flask import Blueprint, request, jsonify, current_app
from datetime import datetime
from sqlalchemy.exc import IntegrityError

from . import db
from .models import Farm, UserRole, Animal, BreedingRecord, BreedingEvent, FeedMixRecipe, FeedRecommendationLog
from .auth import get_current_user, get_user_role, require_farm_member, require_farm_access, MANAGER_ROLES
from .breeding import (
    BreedingError, get_unified_breeding_history, create_unified_breeding_record,
    record_pregnancy_check, update_pregnancy_status_unified, record_calving_unified,
    stage_breeding_event, sync_events_to_records, pending_breedings, pregnant_animals,
)
from .feed import get_animal_feeding_profile, get_active_recipes, build_recommendations
from .utils import parse_date, parse_float, find_farm_animal, read_animals_csv, stage_animal_rows, PRODUCTION_STATUSES


# Create a Blueprint. 'api' is the name of the blueprint.
api = Blueprint('api', __name__)

# --- General Routes ---

@api.route('/')
def home():
    """A simple test route to confirm the API is running."""
    return "The DairyTrack Backend is running!"

# --- Farm Routes ---

@api.route('/farms', methods=['POST'])
def add_farm():
    """
    Creates a new farm and makes the caller its owner.
    Expects JSON with a 'name' field and an optional 'farm_type'.
    """
    user = get_current_user()
    if not user:
        return jsonify({'error': 'Unauthorized'}), 401

    role = get_user_role(user.id)
    if role and role.farm_id:
        return jsonify({'error': 'User already belongs to a farm.'}), 400

    data = request.get_json(silent=True)
    if not data or not str(data.get('name') or '').strip():
        return jsonify({'error': "The 'name' field is required."}), 400

    farm_name = data['name'].strip()
    if Farm.query.filter_by(name=farm_name).first():
        return jsonify({'error': f"A farm with the name '{farm_name}' already exists."}), 409

    try:
        new_farm = Farm(name=farm_name, farm_type=data.get('farm_type') or 'dairy')
        db.session.add(new_farm)
        db.session.flush()

        # Users invited before setup already hold a 'pending_setup' role row.
        if role is None:
            role = UserRole(user_id=user.id)
            db.session.add(role)
        role.farm_id = new_farm.id
        role.role_type = 'farm_owner'
        role.status = 'active'

        db.session.commit()
        current_app.logger.info('Farm %s created by user %s', new_farm.id, user.id)
        return jsonify({
            'message': 'Farm created successfully!',
            'farm': new_farm.to_dict(),
            'role': role.to_dict(),
        }), 201
    except IntegrityError:
        db.session.rollback()
        return jsonify({'error': f"A farm with the name '{farm_name}' already exists."}), 409
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception('Error creating farm')
        return jsonify({'error': f'An unexpected error occurred: {str(e)}'}), 500

@api.route('/farms/<int:farm_id>', methods=['GET'])
def get_farm(farm_id):
    """Returns a farm the caller belongs to, with a small headcount summary."""
    farm = Farm.query.get_or_404(farm_id)
    user, role, error = require_farm_access(farm_id)
    if error:
        return error

    farm_dict = farm.to_dict()
    farm_dict['animal_count'] = Animal.query.filter_by(farm_id=farm_id, status='active').count()
    farm_dict['role'] = role.role_type
    return jsonify(farm_dict)

# --- Animal Routes ---

@api.route('/animals', methods=['GET'])
def get_animals():
    """
    Lists the animals of the caller's farm.
    Accepts optional 'status' and 'production_status' query parameters.
    """
    user, role, error = require_farm_member()
    if error:
        return error

    query = Animal.query.filter_by(farm_id=role.farm_id)
    status = request.args.get('status')
    if status:
        query = query.filter(Animal.status == status)
    production_status = request.args.get('production_status')
    if production_status:
        query = query.filter(Animal.production_status == production_status)

    animals = query.order_by(Animal.tag_number).all()
    return jsonify([animal.to_dict() for animal in animals])

@api.route('/animals', methods=['POST'])
def add_animal():
    """Registers one animal on the caller's farm. 'tag_number' is required."""
    user, role, error = require_farm_member()
    if error:
        return error

    data = request.get_json(silent=True)
    if not data or not str(data.get('tag_number') or '').strip():
        return jsonify({'error': "The 'tag_number' field is required."}), 400

    tag = str(data['tag_number']).strip()
    production_status = data.get('production_status')
    if production_status and production_status not in PRODUCTION_STATUSES:
        return jsonify({'error': f"Invalid production_status '{production_status}'."}), 400
    gender = data.get('gender') or 'female'
    if gender not in ('male', 'female'):
        return jsonify({'error': "The 'gender' field must be 'male' or 'female'."}), 400

    if Animal.query.filter_by(farm_id=role.farm_id, tag_number=tag).first():
        return jsonify({'error': f"An animal with tag '{tag}' already exists on this farm."}), 409

    try:
        new_animal = Animal(
            farm_id=role.farm_id,
            tag_number=tag,
            name=data.get('name'),
            breed=data.get('breed'),
            gender=gender,
            birth_date=parse_date(data.get('birth_date')),
            weight=parse_float(data.get('weight')),
            production_status=production_status,
            health_status=data.get('health_status') or 'healthy',
            body_condition_score=parse_float(data.get('body_condition_score')),
            days_in_milk=int(data['days_in_milk']) if data.get('days_in_milk') is not None else None,
            lactation_number=int(data.get('lactation_number') or 0),
            expected_calving_date=parse_date(data.get('expected_calving_date')),
            animal_source=data.get('animal_source') or 'purchased',
            notes=data.get('notes'),
        )
    except (ValueError, TypeError):
        return jsonify({'error': 'Invalid date or number format. Dates must be YYYY-MM-DD.'}), 400

    try:
        db.session.add(new_animal)
        db.session.commit()
        return jsonify({'message': 'Animal registered successfully!', 'animal': new_animal.to_dict()}), 201
    except IntegrityError:
        db.session.rollback()
        return jsonify({'error': f"An animal with tag '{tag}' already exists on this farm."}), 409
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception('Error registering animal')
        return jsonify({'error': f'An unexpected error occurred: {str(e)}'}), 500

@api.route('/animals/<int:animal_id>', methods=['GET'])
def get_animal(animal_id):
    """Returns one animal of the caller's farm."""
    user, role, error = require_farm_member()
    if error:
        return error

    animal = find_farm_animal(role.farm_id, animal_id)
    if not animal:
        return jsonify({'error': 'Animal not found or access denied'}), 404
    return jsonify(animal.to_dict())

@api.route('/animals/import', methods=['POST'])
def import_animals():
    """
    Imports animals from an uploaded CSV file ('import_file' form field).
    All accepted rows are committed together; rejected rows are reported.
    """
    user, role, error = require_farm_member(('farm_owner', 'farm_manager', 'worker'))
    if error:
        return error

    if 'import_file' not in request.files:
        return jsonify({'error': 'No file part in the request.'}), 400
    file = request.files['import_file']
    if file.filename == '':
        return jsonify({'error': 'No file selected.'}), 400
    if not file.filename.lower().endswith('.csv'):
        return jsonify({'error': 'Invalid file type. Please upload a .csv file.'}), 400

    try:
        df = read_animals_csv(file.stream)
    except Exception as e:
        return jsonify({'error': f'Failed to parse CSV file: {str(e)}'}), 400

    try:
        results = stage_animal_rows(role.farm_id, df)
        db.session.commit()
        current_app.logger.info('Imported %s animals into farm %s (%s skipped)',
                                results['imported'], role.farm_id, results['skipped'])
        return jsonify({
            'success': True,
            'imported': results['imported'],
            'skipped': results['skipped'],
            'errors': results['errors'],
            'animals': [animal.to_dict() for animal in results['animals']],
        }), 201 if results['imported'] else 200
    except IntegrityError as e:
        db.session.rollback()
        return jsonify({'error': f'Database integrity error. Import cancelled. Error: {str(e)}'}), 409
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception('Error importing animals')
        return jsonify({'error': f'An unexpected error occurred: {str(e)}'}), 500

# --- Breeding Record Routes ---

@api.route('/animals/<int:animal_id>/breeding-records', methods=['GET'])
def get_breeding_records(animal_id):
    """
    Returns the merged breeding timeline of one animal.
    Pass include_events=false to leave the raw event lists out.
    """
    user, role, error = require_farm_member()
    if error:
        return error

    if not find_farm_animal(role.farm_id, animal_id):
        return jsonify({'error': 'Animal not found or access denied'}), 404

    include_events = request.args.get('include_events', 'true').lower() not in ('false', '0', 'no')
    try:
        current_app.logger.info('Fetching unified breeding history for animal %s', animal_id)
        history = get_unified_breeding_history(animal_id, include_events)
        return jsonify(dict(success=True, **history))
    except Exception as e:
        current_app.logger.exception('Error fetching breeding history')
        return jsonify({'success': False, 'error': str(e)}), 500

@api.route('/animals/<int:animal_id>/breeding-records', methods=['POST'])
def add_breeding_record(animal_id):
    """
    Records a service for an animal. The breeding record, its pregnancy record,
    the insemination event and the animal's move to 'served' are committed
    together or not at all.
    """
    user, role, error = require_farm_member()
    if error:
        return error

    animal = db.session.get(Animal, animal_id)
    if not animal:
        return jsonify({'error': 'Animal not found or access denied'}), 404
    if animal.farm_id != role.farm_id:
        return jsonify({'error': 'Animal does not belong to your farm'}), 400

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON.'}), 400

    try:
        current_app.logger.info('Creating unified breeding record for animal %s', animal_id)
        record = create_unified_breeding_record(
            animal, data, user.id, current_app.config['DEFAULT_GESTATION_DAYS'])
        db.session.commit()
        return jsonify({
            'success': True,
            'breedingRecord': record.to_dict(),
            'message': 'Breeding record created successfully',
        }), 201
    except BreedingError as e:
        db.session.rollback()
        return jsonify({'success': False, 'error': str(e)}), 400
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception('Error creating breeding record')
        return jsonify({'success': False, 'error': str(e)}), 500

@api.route('/breeding-records/<int:record_id>/pregnancy-checks', methods=['POST'])
def add_pregnancy_check(record_id):
    """Applies a pregnancy check result to one breeding record."""
    user, role, error = require_farm_member()
    if error:
        return error

    record = BreedingRecord.query.filter_by(id=record_id, farm_id=role.farm_id).first()
    if not record:
        return jsonify({'error': 'Breeding record not found or access denied'}), 404

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON.'}), 400

    try:
        pregnancy = record_pregnancy_check(record, data, user.id)
        db.session.commit()
        return jsonify({
            'success': True,
            'pregnancyRecord': pregnancy.to_dict(),
            'checkResult': data.get('result'),
        }), 201
    except BreedingError as e:
        db.session.rollback()
        return jsonify({'success': False, 'error': str(e)}), 400
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception('Error creating pregnancy check')
        return jsonify({'success': False, 'error': str(e)}), 500

@api.route('/breeding-records/<int:record_id>/calving', methods=['POST'])
def add_calving(record_id):
    """Records the calving that closes a breeding, optionally registering the calf."""
    user, role, error = require_farm_member()
    if error:
        return error

    record = BreedingRecord.query.filter_by(id=record_id, farm_id=role.farm_id).first()
    if not record:
        return jsonify({'error': 'Breeding record not found or access denied'}), 404

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON.'}), 400

    try:
        calf = record_calving_unified(record, data, user.id)
        db.session.commit()
        return jsonify({
            'success': True,
            'pregnancyRecord': record.pregnancy.to_dict(),
            'calf': calf.to_dict() if calf else None,
            'message': 'Calving recorded successfully',
        }), 201
    except BreedingError as e:
        db.session.rollback()
        return jsonify({'success': False, 'error': str(e)}), 400
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception('Error recording calving')
        return jsonify({'success': False, 'error': str(e)}), 500

# --- Breeding Event Routes ---

@api.route('/breeding-events', methods=['GET'])
def get_breeding_events():
    """
    Lists breeding events. With 'animal_id' returns that animal's full log,
    otherwise the farm's most recent events ('limit', default 10).
    An optional 'event_type' narrows either list.
    """
    user, role, error = require_farm_member()
    if error:
        return error

    try:
        limit = int(request.args.get('limit', 10))
        animal_id = request.args.get('animal_id', type=int)
    except ValueError:
        return jsonify({'error': "The 'limit' parameter must be an integer."}), 400

    query = BreedingEvent.query.filter_by(farm_id=role.farm_id)
    event_type = request.args.get('event_type')
    if event_type:
        query = query.filter(BreedingEvent.event_type == event_type)
    query = query.order_by(BreedingEvent.event_date.desc(), BreedingEvent.id.desc())

    if animal_id:
        if not find_farm_animal(role.farm_id, animal_id):
            return jsonify({'error': 'Animal not found or access denied'}), 404
        events = query.filter(BreedingEvent.animal_id == animal_id).all()
    else:
        events = query.limit(limit).all()

    return jsonify({'success': True, 'events': [event.to_dict() for event in events]})

@api.route('/breeding-events', methods=['POST'])
def add_breeding_event():
    """
    Appends a breeding event. Expects {'eventData': {...}, 'createCalf': bool};
    eventData.farm_id must be the caller's farm.
    """
    user, role, error = require_farm_member()
    if error:
        return error

    body = request.get_json(silent=True) or {}
    event_data = body.get('eventData')
    if not isinstance(event_data, dict):
        return jsonify({'error': "The 'eventData' object is required."}), 400

    if event_data.get('farm_id') != role.farm_id:
        current_app.logger.warning('Farm ID mismatch: event farm %s, user farm %s',
                                   event_data.get('farm_id'), role.farm_id)
        return jsonify({'error': 'Forbidden'}), 403

    animal = find_farm_animal(role.farm_id, event_data.get('animal_id'))
    if not animal:
        return jsonify({'error': 'Animal not found or access denied'}), 404

    try:
        event, calf = stage_breeding_event(animal, event_data, user.id, bool(body.get('createCalf')))
        db.session.commit()
        return jsonify({
            'success': True,
            'event': event.to_dict(),
            'calf': calf.to_dict() if calf else None,
            'message': 'Breeding event recorded successfully',
        }), 201
    except BreedingError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception('Breeding events API error')
        return jsonify({'error': f'An unexpected error occurred: {str(e)}'}), 500

# --- Breeding Dashboard Routes ---

@api.route('/breeding/pending', methods=['GET'])
def get_pending_breedings():
    """Breedings of the last 90 days that still await a pregnancy outcome."""
    user, role, error = require_farm_member()
    if error:
        return error

    breedings = pending_breedings(role.farm_id, current_app.config['PENDING_BREEDING_WINDOW_DAYS'])
    return jsonify({'success': True, 'breedings': breedings})

@api.route('/breeding/pregnant', methods=['GET'])
def get_pregnant_animals():
    """Confirmed, uncalved pregnancies with days pregnant and due-date status."""
    user, role, error = require_farm_member()
    if error:
        return error

    animals = pregnant_animals(role.farm_id, current_app.config['DUE_SOON_DAYS'])
    return jsonify({'success': True, 'pregnantAnimals': animals})

@api.route('/breeding/pregnancy-status', methods=['POST'])
def update_pregnancy_status():
    """
    Sets a definite pregnancy status on a breeding record.
    Only farm owners and managers may do this.
    """
    user, role, error = require_farm_member(MANAGER_ROLES)
    if error:
        return error

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON.'}), 400
    if data.get('farm_id') != role.farm_id:
        return jsonify({'error': 'Forbidden'}), 403

    record = BreedingRecord.query.filter_by(id=data.get('breeding_record_id'), farm_id=role.farm_id).first()
    if not record:
        return jsonify({'error': 'Breeding record not found or does not belong to farm'}), 400

    try:
        pregnancy = update_pregnancy_status_unified(record, data.get('animal_id'), data, user.id)
        db.session.commit()
        return jsonify({
            'success': True,
            'pregnancy': pregnancy.to_dict(),
            'message': 'Pregnancy status updated successfully',
        })
    except BreedingError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception('Pregnancy status API error')
        return jsonify({'error': f'An unexpected error occurred: {str(e)}'}), 500

@api.route('/breeding/sync', methods=['POST'])
def sync_breeding_records():
    """Creates missing breeding records for logged insemination events."""
    user, role, error = require_farm_member(MANAGER_ROLES)
    if error:
        return error

    try:
        synced, errors = sync_events_to_records(role.farm_id, current_app.config['DEFAULT_GESTATION_DAYS'])
        db.session.commit()
        current_app.logger.info('Synced %s breeding records for farm %s', synced, role.farm_id)
        return jsonify({'success': True, 'synced': synced, 'errors': errors})
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception('Error syncing breeding records')
        return jsonify({'success': False, 'synced': 0, 'errors': [str(e)]}), 500

# --- Feed Routes ---

@api.route('/farms/<int:farm_id>/feed-recipes', methods=['GET'])
def get_feed_recipes(farm_id):
    """Lists the farm's active feed mix recipes."""
    Farm.query.get_or_404(farm_id)
    user, role, error = require_farm_access(farm_id)
    if error:
        return error
    return jsonify({'success': True, 'recipes': get_active_recipes(farm_id)})

@api.route('/farms/<int:farm_id>/feed-recipes', methods=['POST'])
def add_feed_recipe(farm_id):
    """
    Creates a feed mix recipe. Expects 'name' and 'ingredients' (each with a
    'percentage_of_mix'), plus optional 'target_nutrition',
    'applicable_conditions' and 'estimated_cost_per_day'.
    """
    Farm.query.get_or_404(farm_id)
    user, role, error = require_farm_access(farm_id, MANAGER_ROLES)
    if error:
        return error

    data = request.get_json(silent=True)
    if not data or not str(data.get('name') or '').strip():
        return jsonify({'error': "The 'name' field is required."}), 400

    ingredients = data.get('ingredients') or []
    if not isinstance(ingredients, list) or not all(isinstance(i, dict) for i in ingredients):
        return jsonify({'error': "The 'ingredients' field must be a list of objects."}), 400
    conditions = data.get('applicable_conditions') or {}
    nutrition = data.get('target_nutrition') or {}
    if not isinstance(conditions, dict) or not isinstance(nutrition, dict):
        return jsonify({'error': "'applicable_conditions' and 'target_nutrition' must be objects."}), 400

    try:
        recipe = FeedMixRecipe(
            farm_id=farm_id,
            name=data['name'].strip(),
            description=data.get('description'),
            active=bool(data.get('active', True)),
            ingredients=ingredients,
            target_nutrition=nutrition,
            applicable_conditions=conditions,
            estimated_cost_per_day=parse_float(data.get('estimated_cost_per_day')),
        )
        db.session.add(recipe)
        db.session.commit()
        return jsonify({'success': True, 'recipe': recipe.to_dict()}), 201
    except (ValueError, TypeError):
        db.session.rollback()
        return jsonify({'error': "Invalid 'estimated_cost_per_day'."}), 400
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception('Error creating feed recipe')
        return jsonify({'error': f'An unexpected error occurred: {str(e)}'}), 500

@api.route('/farms/<int:farm_id>/feed-recommendations', methods=['GET'])
def get_feed_recommendations(farm_id):
    """Scores the farm's recipes for one animal ('animalId' query parameter)."""
    Farm.query.get_or_404(farm_id)
    user, role, error = require_farm_access(farm_id)
    if error:
        return error

    animal_id = request.args.get('animalId', type=int)
    if not animal_id:
        return jsonify({'error': 'animalId parameter required'}), 400

    animal = find_farm_animal(farm_id, animal_id)
    if not animal:
        return jsonify({'error': 'Animal not found'}), 404

    try:
        profile = get_animal_feeding_profile(animal)
        recommendations = build_recommendations(
            get_active_recipes(farm_id), profile, current_app.config['MAX_FEED_RECOMMENDATIONS'])
        return jsonify({'success': True, 'recommendations': recommendations, 'animalProfile': profile})
    except Exception as e:
        current_app.logger.exception('Error fetching recommendations')
        return jsonify({'error': str(e)}), 500

@api.route('/farms/<int:farm_id>/feed-recommendations/<rec_id>', methods=['PATCH'])
def update_feed_recommendation(farm_id, rec_id):
    """Updates a recommendation's status; acceptances are logged."""
    Farm.query.get_or_404(farm_id)
    user, role, error = require_farm_access(farm_id)
    if error:
        return error

    data = request.get_json(silent=True)
    if not data or data.get('status') not in ('accepted', 'rejected', 'pending'):
        return jsonify({'error': "The 'status' field must be one of: accepted, rejected, pending."}), 400

    if data['status'] != 'accepted':
        return jsonify({'success': True, 'message': 'Recommendation updated'})

    animal_id = data.get('animal_id')
    if animal_id is not None and not find_farm_animal(farm_id, animal_id):
        return jsonify({'error': 'Animal not found'}), 404

    try:
        log = FeedRecommendationLog(
            farm_id=farm_id,
            recommendation_id=rec_id,
            animal_id=animal_id,
            status='accepted',
            accepted_at=datetime.utcnow(),
        )
        db.session.add(log)
        db.session.commit()
        return jsonify({'success': True, 'message': 'Recommendation updated', 'log': log.to_dict()})
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception('Error updating recommendation')
        return jsonify({'error': f'An unexpected error occurred: {str(e)}'}), 500
