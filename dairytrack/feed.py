"""
Feed recommendations: a fixed rule table that matches an animal's feeding
profile against the farm's active feed mix recipes and scores each match.
"""
from datetime import date, datetime

from .models import BreedingEvent, FeedMixRecipe

BASE_CONFIDENCE = 50
MAX_CONFIDENCE = 95

EARLY_LACTATION_END_DAY = 60
PEAK_LACTATION_END_DAY = 150

DEFAULT_DAILY_INTAKE_KG = 20
DRY_COW_DAILY_INTAKE_KG = 12
DEFAULT_MILK_TARGET_L = 20


def get_lactation_stage(days_in_milk):
    if days_in_milk <= EARLY_LACTATION_END_DAY:
        return 'early'
    if days_in_milk <= PEAK_LACTATION_END_DAY:
        return 'peak'
    return 'late'


def get_pregnancy_stage(pregnancy_weeks):
    if pregnancy_weeks < 24:
        return 'early'
    if pregnancy_weeks < 35:
        return 'mid'
    if pregnancy_weeks < 40:
        return 'late'
    return 'close_up'


def determine_breeding_status(production_status):
    return 'served' if production_status == 'served' else 'open'


def get_animal_feeding_profile(animal, today=None):
    """
    Builds the feeding profile the recommendation rules work on.
    Pregnancy weeks are only estimated for served animals with an expected
    calving date, counting from the animal's latest breeding event.
    """
    today = today or date.today()

    pregnancy_weeks = None
    pregnancy_stage = None
    if animal.production_status == 'served' and animal.expected_calving_date:
        last_event = BreedingEvent.query.filter_by(animal_id=animal.id) \
            .order_by(BreedingEvent.event_date.desc(), BreedingEvent.id.desc()).first()
        service_date = last_event.event_date if last_event else today
        pregnancy_weeks = max((today - service_date).days, 0) // 7
        pregnancy_stage = get_pregnancy_stage(pregnancy_weeks)

    age_days = (today - animal.birth_date).days if animal.birth_date else 0

    return {
        'animal_id': animal.id,
        'farm_id': animal.farm_id,
        'production_status': animal.production_status or 'unknown',
        'lactation_number': animal.lactation_number or 0,
        'days_in_milk': animal.days_in_milk or 0,
        'breeding_status': determine_breeding_status(animal.production_status),
        'pregnancy_stage': pregnancy_stage,
        'pregnancy_weeks': pregnancy_weeks,
        'age_days': age_days,
        'current_weight_kg': animal.weight or 0,
        'target_weight_kg': 550,
        'body_condition_score': animal.body_condition_score or 3,
        'health_status': animal.health_status or 'healthy',
        'daily_milk_production_target': DEFAULT_MILK_TARGET_L,
    }


def _outside(value, bounds):
    low, high = bounds
    return value < low or value > high


def is_recipe_applicable(recipe, profile):
    """A recipe applies only if every condition it declares is met."""
    cond = recipe.get('applicable_conditions') or {}

    if cond.get('production_statuses') and profile['production_status'] not in cond['production_statuses']:
        return False

    if cond.get('lactation_stage') and profile['production_status'] == 'lactating':
        if get_lactation_stage(profile['days_in_milk']) != cond['lactation_stage']:
            return False

    if cond.get('days_in_milk_range') and _outside(profile['days_in_milk'], cond['days_in_milk_range']):
        return False

    if cond.get('breeding_statuses') and profile['breeding_status'] not in cond['breeding_statuses']:
        return False

    if cond.get('pregnancy_stage') and profile.get('pregnancy_stage'):
        if profile['pregnancy_stage'] != cond['pregnancy_stage']:
            return False

    if cond.get('pregnancy_weeks_range') and profile.get('pregnancy_weeks') is not None:
        if _outside(profile['pregnancy_weeks'], cond['pregnancy_weeks_range']):
            return False

    if cond.get('min_age_days') and profile['age_days'] < cond['min_age_days']:
        return False
    if cond.get('max_age_days') and profile['age_days'] > cond['max_age_days']:
        return False

    if cond.get('health_statuses') and profile['health_status'] not in cond['health_statuses']:
        return False

    if cond.get('body_condition_below') and profile['body_condition_score'] >= cond['body_condition_below']:
        return False
    if cond.get('body_condition_above') and profile['body_condition_score'] <= cond['body_condition_above']:
        return False

    return True


def calculate_confidence(recipe, profile):
    """Sums the fixed match bonuses on top of the base score, capped at 95."""
    confidence = BASE_CONFIDENCE
    cond = recipe.get('applicable_conditions') or {}

    if profile['production_status'] in (cond.get('production_statuses') or []):
        confidence += 15

    if cond.get('lactation_stage') and cond['lactation_stage'] == get_lactation_stage(profile['days_in_milk']):
        confidence += 15

    if profile.get('pregnancy_weeks') is not None:
        if cond.get('pregnancy_stage') == get_pregnancy_stage(profile['pregnancy_weeks']):
            confidence += 10

    if profile['health_status'] in (cond.get('health_statuses') or []):
        confidence += 10

    # Partial match
    if profile['breeding_status'] in (cond.get('breeding_statuses') or []):
        confidence += 5

    return min(MAX_CONFIDENCE, confidence)


def get_trigger_reason(profile):
    status = profile['production_status']
    dim = profile['days_in_milk']
    weeks = profile.get('pregnancy_weeks')

    if status == 'lactating' and dim == 1:
        return 'Fresh cow - Just calved'
    if status == 'lactating' and dim <= EARLY_LACTATION_END_DAY:
        return f'Early lactation (day {dim})'
    if status == 'lactating' and dim <= PEAK_LACTATION_END_DAY:
        return f'Peak lactation (day {dim})'
    if status == 'served' and weeks and weeks < 24:
        return f'Early pregnancy (week {weeks})'
    if status == 'served' and weeks and weeks >= 35:
        return f'Close-up period (week {weeks})'
    if profile['health_status'] == 'sick':
        return 'Health issue - Therapeutic adjustment'
    return 'Regular feeding optimization'


def get_expected_benefits(recipe, profile):
    benefits = []
    nutrition = recipe.get('target_nutrition') or {}

    if profile['production_status'] == 'lactating':
        if (nutrition.get('crude_protein_percent') or 0) >= 16:
            benefits.append('High protein supports milk production')
        if (nutrition.get('energy_mcal_per_kg') or 0) >= 10:
            benefits.append('High energy supports lactation performance')

    if profile['production_status'] == 'served':
        benefits.append('Supports pregnancy development')
        benefits.append('Prepares for next lactation')

    cost = recipe.get('estimated_cost_per_day')
    if cost is not None and cost < 15:
        benefits.append('Cost-efficient nutrition')

    return benefits or ['Optimized nutrition plan']


def get_potential_risks(recipe, profile):
    risks = []
    nutrition = recipe.get('target_nutrition') or {}
    cost = recipe.get('estimated_cost_per_day') or 0

    if profile['production_status'] == 'lactating' and profile['days_in_milk'] <= 10:
        dry_matter = nutrition.get('dry_matter_percent')
        if dry_matter is not None and dry_matter < 35:
            risks.append('May cause SARA in fresh cows')

    if profile['body_condition_score'] < 2.5 and cost > 20:
        risks.append('High cost for thin animal recovery')

    return risks


def calculate_quantity(ingredient, profile):
    """kg/day of one ingredient, from its share of the mix and the estimated intake."""
    intake = DEFAULT_DAILY_INTAKE_KG
    if profile['production_status'] == 'lactating':
        intake = 18 + profile['daily_milk_production_target'] * 0.3
    elif profile['production_status'] == 'dry':
        intake = DRY_COW_DAILY_INTAKE_KG
    return round(intake * (ingredient.get('percentage_of_mix') or 0) / 100, 2)


def build_recommendations(recipes, profile, limit=5, now=None):
    """Scores every applicable recipe and returns the best `limit`, highest first."""
    now = now or datetime.utcnow()
    stamp = int(now.timestamp() * 1000)

    recommendations = []
    for recipe in recipes:
        if not is_recipe_applicable(recipe, profile):
            continue
        recommendations.append({
            'id': f"rec-{recipe['id']}-{stamp}",
            'animal_id': profile['animal_id'],
            'farm_id': profile['farm_id'],
            'recipe_id': recipe['id'],
            'recipe_name': recipe['name'],
            'trigger_reason': get_trigger_reason(profile),
            'confidence_score': calculate_confidence(recipe, profile),
            'suggested_feeds': [
                {
                    'feed_type_id': ing.get('feed_type_id'),
                    'feed_name': ing.get('feed_name'),
                    'quantity_kg_per_day': calculate_quantity(ing, profile),
                    'notes': ing.get('notes'),
                }
                for ing in recipe.get('ingredients') or []
            ],
            'expected_benefits': get_expected_benefits(recipe, profile),
            'potential_risks': get_potential_risks(recipe, profile),
            'alternative_recipes': [],
            'status': 'pending',
            'created_at': now.isoformat(),
        })

    # sorted() is stable, so equal scores keep recipe order
    recommendations = sorted(recommendations, key=lambda r: r['confidence_score'], reverse=True)
    return recommendations[:limit]


def get_active_recipes(farm_id):
    """The farm's active recipes as plain dictionaries."""
    recipes = FeedMixRecipe.query.filter_by(farm_id=farm_id, active=True).order_by(FeedMixRecipe.id).all()
    return [recipe.to_dict() for recipe in recipes]
