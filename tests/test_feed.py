from datetime import date, datetime

import pytest

from conftest import auth
from dairytrack import db
from dairytrack.models import Animal, BreedingEvent, FeedRecommendationLog
from dairytrack.feed import (
    get_lactation_stage, get_pregnancy_stage, get_animal_feeding_profile, is_recipe_applicable,
    calculate_confidence, calculate_quantity, get_trigger_reason, get_potential_risks,
    build_recommendations,
)


def make_profile(**overrides):
    profile = {
        'animal_id': 1,
        'farm_id': 1,
        'production_status': 'lactating',
        'lactation_number': 2,
        'days_in_milk': 45,
        'breeding_status': 'open',
        'pregnancy_stage': None,
        'pregnancy_weeks': None,
        'age_days': 1400,
        'current_weight_kg': 600,
        'target_weight_kg': 550,
        'body_condition_score': 3,
        'health_status': 'healthy',
        'daily_milk_production_target': 20,
    }
    profile.update(overrides)
    return profile


def make_recipe(recipe_id, conditions=None, **overrides):
    recipe = {
        'id': recipe_id,
        'name': f'Recipe {recipe_id}',
        'ingredients': [{'feed_type_id': 'maize-silage', 'feed_name': 'Maize silage', 'percentage_of_mix': 40}],
        'target_nutrition': {},
        'applicable_conditions': conditions or {},
        'estimated_cost_per_day': None,
    }
    recipe.update(overrides)
    return recipe


@pytest.mark.parametrize('days, stage', [(0, 'early'), (60, 'early'), (61, 'peak'), (150, 'peak'), (151, 'late')])
def test_lactation_stage_boundaries(days, stage):
    assert get_lactation_stage(days) == stage


@pytest.mark.parametrize('weeks, stage', [(0, 'early'), (23, 'early'), (24, 'mid'), (34, 'mid'),
                                          (35, 'late'), (39, 'late'), (40, 'close_up')])
def test_pregnancy_stage_boundaries(weeks, stage):
    assert get_pregnancy_stage(weeks) == stage


def test_recipe_without_conditions_applies_at_base_score():
    recipe = make_recipe(1)
    profile = make_profile()
    assert is_recipe_applicable(recipe, profile)
    assert calculate_confidence(recipe, profile) == 50


def test_all_matching_conditions_score():
    recipe = make_recipe(1, {
        'production_statuses': ['lactating'],
        'lactation_stage': 'early',
        'health_statuses': ['healthy'],
        'breeding_statuses': ['open'],
    })
    assert calculate_confidence(recipe, make_profile()) == 95


def test_confidence_is_capped():
    recipe = make_recipe(1, {
        'production_statuses': ['served'],
        'lactation_stage': 'early',
        'pregnancy_stage': 'early',
        'health_statuses': ['healthy'],
        'breeding_statuses': ['served'],
    })
    profile = make_profile(production_status='served', breeding_status='served', days_in_milk=0,
                           pregnancy_weeks=10, pregnancy_stage='early')
    assert is_recipe_applicable(recipe, profile)
    assert calculate_confidence(recipe, profile) == 95


def test_inapplicable_recipes_are_dropped():
    profile = make_profile()
    assert not is_recipe_applicable(make_recipe(1, {'production_statuses': ['dry']}), profile)
    assert not is_recipe_applicable(make_recipe(2, {'lactation_stage': 'late'}), profile)
    assert not is_recipe_applicable(make_recipe(3, {'days_in_milk_range': [60, 120]}), profile)
    assert not is_recipe_applicable(make_recipe(4, {'health_statuses': ['sick']}), profile)
    assert not is_recipe_applicable(make_recipe(5, {'body_condition_below': 2.5}), profile)
    assert not is_recipe_applicable(make_recipe(6, {'min_age_days': 2000}), profile)
    assert is_recipe_applicable(make_recipe(7, {'days_in_milk_range': [30, 60]}), profile)


def test_pregnancy_conditions_ignored_without_pregnancy_data():
    recipe = make_recipe(1, {'pregnancy_stage': 'late', 'pregnancy_weeks_range': [35, 40]})
    assert is_recipe_applicable(recipe, make_profile())
    assert not is_recipe_applicable(recipe, make_profile(pregnancy_stage='early', pregnancy_weeks=10))


def test_quantity_follows_intake_estimate():
    ingredient = {'percentage_of_mix': 40}
    assert calculate_quantity(ingredient, make_profile()) == 9.6
    assert calculate_quantity(ingredient, make_profile(production_status='dry')) == 4.8
    assert calculate_quantity(ingredient, make_profile(production_status='heifer')) == 8.0


def test_trigger_reasons():
    assert get_trigger_reason(make_profile(days_in_milk=1)) == 'Fresh cow - Just calved'
    assert get_trigger_reason(make_profile()) == 'Early lactation (day 45)'
    assert get_trigger_reason(make_profile(days_in_milk=100)) == 'Peak lactation (day 100)'
    assert get_trigger_reason(make_profile(production_status='served', pregnancy_weeks=36)) == \
        'Close-up period (week 36)'
    assert get_trigger_reason(make_profile(production_status='dry', health_status='sick')) == \
        'Health issue - Therapeutic adjustment'


def test_fresh_cow_low_dry_matter_risk():
    recipe = make_recipe(1, target_nutrition={'dry_matter_percent': 30})
    assert get_potential_risks(recipe, make_profile(days_in_milk=5)) == ['May cause SARA in fresh cows']
    assert get_potential_risks(recipe, make_profile(days_in_milk=45)) == []


def test_recommendations_sorted_and_truncated():
    recipes = [make_recipe(i) for i in range(1, 7)]
    recipes.append(make_recipe(7, {'production_statuses': ['lactating']}))
    recipes.append(make_recipe(8, {'production_statuses': ['dry']}))

    recs = build_recommendations(recipes, make_profile(), limit=5, now=datetime(2025, 6, 1))
    assert len(recs) == 5
    assert recs[0]['recipe_id'] == 7
    assert recs[0]['confidence_score'] == 65
    # ties keep recipe order
    assert [r['recipe_id'] for r in recs[1:]] == [1, 2, 3, 4]
    assert recs[0]['suggested_feeds'][0]['quantity_kg_per_day'] == 9.6
    assert recs[0]['status'] == 'pending'
    assert recs[0]['id'].startswith('rec-7-')


def test_profile_of_served_animal(app, seed):
    with app.app_context():
        cow = db.session.get(Animal, seed['cow_id'])
        cow.production_status = 'served'
        cow.expected_calving_date = date(2025, 10, 17)
        db.session.add(BreedingEvent(farm_id=cow.farm_id, animal_id=cow.id, event_type='insemination',
                                     event_date=date(2025, 1, 10), insemination_method='artificial_insemination'))
        db.session.commit()

        profile = get_animal_feeding_profile(cow, today=date(2025, 3, 14))
        assert profile['pregnancy_weeks'] == 9
        assert profile['pregnancy_stage'] == 'early'
        assert profile['breeding_status'] == 'served'


def test_profile_after_recorded_breeding(app, client, seed):
    r = client.post(f"/api/animals/{seed['cow_id']}/breeding-records",
                    json={'breeding_date': '2025-01-10'}, headers=auth('owner-token'))
    assert r.status_code == 201

    with app.app_context():
        cow = db.session.get(Animal, seed['cow_id'])
        profile = get_animal_feeding_profile(cow, today=date(2025, 3, 14))
        assert profile['breeding_status'] == 'served'
        assert profile['pregnancy_weeks'] == 9
        assert profile['pregnancy_stage'] == 'early'


def test_profile_of_lactating_animal_has_no_pregnancy(app, seed):
    with app.app_context():
        cow = db.session.get(Animal, seed['cow_id'])
        profile = get_animal_feeding_profile(cow, today=date(2025, 3, 1))
        assert profile['pregnancy_weeks'] is None
        assert profile['days_in_milk'] == 45
        assert profile['body_condition_score'] == 3
        assert profile['age_days'] == (date(2025, 3, 1) - date(2021, 3, 1)).days


def create_recipe(client, farm_id, token='owner-token', **body):
    payload = {
        'name': 'Early lactation TMR',
        'ingredients': [{'feed_type_id': 'maize-silage', 'feed_name': 'Maize silage', 'percentage_of_mix': 50}],
        'target_nutrition': {'crude_protein_percent': 17},
        'applicable_conditions': {'production_statuses': ['lactating'], 'lactation_stage': 'early'},
        'estimated_cost_per_day': 12,
    }
    payload.update(body)
    return client.post(f'/api/farms/{farm_id}/feed-recipes', json=payload, headers=auth(token))


def test_recipe_creation_requires_manager(client, seed):
    assert create_recipe(client, seed['farm_id'], token='worker-token').status_code == 403
    assert create_recipe(client, seed['farm_id']).status_code == 201

    recipes = client.get(f"/api/farms/{seed['farm_id']}/feed-recipes",
                         headers=auth('worker-token')).get_json()['recipes']
    assert [r['name'] for r in recipes] == ['Early lactation TMR']


def test_feed_recommendations_endpoint(client, seed):
    create_recipe(client, seed['farm_id'])
    create_recipe(client, seed['farm_id'], name='Dry cow mix',
                  applicable_conditions={'production_statuses': ['dry']})

    r = client.get(f"/api/farms/{seed['farm_id']}/feed-recommendations?animalId={seed['cow_id']}",
                   headers=auth('owner-token'))
    assert r.status_code == 200
    data = r.get_json()
    assert data['animalProfile']['production_status'] == 'lactating'
    assert len(data['recommendations']) == 1

    rec = data['recommendations'][0]
    assert rec['recipe_name'] == 'Early lactation TMR'
    assert rec['confidence_score'] == 80
    assert rec['trigger_reason'] == 'Early lactation (day 45)'
    assert rec['suggested_feeds'][0]['quantity_kg_per_day'] == 12.0
    assert 'High protein supports milk production' in rec['expected_benefits']
    assert 'Cost-efficient nutrition' in rec['expected_benefits']


def test_feed_recommendations_access(client, seed):
    url = f"/api/farms/{seed['farm_id']}/feed-recommendations"
    assert client.get(url, headers=auth('owner-token')).status_code == 400
    assert client.get(f"{url}?animalId={seed['cow_id']}", headers=auth('outsider-token')).status_code == 403
    assert client.get(f"{url}?animalId={seed['foreign_cow_id']}", headers=auth('owner-token')).status_code == 404
    assert client.get(f"{url}?animalId={seed['cow_id']}").status_code == 401
    assert client.get(f"/api/farms/9999/feed-recommendations?animalId={seed['cow_id']}",
                      headers=auth('owner-token')).status_code == 404


def test_accepting_a_recommendation_is_logged(app, client, seed):
    url = f"/api/farms/{seed['farm_id']}/feed-recommendations/rec-1-1700000000000"
    assert client.patch(url, json={'status': 'maybe'}, headers=auth('owner-token')).status_code == 400
    assert client.patch(url, json={'status': 'rejected'}, headers=auth('owner-token')).status_code == 200

    r = client.patch(url, json={'status': 'accepted', 'animal_id': seed['cow_id']}, headers=auth('worker-token'))
    assert r.status_code == 200

    with app.app_context():
        logs = FeedRecommendationLog.query.all()
        assert len(logs) == 1
        assert logs[0].recommendation_id == 'rec-1-1700000000000'
        assert logs[0].status == 'accepted'


def test_accepting_for_another_farms_animal_is_refused(app, client, seed):
    url = f"/api/farms/{seed['farm_id']}/feed-recommendations/rec-1-1700000000000"
    r = client.patch(url, json={'status': 'accepted', 'animal_id': seed['foreign_cow_id']},
                     headers=auth('owner-token'))
    assert r.status_code == 404

    with app.app_context():
        assert FeedRecommendationLog.query.count() == 0
