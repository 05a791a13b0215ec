from datetime import datetime

from . import db


def _iso(value):
    """Returns an ISO string for a date/datetime, or None."""
    return value.isoformat() if value else None


class Farm(db.Model):
    """A single farm (tenant). Every other row is scoped to one of these."""
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    farm_type = db.Column(db.String(50), nullable=False, default='dairy')
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    # --- Relationships ---
    animals = db.relationship('Animal', backref='farm', lazy=True, cascade="all, delete-orphan")
    roles = db.relationship('UserRole', backref='farm', lazy=True)
    recipes = db.relationship('FeedMixRecipe', backref='farm', lazy=True, cascade="all, delete-orphan")

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'farm_type': self.farm_type,
            'created_at': _iso(self.created_at),
        }

    def __repr__(self):
        return f'<Farm {self.name}>'


class User(db.Model):
    """An authenticated account. Requests identify it by its bearer token."""
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    api_token = db.Column(db.String(128), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    role = db.relationship('UserRole', backref='user', lazy=True, uselist=False, cascade="all, delete-orphan")

    def to_dict(self):
        return {'id': self.id, 'email': self.email}

    def __repr__(self):
        return f'<User {self.email}>'


class UserRole(db.Model):
    """
    Links a user to the farm they work on and what they may do there.
    A user holds at most one role; farm_id stays empty until setup is finished.
    """
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), unique=True, nullable=False)
    farm_id = db.Column(db.Integer, db.ForeignKey('farm.id'), nullable=True)
    role_type = db.Column(db.String(30), nullable=False, default='worker')
    status = db.Column(db.String(30), nullable=False, default='active')

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'farm_id': self.farm_id,
            'role_type': self.role_type,
            'status': self.status,
        }

    def __repr__(self):
        return f'<UserRole {self.role_type} user={self.user_id} farm={self.farm_id}>'


class Animal(db.Model):
    """A registered animal and its current lifecycle state."""
    id = db.Column(db.Integer, primary_key=True)
    tag_number = db.Column(db.String(50), nullable=False)
    name = db.Column(db.String(100), nullable=True)
    breed = db.Column(db.String(50), nullable=True)
    gender = db.Column(db.String(10), nullable=False, default='female')
    birth_date = db.Column(db.Date, nullable=True)
    weight = db.Column(db.Float, nullable=True)
    status = db.Column(db.String(20), nullable=False, default='active')
    production_status = db.Column(db.String(20), nullable=True)
    health_status = db.Column(db.String(30), nullable=False, default='healthy')
    body_condition_score = db.Column(db.Float, nullable=True)
    days_in_milk = db.Column(db.Integer, nullable=True)
    lactation_number = db.Column(db.Integer, nullable=False, default=0)
    expected_calving_date = db.Column(db.Date, nullable=True)
    animal_source = db.Column(db.String(20), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # --- Foreign Keys ---
    farm_id = db.Column(db.Integer, db.ForeignKey('farm.id'), nullable=False)
    mother_id = db.Column(db.Integer, db.ForeignKey('animal.id'), nullable=True)

    # --- Relationships ---
    breeding_records = db.relationship('BreedingRecord', backref='animal', lazy=True, cascade="all, delete-orphan")
    pregnancy_records = db.relationship('PregnancyRecord', backref='animal', lazy=True, cascade="all, delete-orphan")
    breeding_events = db.relationship('BreedingEvent', backref='animal', lazy=True, cascade="all, delete-orphan")

    # A tag number identifies an animal only within its own farm.
    __table_args__ = (db.UniqueConstraint('tag_number', 'farm_id', name='_tag_farm_uc'),)

    def to_dict(self):
        return {
            'id': self.id,
            'farm_id': self.farm_id,
            'tag_number': self.tag_number,
            'name': self.name,
            'breed': self.breed,
            'gender': self.gender,
            'birth_date': _iso(self.birth_date),
            'weight': self.weight,
            'status': self.status,
            'production_status': self.production_status,
            'health_status': self.health_status,
            'body_condition_score': self.body_condition_score,
            'days_in_milk': self.days_in_milk,
            'lactation_number': self.lactation_number,
            'expected_calving_date': _iso(self.expected_calving_date),
            'animal_source': self.animal_source,
            'mother_id': self.mother_id,
            'notes': self.notes,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }

    def __repr__(self):
        return f'<Animal {self.tag_number} (Farm: {self.farm_id})>'


class BreedingRecord(db.Model):
    """One insemination or natural service. Never edited once written."""
    id = db.Column(db.Integer, primary_key=True)
    breeding_date = db.Column(db.Date, nullable=False)
    breeding_type = db.Column(db.String(30), nullable=False, default='artificial_insemination')
    sire_name = db.Column(db.String(100), nullable=True)
    sire_breed = db.Column(db.String(50), nullable=True)
    technician_name = db.Column(db.String(100), nullable=True)
    cost = db.Column(db.Float, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    auto_generated = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # --- Foreign Keys ---
    animal_id = db.Column(db.Integer, db.ForeignKey('animal.id'), nullable=False)
    farm_id = db.Column(db.Integer, db.ForeignKey('farm.id'), nullable=False)

    pregnancy = db.relationship('PregnancyRecord', backref='breeding_record', lazy=True, uselist=False,
                                cascade="all, delete-orphan")

    def to_dict(self):
        return {
            'id': self.id,
            'animal_id': self.animal_id,
            'farm_id': self.farm_id,
            'breeding_date': _iso(self.breeding_date),
            'breeding_type': self.breeding_type,
            'sire_name': self.sire_name,
            'sire_breed': self.sire_breed,
            'technician_name': self.technician_name,
            'cost': self.cost,
            'notes': self.notes,
            'auto_generated': self.auto_generated,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }

    def __repr__(self):
        return f'<BreedingRecord for animal {self.animal_id} on {self.breeding_date}>'


class PregnancyRecord(db.Model):
    """Confirmation and outcome tracking for exactly one breeding record."""
    id = db.Column(db.Integer, primary_key=True)
    pregnancy_status = db.Column(db.String(20), nullable=False, default='suspected')
    confirmed_date = db.Column(db.Date, nullable=True)
    confirmation_method = db.Column(db.String(30), nullable=True)
    veterinarian = db.Column(db.String(100), nullable=True)
    expected_calving_date = db.Column(db.Date, nullable=True)
    actual_calving_date = db.Column(db.Date, nullable=True)
    gestation_length = db.Column(db.Integer, nullable=True)
    pregnancy_notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    # --- Foreign Keys ---
    breeding_record_id = db.Column(db.Integer, db.ForeignKey('breeding_record.id'), unique=True, nullable=False)
    animal_id = db.Column(db.Integer, db.ForeignKey('animal.id'), nullable=False)
    farm_id = db.Column(db.Integer, db.ForeignKey('farm.id'), nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'breeding_record_id': self.breeding_record_id,
            'animal_id': self.animal_id,
            'farm_id': self.farm_id,
            'pregnancy_status': self.pregnancy_status,
            'confirmed_date': _iso(self.confirmed_date),
            'confirmation_method': self.confirmation_method,
            'veterinarian': self.veterinarian,
            'expected_calving_date': _iso(self.expected_calving_date),
            'actual_calving_date': _iso(self.actual_calving_date),
            'gestation_length': self.gestation_length,
            'pregnancy_notes': self.pregnancy_notes,
            'created_at': _iso(self.created_at),
        }

    def __repr__(self):
        return f'<PregnancyRecord {self.pregnancy_status} for breeding {self.breeding_record_id}>'


class BreedingEvent(db.Model):
    """
    Append-only breeding log entry. Which of the optional columns are filled
    depends on event_type (heat_detection, insemination, pregnancy_check, calving).
    """
    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(30), nullable=False)
    event_date = db.Column(db.Date, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    # heat_detection
    heat_signs = db.Column(db.JSON, nullable=True)
    heat_action_taken = db.Column(db.String(100), nullable=True)
    # insemination
    insemination_method = db.Column(db.String(30), nullable=True)
    semen_bull_code = db.Column(db.String(100), nullable=True)
    technician_name = db.Column(db.String(100), nullable=True)
    # pregnancy_check
    pregnancy_result = db.Column(db.String(20), nullable=True)
    examination_method = db.Column(db.String(30), nullable=True)
    veterinarian_name = db.Column(db.String(100), nullable=True)
    estimated_due_date = db.Column(db.Date, nullable=True)
    # calving
    calving_outcome = db.Column(db.String(20), nullable=True)
    calf_gender = db.Column(db.String(10), nullable=True)
    calf_weight = db.Column(db.Float, nullable=True)
    calf_tag_number = db.Column(db.String(50), nullable=True)
    calf_health_status = db.Column(db.String(30), nullable=True)

    # --- Foreign Keys ---
    animal_id = db.Column(db.Integer, db.ForeignKey('animal.id'), nullable=False)
    farm_id = db.Column(db.Integer, db.ForeignKey('farm.id'), nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'farm_id': self.farm_id,
            'animal_id': self.animal_id,
            'event_type': self.event_type,
            'event_date': _iso(self.event_date),
            'notes': self.notes,
            'created_by': self.created_by,
            'created_at': _iso(self.created_at),
            'heat_signs': self.heat_signs,
            'heat_action_taken': self.heat_action_taken,
            'insemination_method': self.insemination_method,
            'semen_bull_code': self.semen_bull_code,
            'technician_name': self.technician_name,
            'pregnancy_result': self.pregnancy_result,
            'examination_method': self.examination_method,
            'veterinarian_name': self.veterinarian_name,
            'estimated_due_date': _iso(self.estimated_due_date),
            'calving_outcome': self.calving_outcome,
            'calf_gender': self.calf_gender,
            'calf_weight': self.calf_weight,
            'calf_tag_number': self.calf_tag_number,
            'calf_health_status': self.calf_health_status,
        }

    def __repr__(self):
        return f'<BreedingEvent {self.event_type} for animal {self.animal_id} on {self.event_date}>'


class FeedMixRecipe(db.Model):
    """A named ration and the animal conditions it is meant for."""
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    active = db.Column(db.Boolean, nullable=False, default=True)
    ingredients = db.Column(db.JSON, nullable=False, default=list)
    target_nutrition = db.Column(db.JSON, nullable=False, default=dict)
    applicable_conditions = db.Column(db.JSON, nullable=False, default=dict)
    estimated_cost_per_day = db.Column(db.Float, nullable=True)

    farm_id = db.Column(db.Integer, db.ForeignKey('farm.id'), nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'farm_id': self.farm_id,
            'name': self.name,
            'description': self.description,
            'active': self.active,
            'ingredients': self.ingredients or [],
            'target_nutrition': self.target_nutrition or {},
            'applicable_conditions': self.applicable_conditions or {},
            'estimated_cost_per_day': self.estimated_cost_per_day,
        }

    def __repr__(self):
        return f'<FeedMixRecipe {self.name} (Farm: {self.farm_id})>'


class FeedRecommendationLog(db.Model):
    """Records what a user did with a generated recommendation."""
    id = db.Column(db.Integer, primary_key=True)
    recommendation_id = db.Column(db.String(100), nullable=False)
    status = db.Column(db.String(20), nullable=False)
    accepted_at = db.Column(db.DateTime, nullable=True)

    farm_id = db.Column(db.Integer, db.ForeignKey('farm.id'), nullable=False)
    animal_id = db.Column(db.Integer, db.ForeignKey('animal.id'), nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'farm_id': self.farm_id,
            'animal_id': self.animal_id,
            'recommendation_id': self.recommendation_id,
            'status': self.status,
            'accepted_at': _iso(self.accepted_at),
        }
