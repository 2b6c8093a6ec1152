import json
import logging
import os

from marshmallow import Schema, fields, validate, ValidationError, post_load, validates_schema
from marshmallow.validate import Length, OneOf, Range

from cluster_slot.exceptions import ValidationException
from cluster_slot.models import BombBand, GameRules, PayoutTier, SpinMode

logger = logging.getLogger(__name__)

SLOTS_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), 'public', 'slots'))


# --- Game rules (gameConfig.json) ---

class LayoutSchema(Schema):
    rows = fields.Integer(required=True, validate=Range(min=1, max=20))
    columns = fields.Integer(required=True, validate=Range(min=1, max=20))


class SymbolSchema(Schema):
    id = fields.Integer(required=True, validate=Range(min=1))
    name = fields.String(required=True, validate=Length(min=1, max=50))


class PayoutTierSchema(Schema):
    min_count = fields.Integer(required=True, validate=Range(min=1))
    payouts = fields.Dict(keys=fields.Integer(), values=fields.Decimal(validate=Range(min=0)), required=True)


class ScatterSchema(Schema):
    symbol_id = fields.Integer(required=True, validate=Range(min=0))
    name = fields.String(load_default='Scatter')
    cluster_payouts = fields.List(fields.Decimal(validate=Range(min=0)), required=True)
    min_count = fields.Integer(load_default=0, validate=Range(min=0))
    max_count = fields.Integer(required=True, validate=Range(min=0))
    chance = fields.Float(required=True, validate=Range(min=0, max=1))
    trigger_count = fields.Integer(required=True, validate=Range(min=1))
    retrigger_count = fields.Integer(required=True, validate=Range(min=1))
    free_spins_awarded = fields.Dict(keys=fields.Integer(), values=fields.Integer(validate=Range(min=1)), required=True)
    retrigger_spins_awarded = fields.Dict(keys=fields.Integer(), values=fields.Integer(validate=Range(min=1)),
                                          load_default=dict)
    trigger_payouts = fields.Dict(keys=fields.Integer(), values=fields.Decimal(validate=Range(min=0)),
                                  load_default=dict)

    @validates_schema
    def validate_counts(self, data, **kwargs):
        if data.get('min_count', 0) > data['max_count']:
            raise ValidationError('min_count cannot exceed max_count.', 'min_count')
        if data['free_spins_awarded'] and min(data['free_spins_awarded']) < data['trigger_count']:
            raise ValidationError('free_spins_awarded has entries below trigger_count.', 'free_spins_awarded')


class BombBandSchema(Schema):
    name = fields.String(required=True, validate=Length(min=1, max=20))
    weight = fields.Float(required=True, validate=Range(min=0, min_inclusive=False))
    first_id = fields.Integer(required=True)
    last_id = fields.Integer(required=True)

    @validates_schema
    def validate_range(self, data, **kwargs):
        if data['first_id'] > data['last_id']:
            raise ValidationError('first_id cannot exceed last_id.', 'first_id')


class BombSchema(Schema):
    first_id = fields.Integer(required=True, validate=Range(min=1))
    multipliers = fields.List(fields.Integer(validate=Range(min=1)), required=True, validate=Length(min=1))
    min_count = fields.Integer(load_default=0, validate=Range(min=0))
    max_count = fields.Integer(required=True, validate=Range(min=0))
    chance = fields.Float(required=True, validate=Range(min=0, max=1))
    bands = fields.List(fields.Nested(BombBandSchema), required=True, validate=Length(min=1))

    @validates_schema
    def validate_bands(self, data, **kwargs):
        last_bomb_id = data['first_id'] + len(data['multipliers']) - 1
        for band in data['bands']:
            if band['first_id'] < data['first_id'] or band['last_id'] > last_bomb_id:
                raise ValidationError(
                    f"Band '{band['name']}' must stay within bomb ids {data['first_id']}-{last_bomb_id}.", 'bands'
                )


class BetSchema(Schema):
    default = fields.Decimal(required=True, validate=Range(min=0, min_inclusive=False))
    min = fields.Decimal(required=True, validate=Range(min=0, min_inclusive=False))
    max = fields.Decimal(required=True, validate=Range(min=0, min_inclusive=False))
    feature_buy_multiplier = fields.Decimal(load_default=100, validate=Range(min=0, min_inclusive=False))
    feature_buy_scatters = fields.Integer(load_default=4, validate=Range(min=1))
    enhanced_bet_multiplier = fields.Decimal(load_default=1.25, validate=Range(min=1))
    enhanced_scatter_factor = fields.Float(load_default=2.0, validate=Range(min=1))

    @validates_schema
    def validate_limits(self, data, **kwargs):
        if not data['min'] <= data['default'] <= data['max']:
            raise ValidationError('default bet must lie between min and max.', 'default')


class CelebrationSchema(Schema):
    threshold = fields.Decimal(load_default=10, validate=Range(min=0))
    win_ranks = fields.Dict(keys=fields.String(), values=fields.Decimal(validate=Range(min=0)), load_default=dict)


class GameSchema(Schema):
    name = fields.String(required=True, validate=Length(min=1, max=100))
    short_name = fields.String(required=True, validate=Length(min=1, max=50))
    layout = fields.Nested(LayoutSchema, required=True)
    symbols = fields.List(fields.Nested(SymbolSchema), required=True, validate=Length(min=2))
    difficulty_symbols = fields.Integer(load_default=4, validate=Range(min=1))
    match_threshold = fields.Integer(load_default=8, validate=Range(min=2))
    payout_tiers = fields.List(fields.Nested(PayoutTierSchema), required=True, validate=Length(min=1))
    scatter = fields.Nested(ScatterSchema, required=True)
    bombs = fields.Nested(BombSchema, required=True)
    bet = fields.Nested(BetSchema, required=True)
    celebration = fields.Nested(CelebrationSchema, load_default=dict)
    max_tumbles = fields.Integer(load_default=50, validate=Range(min=1))

    @validates_schema
    def validate_rules(self, data, **kwargs):
        symbol_ids = [s['id'] for s in data['symbols']]
        if len(set(symbol_ids)) != len(symbol_ids):
            raise ValidationError('Symbol ids must be unique.', 'symbols')
        if data['difficulty_symbols'] > len(symbol_ids):
            raise ValidationError('difficulty_symbols cannot exceed the number of symbols.', 'difficulty_symbols')

        cells = data['layout']['rows'] * data['layout']['columns']
        if data['match_threshold'] > cells:
            raise ValidationError('match_threshold cannot exceed the number of grid cells.', 'match_threshold')

        tier_counts = [tier['min_count'] for tier in data['payout_tiers']]
        if min(tier_counts) != data['match_threshold']:
            raise ValidationError('The lowest payout tier must start at match_threshold.', 'payout_tiers')
        for tier in data['payout_tiers']:
            missing = set(symbol_ids) - set(tier['payouts'])
            if missing:
                raise ValidationError(f"Payout tier {tier['min_count']} is missing symbols {sorted(missing)}.",
                                      'payout_tiers')
        if len(data['scatter']['cluster_payouts']) != len(data['payout_tiers']):
            raise ValidationError('scatter.cluster_payouts needs one entry per payout tier.', 'scatter')

        reserved = {data['scatter']['symbol_id']}
        bombs = data['bombs']
        reserved.update(range(bombs['first_id'], bombs['first_id'] + len(bombs['multipliers'])))
        if reserved & set(symbol_ids):
            raise ValidationError('Scatter and bomb ids must not overlap regular symbol ids.', 'symbols')

    @post_load
    def make_rules(self, data, **kwargs):
        scatter = data['scatter']
        bombs = data['bombs']
        bet = data['bet']
        celebration = data['celebration'] or {}
        return GameRules(
            name=data['name'],
            short_name=data['short_name'],
            rows=data['layout']['rows'],
            columns=data['layout']['columns'],
            symbol_ids=sorted(s['id'] for s in data['symbols']),
            symbol_names={s['id']: s['name'] for s in data['symbols']},
            difficulty_symbols=data['difficulty_symbols'],
            match_threshold=data['match_threshold'],
            payout_tiers=[PayoutTier(t['min_count'], t['payouts']) for t in data['payout_tiers']],
            scatter_symbol_id=scatter['symbol_id'],
            scatter_cluster_payouts=scatter['cluster_payouts'],
            scatter_min_count=scatter['min_count'],
            scatter_max_count=scatter['max_count'],
            scatter_chance=scatter['chance'],
            trigger_count=scatter['trigger_count'],
            retrigger_count=scatter['retrigger_count'],
            free_spins_awarded=scatter['free_spins_awarded'],
            retrigger_spins_awarded=scatter['retrigger_spins_awarded'],
            scatter_trigger_payouts=scatter['trigger_payouts'],
            bomb_first_id=bombs['first_id'],
            bomb_multipliers=bombs['multipliers'],
            bomb_bands=[BombBand(b['name'], b['weight'], b['first_id'], b['last_id']) for b in bombs['bands']],
            bomb_min_count=bombs['min_count'],
            bomb_max_count=bombs['max_count'],
            bomb_chance=bombs['chance'],
            default_bet=bet['default'],
            min_bet=bet['min'],
            max_bet=bet['max'],
            feature_buy_multiplier=bet['feature_buy_multiplier'],
            feature_buy_scatters=bet['feature_buy_scatters'],
            enhanced_bet_multiplier=bet['enhanced_bet_multiplier'],
            enhanced_scatter_factor=bet['enhanced_scatter_factor'],
            celebration_threshold=celebration.get('threshold', 10),
            win_ranks=celebration.get('win_ranks', {}),
            max_tumbles=data['max_tumbles'],
        )


class GameConfigSchema(Schema):
    game = fields.Nested(GameSchema, required=True)

    @post_load
    def unwrap(self, data, **kwargs):
        return data['game']


def parse_game_config(raw_config):
    """
    Validate a decoded gameConfig.json document and build GameRules from it.

    Raises:
        ValidationException: With marshmallow's error messages in ``details``.
    """
    try:
        return GameConfigSchema().load(raw_config)
    except ValidationError as err:
        raise ValidationException("Invalid game configuration", details=err.messages)


def load_game_config(slot_short_name, slots_dir=None):
    """
    Loads and validates the game configuration JSON file for a slot.

    Args:
        slot_short_name (str): Directory name under public/slots.
        slots_dir (str | None): Override for the slots directory.

    Returns:
        GameRules: The validated rules.

    Raises:
        FileNotFoundError: If the slot has no gameConfig.json.
        ValidationException: If the JSON is malformed or fails schema validation.
    """
    base_dir = slots_dir or SLOTS_DIR
    file_path = os.path.join(base_dir, slot_short_name, "gameConfig.json")
    if not os.path.exists(file_path):
        logger.error(f"Game config not found for slot '{slot_short_name}' at {file_path}")
        raise FileNotFoundError(f"Configuration file not found for slot '{slot_short_name}' at {file_path}")

    try:
        with open(file_path, 'r') as f:
            raw_config = json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"JSON decode error for {file_path}: {e.msg} at line {e.lineno} col {e.colno}")
        raise ValidationException(f"Invalid JSON in {file_path}",
                                  details={'msg': e.msg, 'line': e.lineno, 'col': e.colno})

    rules = parse_game_config(raw_config)
    logger.info(f"Loaded game config for '{slot_short_name}' from {file_path}")
    return rules


# --- Spin results ---

class TumbleStepSchema(Schema):
    index = fields.Integer()
    symbol_id = fields.Integer()
    removed = fields.Method('get_removed')
    added = fields.Method('get_added')
    grid = fields.List(fields.List(fields.Integer()))
    step_win = fields.Decimal(as_string=True)
    running_total = fields.Decimal(as_string=True)

    def get_removed(self, obj):
        return [[cell.row, cell.col] for cell in obj.removed]

    def get_added(self, obj):
        return [[cell.row, cell.col] for cell in obj.added]


class SpinOutcomeSchema(Schema):
    spin_number = fields.Integer()
    mode = fields.Method('get_mode')
    bet = fields.Decimal(as_string=True)
    debited = fields.Decimal(as_string=True)
    was_free_spin = fields.Boolean()
    initial_grid = fields.List(fields.List(fields.Integer()))
    final_grid = fields.List(fields.List(fields.Integer()))
    steps = fields.List(fields.Nested(TumbleStepSchema))
    tumble_capped = fields.Boolean()
    cluster_win = fields.Decimal(as_string=True)
    scatter_award = fields.Decimal(as_string=True)
    bomb_multiplier = fields.Integer()
    total_win = fields.Decimal(as_string=True)
    win_multiple = fields.Decimal(as_string=True)
    scatter_count = fields.Integer()
    bonus_triggered = fields.Boolean()
    free_spins_awarded = fields.Integer()
    retriggered = fields.Boolean()
    bonus_ended = fields.Boolean()
    free_spins_remaining = fields.Integer()
    win_overlay_tier = fields.String(allow_none=True)

    def get_mode(self, obj):
        return obj.mode.value


class SpinRequestSchema(Schema):
    """Validates spin parameters coming from the CLI."""
    bet = fields.Decimal(required=True, validate=Range(min=0, min_inclusive=False))
    mode = fields.String(load_default=SpinMode.NORMAL.value, validate=OneOf([m.value for m in SpinMode]))
    spins = fields.Integer(load_default=1, validate=validate.Range(min=1, max=100000))
