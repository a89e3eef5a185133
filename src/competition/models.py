import uuid

from competition.errors import ValidationError, ResultLockedError

PAIR_SEPARATOR = '::'
BYE = 'BYE'

# Match status
PENDING = 'pending'
FINISHED = 'finished'
NOT_PLAYED = 'not_played'

# Division status
ACTIVE = 'active'
CLOSED = 'finished'

# Division kind and stage
MAIN = 'main'
CONSOLATION = 'consolation'
GROUP_STAGE = 'group'
PLAYOFF_STAGE = 'playoff'

# Movement classification
UP = 'up'
DOWN = 'down'
STAY = 'stay'


def new_id(prefix):
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class Player:
    def __init__(self, player_id, name='', stats=None):
        self.id = player_id
        self.name = name
        self.stats = {
            'matches_played': 0,
            'matches_won': 0,
            'matches_lost': 0,
            'win_rate': 0,
        }
        if stats:
            self.stats.update(stats)

    @property
    def win_rate(self):
        return self.stats.get('win_rate') or 0

    def __repr__(self):
        return f"Player(id={self.id}, name={self.name}, stats={self.stats})"


class Pair:
    """Two participant slots. p2 is empty when the slot holds a single participant."""

    def __init__(self, p1='', p2='', placeholder=None):
        if p1 and p2 and p1 == p2:
            raise ValidationError(f"A pair cannot hold the same participant twice: {p1}")
        self.p1 = p1
        self.p2 = p2
        self.placeholder = placeholder

    @property
    def players(self):
        return tuple(p for p in (self.p1, self.p2) if p and p != BYE)

    @property
    def key(self):
        if self.p2:
            return f"{self.p1}{PAIR_SEPARATOR}{self.p2}"
        return self.p1

    def is_empty(self):
        return not self.p1 and not self.p2

    def is_bye(self):
        return self.p1 == BYE

    @classmethod
    def from_key(cls, key):
        if PAIR_SEPARATOR in key:
            p1, p2 = key.split(PAIR_SEPARATOR, 1)
            return cls(p1, p2)
        return cls(key)

    @classmethod
    def coerce(cls, value):
        """Build a Pair from a Pair, a "p1::p2" key or a two-element sequence."""
        if isinstance(value, Pair):
            return cls(value.p1, value.p2, value.placeholder)
        if isinstance(value, str):
            return cls.from_key(value)
        items = list(value)
        if len(items) != 2:
            raise ValidationError(f"A pair needs exactly two participants, got {items}")
        return cls(items[0], items[1])

    def to_dict(self):
        data = {'p1': self.p1, 'p2': self.p2}
        if self.placeholder:
            data['placeholder'] = self.placeholder
        return data

    @classmethod
    def from_dict(cls, data):
        return cls(data.get('p1', ''), data.get('p2', ''), data.get('placeholder'))

    def __eq__(self, other):
        if not isinstance(other, Pair):
            return NotImplemented
        return (self.p1, self.p2) == (other.p1, other.p2)

    def __hash__(self):
        return hash((self.p1, self.p2))

    def __repr__(self):
        if self.placeholder and self.is_empty():
            return f"Pair(placeholder={self.placeholder})"
        return f"Pair({self.p1}, {self.p2})"


class Score:
    def __init__(self, sets=None, points_scored=None, is_incomplete=False,
                 finalization_type=None, description=''):
        self.sets = [tuple(s) for s in (sets or [])]
        self.points_scored = tuple(points_scored) if points_scored is not None else None
        self.is_incomplete = is_incomplete
        self.finalization_type = finalization_type
        self.description = description

    def to_dict(self):
        return {
            'sets': [list(s) for s in self.sets],
            'points_scored': list(self.points_scored) if self.points_scored is not None else None,
            'is_incomplete': self.is_incomplete,
            'finalization_type': self.finalization_type,
            'description': self.description,
        }

    @classmethod
    def from_dict(cls, data):
        if data is None:
            return None
        return cls(
            sets=data.get('sets'),
            points_scored=data.get('points_scored'),
            is_incomplete=data.get('is_incomplete', False),
            finalization_type=data.get('finalization_type'),
            description=data.get('description', ''),
        )

    def __repr__(self):
        if self.points_scored is not None:
            return f"Score(points_scored={self.points_scored})"
        return f"Score(sets={self.sets}, type={self.finalization_type})"


class Match:
    def __init__(self, round_number, pair1, pair2, court=None, match_id=None, status=PENDING,
                 score=None, points=(0, 0), round_name=None, next_match_id=None,
                 consolation_match_id=None):
        self.id = match_id or new_id('m')
        self.round = round_number
        self.pair1 = pair1
        self.pair2 = pair2
        overlap = set(pair1.players) & set(pair2.players)
        if overlap:
            raise ValidationError(f"Participant(s) {sorted(overlap)} appear on both sides of a match")
        self.court = court
        self.status = status
        self.score = score
        self.points = tuple(points)
        self.round_name = round_name
        self.next_match_id = next_match_id
        self.consolation_match_id = consolation_match_id

    @property
    def players(self):
        return self.pair1.players + self.pair2.players

    def is_finished(self):
        return self.status == FINISHED

    def side_of(self, participant):
        """Return 1 or 2 for the side a player id or pair key plays on, None if absent."""
        for side, pair in ((1, self.pair1), (2, self.pair2)):
            if participant == pair.key or participant in pair.players:
                return side
        return None

    def record_result(self, score, points):
        if self.status == FINISHED:
            raise ResultLockedError(f"Match {self.id} is already finished; use a correction instead")
        self._set_result(score, points)

    def correct_result(self, score, points):
        """Explicitly overwrite the result of a match, finished or not."""
        self._set_result(score, points)

    def _set_result(self, score, points):
        self.score = score
        self.points = tuple(points)
        self.status = FINISHED

    def mark_not_played(self):
        self.status = NOT_PLAYED
        self.points = (0, 0)

    def to_dict(self):
        return {
            'id': self.id,
            'round': self.round,
            'pair1': self.pair1.to_dict(),
            'pair2': self.pair2.to_dict(),
            'court': self.court,
            'status': self.status,
            'score': self.score.to_dict() if self.score else None,
            'points': list(self.points),
            'round_name': self.round_name,
            'next_match_id': self.next_match_id,
            'consolation_match_id': self.consolation_match_id,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            round_number=data['round'],
            pair1=Pair.from_dict(data['pair1']),
            pair2=Pair.from_dict(data['pair2']),
            court=data.get('court'),
            match_id=data.get('id'),
            status=data.get('status', PENDING),
            score=Score.from_dict(data.get('score')),
            points=data.get('points', (0, 0)),
            round_name=data.get('round_name'),
            next_match_id=data.get('next_match_id'),
            consolation_match_id=data.get('consolation_match_id'),
        )

    def __repr__(self):
        court = f", court={self.court}" if self.court else ""
        return f"Match(round={self.round}{court}, {self.pair1} vs {self.pair2}, status={self.status})"


class Division:
    def __init__(self, number, players=None, matches=None, division_id=None, status=ACTIVE,
                 name=None, kind=MAIN, stage=None, retired_players=None):
        self.id = division_id or new_id('div')
        self.number = number
        self.players = list(players or [])
        self.matches = list(matches or [])
        self.status = status
        self.name = name
        self.kind = kind
        self.stage = stage
        self.retired_players = list(retired_players or [])

    def rounds(self):
        return sorted({m.round for m in self.matches})

    def current_round(self):
        rounds = self.rounds()
        return rounds[-1] if rounds else 0

    def matches_in_round(self, round_number):
        return [m for m in self.matches if m.round == round_number]

    def find_match(self, match_id):
        for match in self.matches:
            if match.id == match_id:
                return match
        return None

    def finished_matches(self):
        return [m for m in self.matches if m.is_finished()]

    def to_dict(self):
        return {
            'id': self.id,
            'number': self.number,
            'players': list(self.players),
            'matches': [m.to_dict() for m in self.matches],
            'status': self.status,
            'name': self.name,
            'kind': self.kind,
            'stage': self.stage,
            'retired_players': list(self.retired_players),
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            number=data['number'],
            players=data.get('players'),
            matches=[Match.from_dict(m) for m in data.get('matches', [])],
            division_id=data.get('id'),
            status=data.get('status', ACTIVE),
            name=data.get('name'),
            kind=data.get('kind', MAIN),
            stage=data.get('stage'),
            retired_players=data.get('retired_players'),
        )

    def __repr__(self):
        return f"Division(number={self.number}, players={len(self.players)}, matches={len(self.matches)})"


class ManualAdjustment:
    """Additive corrections an administrator applies on top of computed standings."""

    FIELDS = ('points', 'matches_played', 'matches_won', 'sets_won', 'set_diff', 'games_won', 'game_diff')

    def __init__(self, points=0, matches_played=0, matches_won=0, sets_won=0, set_diff=0,
                 games_won=0, game_diff=0):
        self.points = points
        self.matches_played = matches_played
        self.matches_won = matches_won
        self.sets_won = sets_won
        self.set_diff = set_diff
        self.games_won = games_won
        self.game_diff = game_diff

    def is_empty(self):
        return all(not getattr(self, f) for f in self.FIELDS)

    def to_dict(self):
        return {f: getattr(self, f) for f in self.FIELDS if getattr(self, f)}

    @classmethod
    def from_dict(cls, data):
        unknown = set(data or {}) - set(cls.FIELDS)
        if unknown:
            raise ValidationError(f"Unknown adjustment field(s): {sorted(unknown)}")
        return cls(**{f: (data or {}).get(f) or 0 for f in cls.FIELDS})

    def __repr__(self):
        return f"ManualAdjustment({self.to_dict()})"


class StandingRow:
    def __init__(self, participant_id, position=0, matches_played=0, matches_won=0, matches_lost=0,
                 points=0, sets_won=0, sets_lost=0, set_diff=0, games_won=0, games_lost=0,
                 game_diff=0, trend=None, adjustment=None):
        self.participant_id = participant_id
        self.position = position
        self.matches_played = matches_played
        self.matches_won = matches_won
        self.matches_lost = matches_lost
        self.points = points
        self.sets_won = sets_won
        self.sets_lost = sets_lost
        self.set_diff = set_diff
        self.games_won = games_won
        self.games_lost = games_lost
        self.game_diff = game_diff
        self.trend = trend
        self.adjustment = adjustment

    @property
    def win_rate(self):
        if not self.matches_played:
            return 0
        return round(self.matches_won * 100 / self.matches_played, 1)

    def to_dict(self):
        return {
            'participant_id': self.participant_id,
            'position': self.position,
            'matches_played': self.matches_played,
            'matches_won': self.matches_won,
            'matches_lost': self.matches_lost,
            'points': self.points,
            'sets_won': self.sets_won,
            'sets_lost': self.sets_lost,
            'set_diff': self.set_diff,
            'games_won': self.games_won,
            'games_lost': self.games_lost,
            'game_diff': self.game_diff,
            'win_rate': self.win_rate,
            'trend': self.trend,
            'adjustment': self.adjustment.to_dict() if self.adjustment else None,
        }

    def __repr__(self):
        return f"StandingRow(pos={self.position}, id={self.participant_id}, pts={self.points})"


class Movement:
    def __init__(self, participant_id, from_division, to_division, kind=None, overridden=False):
        self.participant_id = participant_id
        self.from_division = from_division
        self.to_division = to_division
        self.kind = kind or classify_movement(from_division, to_division)
        self.overridden = overridden

    def to_dict(self):
        return {
            'participant_id': self.participant_id,
            'from_division': self.from_division,
            'to_division': self.to_division,
            'kind': self.kind,
            'overridden': self.overridden,
        }

    def __repr__(self):
        flag = ", overridden" if self.overridden else ""
        return f"Movement({self.participant_id}: {self.from_division}->{self.to_division} {self.kind}{flag})"


def classify_movement(from_division, to_division):
    if to_division < from_division:
        return UP
    if to_division > from_division:
        return DOWN
    return STAY


class Ranking:
    def __init__(self, name, config, divisions=None, ranking_id=None, history=None,
                 adjustments=None, previous_positions=None, phase='league'):
        self.id = ranking_id or new_id('rk')
        self.name = name
        self.config = config
        self.divisions = list(divisions or [])
        self.history = list(history or [])
        self.adjustments = dict(adjustments or {})
        self.previous_positions = dict(previous_positions or {})
        self.phase = phase

    @property
    def format(self):
        return self.config.format

    def division(self, number):
        for division in self.divisions:
            if division.number == number:
                return division
        return None

    def sorted_divisions(self):
        return sorted(self.divisions, key=lambda d: d.number)

    def find_match(self, match_id):
        for division in self.divisions:
            match = division.find_match(match_id)
            if match:
                return division, match
        return None, None

    def to_dict(self):
        from competition.config import config_to_dict
        return {
            'id': self.id,
            'name': self.name,
            'config': config_to_dict(self.config),
            'divisions': [d.to_dict() for d in self.divisions],
            'history': [m.to_dict() for m in self.history],
            'adjustments': {pid: adj.to_dict() for pid, adj in self.adjustments.items()},
            'previous_positions': dict(self.previous_positions),
            'phase': self.phase,
        }

    @classmethod
    def from_dict(cls, data):
        from competition.config import config_from_dict
        return cls(
            name=data.get('name', ''),
            config=config_from_dict(data['config']),
            divisions=[Division.from_dict(d) for d in data.get('divisions', [])],
            ranking_id=data.get('id'),
            history=[Match.from_dict(m) for m in data.get('history', [])],
            adjustments={pid: ManualAdjustment.from_dict(adj)
                         for pid, adj in (data.get('adjustments') or {}).items()},
            previous_positions=data.get('previous_positions'),
            phase=data.get('phase', 'league'),
        )

    def __repr__(self):
        return f"Ranking(name={self.name}, format={self.format}, divisions={len(self.divisions)})"
