import os
import sys
import random

import yaml

from competition.allocation import assign_courts
from competition.config import ELIMINATION, HYBRID, config_from_dict
from competition.elimination import generate_bracket
from competition.errors import CompetitionError
from competition.generators import generate_for_format, generate_hybrid_groups


def load_roster(file_path):
    """
    Read a roster file:

        format: americano          # or a full config block under 'config'
        courts: 2                  # optional
        seed: 7                    # optional, makes shuffles repeatable
        divisions:
          1: [ana, bea, carla, dora]
          2: [[eva, fia], [gala, hana]]
    """
    with open(file_path, mode='r', encoding='utf-8') as file:
        roster = yaml.safe_load(file) or {}
    if 'config' in roster:
        config = config_from_dict(roster['config'])
    else:
        config = config_from_dict({'format': roster.get('format')})
    divisions = {int(number): entries or [] for number, entries in (roster.get('divisions') or {}).items()}
    return config, divisions, roster.get('courts'), roster.get('seed')


def describe_match(match):
    label = match.round_name or f"Round {match.round}"
    court = f" [court {match.court}]" if match.court else ""
    pair1 = ' & '.join(match.pair1.players) or match.pair1.placeholder or 'TBD'
    pair2 = ' & '.join(match.pair2.players) or match.pair2.placeholder or 'TBD'
    return f"{label}{court}: {pair1} vs {pair2}"


def generate_schedules(config, divisions, courts=None, seed=None):
    """
    Build the opening schedule of every division.

    Returns:
        ([(title, matches)], warnings)
    """
    rng = random.Random(seed) if seed is not None else None
    schedules = []
    warnings = []
    for number, entries in sorted(divisions.items()):
        if config.format == ELIMINATION:
            options = config.format_config
            for draw in generate_bracket(entries, consolation=options.consolation,
                                         third_place=options.third_place_match,
                                         seeded=options.seeded, rng=rng):
                schedules.append((f"Division {number} - {draw.name}", draw.matches))
        elif config.format == HYBRID:
            for group in generate_hybrid_groups(entries, config):
                schedules.append((f"Division {number} - {group.name}", group.matches))
        else:
            matches = generate_for_format(config, entries, number, rng)
            if courts:
                warnings.extend(assign_courts(matches, int(courts)))
            schedules.append((f"Division {number}", matches))
    return schedules, warnings


def main():
    script_dir = os.path.dirname(__file__)
    base_dir = os.path.dirname(script_dir)

    # Use command line argument if provided, otherwise use default path
    roster_file = sys.argv[1] if len(sys.argv) > 1 else os.path.join(base_dir, 'data', 'roster.yaml')

    try:
        config, divisions, courts, seed = load_roster(roster_file)
        schedules, warnings = generate_schedules(config, divisions, courts, seed)
    except FileNotFoundError:
        print(f"Roster file not found: {roster_file}", file=sys.stderr)
        return 1
    except CompetitionError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    for warning in warnings:
        print(f"WARNING: {warning}", file=sys.stderr)

    first = True
    for title, matches in schedules:
        if not first:
            print()
        print(f"# {title}")
        for match in matches:
            print(describe_match(match))
        first = False
    return 0


if __name__ == '__main__':
    sys.exit(main())
