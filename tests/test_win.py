from types import SimpleNamespace

from mafia.models import Faction
from mafia.services.games.win import evaluate


def _game(*players):
    return SimpleNamespace(players=[SimpleNamespace(role=role, is_alive=alive) for role, alive in players])


def test_village_wins_when_no_mafia_alive():
    game = _game(('MAFIA', False), ('VILLAGER', True), ('DOCTOR', True))
    assert evaluate(game) == Faction.VILLAGE


def test_mafia_wins_at_parity():
    game = _game(('MAFIA', True), ('VILLAGER', True), ('DOCTOR', False), ('DETECTIVE', False))
    assert evaluate(game) == Faction.MAFIA


def test_mafia_wins_when_outnumbering():
    game = _game(('MAFIA', True), ('MAFIA', True), ('VILLAGER', True))
    assert evaluate(game) == Faction.MAFIA


def test_game_continues_otherwise():
    game = _game(('MAFIA', True), ('VILLAGER', True), ('DOCTOR', True), ('DETECTIVE', False))
    assert evaluate(game) is None
