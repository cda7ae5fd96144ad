from mafia.models import Faction, Role


def evaluate(game):
    """Decide whether a faction has won.

    Village wins once no mafia is alive; mafia wins as soon as living mafia
    match or outnumber everyone else. ``None`` means play continues.
    """
    alive_mafia = 0
    alive_others = 0
    for p in game.players:
        if not p.is_alive:
            continue
        if p.role == Role.MAFIA:
            alive_mafia += 1
        else:
            alive_others += 1
    if alive_mafia == 0:
        return Faction.VILLAGE
    if alive_mafia >= alive_others:
        return Faction.MAFIA
    return None
