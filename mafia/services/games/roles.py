import random

from mafia.errors import ValidationError
from mafia.models import Role


def assign_roles(player_count, role_counts, rng=None):
    """Return one role per player slot, uniformly shuffled.

    ``role_counts`` maps each role (enum or name) to how many players get it and
    must sum to ``player_count``. Slot ``i`` of the result belongs to the
    ``i``-th player in the caller's order.
    """
    rng = rng or random
    roles = []
    for role in Role:
        count = role_counts.get(role, role_counts.get(role.value, 0))
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise ValidationError(f'Invalid count for {role.value}: {count!r}')
        roles.extend([role] * count)

    unknown = {str(getattr(k, 'value', k)) for k in role_counts} - {r.value for r in Role}
    if unknown:
        raise ValidationError(f'Unknown roles: {", ".join(sorted(unknown))}')
    if len(roles) != player_count:
        raise ValidationError(f'Role counts add up to {len(roles)}, expected {player_count}')

    # Fisher-Yates
    for i in range(len(roles) - 1, 0, -1):
        j = rng.randrange(i + 1)
        roles[i], roles[j] = roles[j], roles[i]
    return roles
