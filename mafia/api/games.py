from flask import Blueprint, jsonify
from flask_login import current_user, login_required

from mafia.models import Game, GamePlayer
from mafia.services.games.session import public_state


games = Blueprint('games', __name__)


@games.route('/active', methods=['GET'])
@login_required
def active_games():
    # Games where the current user holds a seat and nobody has won yet
    rows = (
        Game.query.join(GamePlayer)
        .filter(GamePlayer.user_id == current_user.id, Game.ended_at.is_(None))
        .order_by(Game.started_at.desc())
        .all()
    )
    return jsonify([g.to_dict(viewer_id=current_user.id) for g in rows])


@games.route('/<int:game_id>', methods=['GET'])
@login_required
def get_game_state(game_id):
    return jsonify(public_state(game_id, viewer_id=current_user.id))
