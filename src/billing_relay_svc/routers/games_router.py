import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status

from billing_relay_svc.models.base import get_db, new_id, utcnow
from billing_relay_svc.models.custom_game import CustomGame
from billing_relay_svc.records import commit

router = APIRouter()


@router.get("/games", status_code=200)
def get_games(user_id: Optional[str] = None, db=Depends(get_db)):
    try:
        query = db.query(CustomGame)
        if user_id:
            query = query.filter(CustomGame.user_id == user_id)
        games = query.order_by(CustomGame.created_at.desc()).all()
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to get games")
    return {"games": [game.game_data for game in games]}


@router.post("/games", status_code=200)
def save_game(game_data: Dict[str, Any] = Body(...), db=Depends(get_db)):
    game_data = dict(game_data)
    game_data.setdefault("timestamp", utcnow().isoformat())
    game_id = str(game_data.get("id") or new_id())
    game_data["id"] = game_id
    user_id = game_data.get("userId") or game_data.get("user_id")

    try:
        game = db.get(CustomGame, game_id)
        if game is None:
            db.add(CustomGame(id=game_id, user_id=user_id, game_data=game_data))
        else:
            game.game_data = game_data
            game.user_id = user_id or game.user_id
        commit(db, f"Game {game_id}")
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to save game")
    return {"success": True, "message": "Game saved successfully", "id": game_id}


@router.delete("/games", status_code=200)
def delete_game(id: Optional[str] = None, db=Depends(get_db)):
    if not id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Game ID is required")
    game = db.get(CustomGame, id)
    if game is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Game not found")
    try:
        db.delete(game)
        commit(db, f"Deletion of game {id}")
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to delete game")
    return {"success": True, "message": "Game deleted successfully!"}
