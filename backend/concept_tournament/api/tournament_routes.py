"""
Tournament API routes
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List, Optional

from concept_tournament.core.errors import TournamentError
from concept_tournament.models.tournament import TournamentStatus
from concept_tournament.schemas.idea_schemas import IdeaResponse, LaneHistory
from concept_tournament.schemas.review_schemas import ReviewResponse
from concept_tournament.schemas.tournament_schemas import (
    LaneResultResponse,
    TournamentCreate,
    TournamentCreated,
    TournamentStatusResponse,
    TournamentSummary,
)
from concept_tournament.services.tournament_service import TournamentController, get_controller

router = APIRouter()


@router.post("", response_model=TournamentCreated, status_code=202)
async def create_tournament(
    request: TournamentCreate,
    controller: TournamentController = Depends(get_controller)
):
    """Create a tournament and start it in the background"""
    try:
        tournament_id = await controller.create(request)
    except TournamentError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    controller.start(tournament_id)
    return TournamentCreated(tournament_id=tournament_id, status=TournamentStatus.CREATED)


@router.get("", response_model=List[TournamentSummary])
async def list_tournaments(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    controller: TournamentController = Depends(get_controller)
):
    """List tournaments, newest first"""
    return await controller.list(skip=skip, limit=limit)


@router.get("/{tournament_id}", response_model=TournamentStatusResponse)
async def get_tournament_status(
    tournament_id: int,
    controller: TournamentController = Depends(get_controller)
):
    """Status, round and progress for polling clients"""
    try:
        return await controller.status(tournament_id)
    except TournamentError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{tournament_id}/ideas", response_model=List[IdeaResponse])
async def get_tournament_ideas(
    tournament_id: int,
    controller: TournamentController = Depends(get_controller)
):
    """Every idea produced so far"""
    try:
        return await controller.ideas(tournament_id)
    except TournamentError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{tournament_id}/rounds", response_model=List[LaneResultResponse])
async def get_tournament_rounds(
    tournament_id: int,
    controller: TournamentController = Depends(get_controller)
):
    """Per-lane outcome of every committed round"""
    try:
        return await controller.rounds(tournament_id)
    except TournamentError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{tournament_id}/lanes/{lane_id}/ideas", response_model=LaneHistory)
async def get_lane_history(
    tournament_id: int,
    lane_id: int,
    through_round: Optional[int] = Query(None, ge=0),
    controller: TournamentController = Depends(get_controller)
):
    """A lane's ideas up to a round and its champion at that round"""
    try:
        return await controller.lane_history(tournament_id, lane_id, through_round)
    except TournamentError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{tournament_id}/ideas/{idea_id}/reviews/{reviewer_id}", response_model=ReviewResponse)
async def get_idea_review(
    tournament_id: int,
    idea_id: int,
    reviewer_id: str,
    controller: TournamentController = Depends(get_controller)
):
    """One reviewer's feedback on one idea"""
    try:
        return await controller.review_for(tournament_id, idea_id, reviewer_id)
    except TournamentError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{tournament_id}/cancel", response_model=TournamentStatusResponse)
async def cancel_tournament(
    tournament_id: int,
    controller: TournamentController = Depends(get_controller)
):
    """Stop a tournament at the next round boundary"""
    try:
        return await controller.cancel(tournament_id)
    except TournamentError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
